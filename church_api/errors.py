"""
Exceptions raised by the store and the external collaborators.

Each maps to a 500 response whose body carries the underlying message.
"""

from __future__ import annotations


class ChurchApiError(Exception):
    """Base class for backend faults surfaced to the caller."""

    status_code = 500


class ContentStoreError(ChurchApiError):
    """The content database failed."""


class BlobStorageError(ChurchApiError):
    """The blob storage provider failed."""


class IdentityProviderError(ChurchApiError):
    """The identity provider could not be reached or answered unexpectedly."""


class IdentityError(Exception):
    """The identity provider rejected a request (bad credentials, duplicate user)."""


class MissingFieldsError(ValueError):
    """A create payload lacks fields its resource requires."""

    def __init__(self, fields: list[str]):
        self.fields = fields
        super().__init__(f"Missing required fields: {', '.join(fields)}")


class RecordNotFoundError(LookupError):
    """An update referenced a record that does not exist."""
