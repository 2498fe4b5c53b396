"""
Resource kinds and the create/list/update/delete rules shared by every collection.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from church_api.errors import MissingFieldsError, RecordNotFoundError
from church_api.identity import Identity
from church_api.store import ContentStore

logger = logging.getLogger(__name__)

SETTINGS_KEY = "settings"


@dataclass(frozen=True)
class ResourceKind:
    kind: str
    route: str
    collection: str
    label: str
    created_field: str = "createdAt"
    required: tuple[str, ...] = ()

    @property
    def prefix(self) -> str:
        return f"{self.kind}:"

    def owns(self, record_id: str) -> bool:
        return record_id.startswith(self.prefix) and len(record_id) > len(self.prefix)

    @property
    def system_fields(self) -> frozenset[str]:
        return frozenset(
            {"id", "createdBy", self.created_field, "updatedAt", "updatedBy"}
        )


EVENTS = ResourceKind(
    kind="event", route="events", collection="events", label="Event",
    required=("title", "date"),
)
NEWS = ResourceKind(
    kind="news", route="news", collection="news", label="News",
    required=("title",),
)
MEDIA = ResourceKind(
    kind="media", route="media", collection="media", label="Media",
    required=("title",),
)
# The admin panel reads snake_case creation stamps for these two.
TESTIMONIES = ResourceKind(
    kind="testimony", route="testimonies", collection="testimonies",
    label="Testimony", created_field="created_at", required=("name", "testimony"),
)
LEADERS = ResourceKind(
    kind="leader", route="leaders", collection="leaders", label="Leader",
    created_field="created_at", required=("name", "role"),
)

RESOURCE_KINDS: tuple[ResourceKind, ...] = (EVENTS, NEWS, MEDIA, TESTIMONIES, LEADERS)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace(
        "+00:00", "Z"
    )


def new_record_id(resource: ResourceKind, now_ms: int | None = None) -> str:
    """Mint `<kind>:<millis>-<hex>`; sorts by creation time, never collides."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"{resource.prefix}{now_ms:013d}-{uuid.uuid4().hex[:8]}"


def _missing_fields(resource: ResourceKind, payload: dict) -> list[str]:
    missing = []
    for name in resource.required:
        value = payload.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(name)
    return missing


class ContentService:
    """Applies the collection rules for one resource kind on top of a store."""

    def __init__(self, store: ContentStore, resource: ResourceKind):
        self.store = store
        self.resource = resource

    def list(self, limit: Optional[int] = None) -> list[dict]:
        """Return every record of this kind, newest first."""
        created_field = self.resource.created_field
        records = self.store.get_by_prefix(self.resource.prefix)
        records.sort(
            key=lambda record: (
                str(record.get(created_field) or ""),
                str(record.get("id") or ""),
            ),
            reverse=True,
        )
        if limit is not None:
            records = records[:limit]
        return records

    def create(self, payload: dict, user: Identity) -> str:
        missing = _missing_fields(self.resource, payload)
        if missing:
            raise MissingFieldsError(missing)
        record_id = new_record_id(self.resource)
        record = {
            **payload,
            "id": record_id,
            self.resource.created_field: utc_now_iso(),
            "createdBy": user.id,
        }
        self.store.set(record_id, record)
        logger.info("Created %s by %s", record_id, user.id)
        return record_id

    def update(self, record_id: str, changes: dict, user: Identity) -> dict:
        if not self.resource.owns(record_id):
            raise RecordNotFoundError(f"{self.resource.label} not found")
        system_fields = self.resource.system_fields
        patch = {k: v for k, v in changes.items() if k not in system_fields}
        patch["updatedAt"] = utc_now_iso()
        patch["updatedBy"] = user.id
        merged = self.store.merge(record_id, patch)
        if merged is None:
            raise RecordNotFoundError(f"{self.resource.label} not found")
        logger.info("Updated %s by %s", record_id, user.id)
        return merged

    def delete(self, record_id: str, user: Identity) -> None:
        if not self.resource.owns(record_id):
            logger.info(
                "Ignoring delete of %s on /%s", record_id, self.resource.route
            )
            return
        self.store.delete(record_id)
        logger.info("Deleted %s by %s", record_id, user.id)


def get_site_settings(store: ContentStore) -> dict:
    return store.get(SETTINGS_KEY) or {}


def replace_site_settings(store: ContentStore, payload: dict, user: Identity) -> dict:
    """Replace the whole settings document; fields left out of `payload` are dropped."""
    document = {
        **payload,
        "updatedAt": utc_now_iso(),
        "updatedBy": user.id,
    }
    store.set(SETTINGS_KEY, document)
    logger.info("Replaced site settings by %s", user.id)
    return document
