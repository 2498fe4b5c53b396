"""
Identity provider abstraction for admin accounts.

The API consumes one capability on every mutation: resolve a bearer token to a
caller identity. Signup and password login are also routed through here so the
provider can be swapped between Supabase and an in-memory test double.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import threading
import uuid
from dataclasses import dataclass, field
from typing import Optional, Protocol

import requests

from church_api.errors import IdentityError, IdentityProviderError

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"


@dataclass
class Identity:
    id: str
    email: str
    user_metadata: dict = field(default_factory=dict)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "user_metadata": dict(self.user_metadata),
        }


class IdentityProvider(Protocol):
    """Defines the operations the API needs from the identity provider."""

    def resolve(self, token: str) -> Optional[Identity]:
        ...

    def create_user(self, email: str, password: str, name: str) -> Identity:
        ...

    def sign_in(self, email: str, password: str) -> tuple[str, Identity]:
        ...


def parse_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extract the credential from an `Authorization: Bearer <token>` header."""
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    return token or None


def _hash_password(password: str, salt: bytes) -> bytes:
    return hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, 100_000)


@dataclass
class _StoredUser:
    identity: Identity
    salt: bytes
    password_hash: bytes


class InMemoryIdentityProvider:
    """Test double issuing opaque tokens for locally created users."""

    def __init__(self):
        self.users: dict[str, _StoredUser] = {}
        self.tokens: dict[str, str] = {}
        self._lock = threading.Lock()

    def resolve(self, token: str) -> Optional[Identity]:
        email = self.tokens.get(token)
        if email is None:
            return None
        stored = self.users.get(email)
        return stored.identity if stored else None

    def create_user(self, email: str, password: str, name: str) -> Identity:
        normalized = email.strip().lower()
        with self._lock:
            if normalized in self.users:
                raise IdentityError(
                    "A user with this email address has already been registered"
                )
            if len(password) < 6:
                raise IdentityError("Password should be at least 6 characters")
            salt = secrets.token_bytes(16)
            identity = Identity(
                id=str(uuid.uuid4()),
                email=normalized,
                user_metadata={"name": name, "role": ADMIN_ROLE},
            )
            self.users[normalized] = _StoredUser(
                identity=identity,
                salt=salt,
                password_hash=_hash_password(password, salt),
            )
        return identity

    def sign_in(self, email: str, password: str) -> tuple[str, Identity]:
        stored = self.users.get(email.strip().lower())
        if not stored or not hmac.compare_digest(
            stored.password_hash, _hash_password(password, stored.salt)
        ):
            raise IdentityError("Invalid login credentials")
        return self.issue_token(stored.identity.email), stored.identity

    def issue_token(self, email: str) -> str:
        token = secrets.token_urlsafe(32)
        with self._lock:
            self.tokens[token] = email
        return token

    def reset(self) -> None:
        """Forget all users and tokens (useful in tests)."""
        with self._lock:
            self.users.clear()
            self.tokens.clear()


def _json_body(response: requests.Response) -> dict:
    try:
        body = response.json()
    except ValueError as exc:
        raise IdentityProviderError(
            f"Identity provider returned a non-JSON body (HTTP {response.status_code})"
        ) from exc
    if not isinstance(body, dict):
        raise IdentityProviderError("Identity provider returned an unexpected body")
    return body


def _identity_from_payload(payload) -> Identity:
    if not isinstance(payload, dict) or not payload.get("id"):
        raise IdentityProviderError("Identity provider response is missing the user id")
    return Identity(
        id=str(payload["id"]),
        email=payload.get("email") or "",
        user_metadata=payload.get("user_metadata") or {},
    )


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    return (
        body.get("msg")
        or body.get("error_description")
        or body.get("message")
        or body.get("error")
        or f"HTTP {response.status_code}"
    )


@dataclass
class SupabaseIdentityProvider:
    """
    Identity provider backed by a Supabase GoTrue server, using the service role key.
    """

    url: str
    service_role_key: str
    timeout: float = 10.0

    def __post_init__(self):
        self.url = self.url.rstrip("/")
        self._session = requests.Session()
        self._session.headers.update({"apikey": self.service_role_key})

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        try:
            return self._session.request(
                method, f"{self.url}/auth/v1{path}", timeout=self.timeout, **kwargs
            )
        except requests.RequestException as exc:
            raise IdentityProviderError(f"Identity provider unreachable: {exc}") from exc

    def resolve(self, token: str) -> Optional[Identity]:
        response = self._request(
            "GET", "/user", headers={"Authorization": f"Bearer {token}"}
        )
        if response.status_code in (401, 403, 404):
            return None
        if not response.ok:
            raise IdentityProviderError(_error_message(response))
        return _identity_from_payload(_json_body(response))

    def create_user(self, email: str, password: str, name: str) -> Identity:
        response = self._request(
            "POST",
            "/admin/users",
            headers={"Authorization": f"Bearer {self.service_role_key}"},
            json={
                "email": email,
                "password": password,
                "user_metadata": {"name": name, "role": ADMIN_ROLE},
                # No mail server is configured, so accounts start confirmed.
                "email_confirm": True,
            },
        )
        if response.status_code >= 500:
            raise IdentityProviderError(_error_message(response))
        if not response.ok:
            raise IdentityError(_error_message(response))
        return _identity_from_payload(_json_body(response))

    def sign_in(self, email: str, password: str) -> tuple[str, Identity]:
        response = self._request(
            "POST",
            "/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        if response.status_code >= 500:
            raise IdentityProviderError(_error_message(response))
        if not response.ok:
            raise IdentityError(_error_message(response))
        payload = _json_body(response)
        token = payload.get("access_token")
        if not token:
            raise IdentityProviderError("Identity provider did not return an access token")
        return token, _identity_from_payload(payload.get("user"))
