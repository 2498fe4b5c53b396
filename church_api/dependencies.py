"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException

from church_api.config import get_settings
from church_api.identity import (
    Identity,
    IdentityProvider,
    InMemoryIdentityProvider,
    SupabaseIdentityProvider,
    parse_bearer_token,
)
from church_api.storage import InMemoryStorageClient, S3StorageClient, StorageClient
from church_api.store import ContentStore, InMemoryContentStore, SqlContentStore

logger = logging.getLogger(__name__)

_content_store: ContentStore | None = None
_storage_client: StorageClient | None = None
_identity_provider: IdentityProvider | None = None


def get_content_store() -> ContentStore:
    """
    Return a singleton content store so records persist across requests.
    """
    global _content_store
    if _content_store:
        return _content_store

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        logger.info("Using in-memory content store")
        _content_store = InMemoryContentStore()
    else:
        _content_store = SqlContentStore(settings.database_url)
    return _content_store


def get_storage_client() -> StorageClient:
    global _storage_client
    if _storage_client:
        return _storage_client

    settings = get_settings()
    if (
        settings.use_in_memory_backends
        or not settings.aws_access_key_id
        or not settings.aws_secret_access_key
    ):
        _storage_client = InMemoryStorageClient()
    else:
        _storage_client = S3StorageClient(
            bucket=settings.storage_bucket,
            region=settings.storage_region or "",
            endpoint=settings.storage_endpoint or "",
            access_key_id=settings.aws_access_key_id,
            secret_access_key=settings.aws_secret_access_key,
        )
    return _storage_client


def get_identity_provider() -> IdentityProvider:
    global _identity_provider
    if _identity_provider:
        return _identity_provider

    settings = get_settings()
    if (
        settings.use_in_memory_backends
        or not settings.supabase_url
        or not settings.supabase_service_role_key
    ):
        logger.info("Using in-memory identity provider")
        _identity_provider = InMemoryIdentityProvider()
    else:
        _identity_provider = SupabaseIdentityProvider(
            url=settings.supabase_url,
            service_role_key=settings.supabase_service_role_key,
            timeout=settings.identity_timeout_seconds,
        )
    return _identity_provider


def get_current_user(
    authorization: Optional[str] = Header(default=None),
    identity: IdentityProvider = Depends(get_identity_provider),
) -> Identity:
    """Resolve the bearer token on the request, or fail with 401."""
    token = parse_bearer_token(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Unauthorized")
    user = identity.resolve(token)
    if user is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user
