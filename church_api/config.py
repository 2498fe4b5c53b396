"""
Configuration and settings for the content API.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])
    log_level: str = Field(default="INFO")

    # Content store (Postgres expected, any SQLAlchemy URL works)
    database_url: Optional[str] = Field(default=None)

    # Identity provider (Supabase GoTrue)
    supabase_url: Optional[str] = Field(default=None)
    supabase_service_role_key: Optional[str] = Field(default=None)
    identity_timeout_seconds: float = Field(default=10.0)

    # S3-compatible blob storage for uploads
    storage_endpoint: Optional[str] = Field(default=None)
    storage_region: Optional[str] = Field(default=None)
    storage_bucket: str = Field(default="church-site-uploads")
    aws_access_key_id: Optional[str] = Field(default=None)
    aws_secret_access_key: Optional[str] = Field(default=None)

    upload_max_bytes: int = Field(default=10 * 1024 * 1024)
    # SigV4 presigned URLs cannot outlive seven days.
    upload_url_expires_in: int = Field(default=7 * 24 * 3600, ge=1, le=604800)

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False,
        validation_alias="CHURCH_API_USE_IN_MEMORY_BACKENDS",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
