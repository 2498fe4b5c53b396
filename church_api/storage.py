"""
Blob storage abstraction for uploaded files (S3-compatible) and in-memory testing.
"""

from __future__ import annotations

import logging
import random
import string
import time
from dataclasses import dataclass, field
from typing import Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from church_api.errors import BlobStorageError

logger = logging.getLogger(__name__)

_ALREADY_EXISTS_CODES = {"BucketAlreadyOwnedByYou", "BucketAlreadyExists"}
_SUFFIX_ALPHABET = string.digits + string.ascii_lowercase


class StorageClient(Protocol):
    """Defines the operations the upload endpoint needs from object storage."""

    def ensure_bucket(self) -> None:
        ...

    def upload_bytes(self, path: str, data: bytes, content_type: str) -> None:
        ...

    def presign_get(self, path: str, expires_in: int = 3600) -> str:
        ...


def build_object_name(filename: str | None, now_ms: int | None = None) -> str:
    """
    Return `<millis>-<random base36>.<ext>` for an uploaded file.

    The extension is the last dot segment of the client filename, or `bin`.
    """
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    suffix = "".join(random.choices(_SUFFIX_ALPHABET, k=6))
    ext = "bin"
    if filename and "." in filename:
        candidate = filename.rsplit(".", 1)[1].strip().lower()
        if candidate and candidate.isalnum():
            ext = candidate
    return f"{now_ms}-{suffix}.{ext}"


@dataclass
class InMemoryStorageClient:
    """Test double for storage interactions."""

    base_url: str = "https://example.test/storage"
    stored_objects: dict = field(default_factory=dict)
    content_types: dict = field(default_factory=dict)
    bucket_ready: bool = False

    def ensure_bucket(self) -> None:
        self.bucket_ready = True

    def upload_bytes(self, path: str, data: bytes, content_type: str) -> None:
        if path in self.stored_objects:
            raise BlobStorageError(f"The resource already exists: {path}")
        self.stored_objects[path] = bytes(data)
        self.content_types[path] = content_type

    def presign_get(self, path: str, expires_in: int = 3600) -> str:
        return f"{self.base_url}/{path}?op=get&expires={expires_in}"

    def get_bytes(self, path: str) -> bytes:
        stored = self.stored_objects.get(path)
        if stored is None:
            raise FileNotFoundError(path)
        return stored


@dataclass
class S3StorageClient:
    """
    S3-compatible storage client for uploaded files.
    """

    bucket: str
    region: str
    endpoint: str
    access_key_id: str
    secret_access_key: str

    def __post_init__(self):
        config = Config(signature_version="s3v4")
        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint or None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            config=config,
        )
        self._bucket_checked = False

    def ensure_bucket(self) -> None:
        """Create the bucket on first use; an existing bucket counts as success."""
        if self._bucket_checked:
            return
        try:
            self._client.head_bucket(Bucket=self.bucket)
        except ClientError:
            try:
                kwargs = {"Bucket": self.bucket}
                if self.region and self.region != "us-east-1":
                    kwargs["CreateBucketConfiguration"] = {
                        "LocationConstraint": self.region
                    }
                self._client.create_bucket(**kwargs)
                logger.info("Created storage bucket: %s", self.bucket)
            except ClientError as exc:
                code = exc.response.get("Error", {}).get("Code")
                if code not in _ALREADY_EXISTS_CODES:
                    # Upload still gets a chance to report the real fault.
                    logger.warning(
                        "Bucket initialization error (continuing): %s", exc
                    )
                    return
        except BotoCoreError as exc:
            logger.warning("Bucket initialization error (continuing): %s", exc)
            return
        self._bucket_checked = True

    def upload_bytes(self, path: str, data: bytes, content_type: str) -> None:
        try:
            self._client.put_object(
                Bucket=self.bucket,
                Key=path,
                Body=data,
                ContentType=content_type,
                IfNoneMatch="*",
            )
        except (BotoCoreError, ClientError) as exc:
            raise BlobStorageError(str(exc)) from exc

    def presign_get(self, path: str, expires_in: int = 3600) -> str:
        try:
            return self._client.generate_presigned_url(
                ClientMethod="get_object",
                Params={"Bucket": self.bucket, "Key": path},
                ExpiresIn=expires_in,
            )
        except (BotoCoreError, ClientError) as exc:
            raise BlobStorageError(f"Failed to generate URL: {exc}") from exc
