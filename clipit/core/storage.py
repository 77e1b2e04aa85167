"""
Object storage access.

``BlobStore`` is the narrow contract the upload pipeline depends on;
``R2BlobStore`` implements it on Cloudflare R2 through boto3. Every failure
surfaces as ``StorageUnavailable``; transient errors are retried by botocore
(standard retry mode) before that happens.
"""

from typing import Any, Dict, List, Optional, Protocol
from urllib.parse import quote

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from clipit.config import (
    PRESIGNED_URL_EXPIRY,
    R2_ACCESS_KEY_ID,
    R2_ENDPOINT_URL,
    R2_MAX_ATTEMPTS,
    R2_PUBLIC_BASE_URL,
    R2_SECRET_ACCESS_KEY,
    logger,
)
from clipit.core.uploads.exceptions import StorageUnavailable

_r2_client: Optional[Any] = None


def get_r2_client():
    global _r2_client
    if _r2_client is None:
        session = boto3.session.Session()
        _r2_client = session.client(
            "s3",
            endpoint_url=R2_ENDPOINT_URL or None,
            aws_access_key_id=R2_ACCESS_KEY_ID or None,
            aws_secret_access_key=R2_SECRET_ACCESS_KEY or None,
            # Cloudflare R2 requires signature version 4 (sigv4)
            config=Config(
                signature_version="s3v4",
                retries={"max_attempts": R2_MAX_ATTEMPTS, "mode": "standard"},
            ),
            region_name="auto",
        )
    return _r2_client


class BlobStore(Protocol):
    def put(self, bucket: str, key: str, data: bytes, content_type: str) -> None: ...

    def get(self, bucket: str, key: str) -> bytes: ...

    def list(self, bucket: str, prefix: str) -> List[Dict[str, str]]: ...

    def delete(self, bucket: str, key: str) -> None: ...

    def public_url(self, bucket: str, key: str) -> str: ...


class R2BlobStore:
    """BlobStore backed by an S3-compatible R2 account, one R2 bucket per logical bucket."""

    def __init__(self, client: Optional[Any] = None, public_base_url: str = R2_PUBLIC_BASE_URL):
        self._client = client
        self._public_base_url = public_base_url.rstrip("/")

    @property
    def client(self):
        if self._client is None:
            self._client = get_r2_client()
        return self._client

    def put(self, bucket: str, key: str, data: bytes, content_type: str) -> None:
        try:
            self.client.put_object(Bucket=bucket, Key=key, Body=data, ContentType=content_type)
        except (ClientError, BotoCoreError) as exc:
            logger.error("Failed to upload %s/%s: %s", bucket, key, exc)
            raise StorageUnavailable(f"Failed to store {bucket}/{key}") from exc

    def get(self, bucket: str, key: str) -> bytes:
        try:
            obj = self.client.get_object(Bucket=bucket, Key=key)
            return obj["Body"].read()
        except (ClientError, BotoCoreError) as exc:
            logger.error("Failed to get object %s/%s: %s", bucket, key, exc)
            raise StorageUnavailable(f"Failed to read {bucket}/{key}") from exc

    def list(self, bucket: str, prefix: str) -> List[Dict[str, str]]:
        """List objects under ``prefix``; ``name`` is the last path segment."""
        if prefix and not prefix.endswith("/"):
            prefix = prefix + "/"
        entries: List[Dict[str, str]] = []
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
                for obj in page.get("Contents", []):
                    key = obj["Key"]
                    entries.append({"key": key, "name": key.rsplit("/", 1)[-1]})
        except (ClientError, BotoCoreError) as exc:
            logger.error("Failed to list %s/%s: %s", bucket, prefix, exc)
            raise StorageUnavailable(f"Failed to list {bucket}/{prefix}") from exc
        return entries

    def delete(self, bucket: str, key: str) -> None:
        try:
            self.client.delete_object(Bucket=bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            logger.error("Failed to delete %s/%s: %s", bucket, key, exc)
            raise StorageUnavailable(f"Failed to delete {bucket}/{key}") from exc

    def public_url(self, bucket: str, key: str) -> str:
        if self._public_base_url:
            return f"{self._public_base_url}/{bucket}/{quote(key)}"
        try:
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": bucket, "Key": key},
                ExpiresIn=PRESIGNED_URL_EXPIRY,
            )
        except (ClientError, BotoCoreError) as exc:
            logger.error("Failed to generate presigned URL for %s/%s: %s", bucket, key, exc)
            raise StorageUnavailable(f"Failed to build URL for {bucket}/{key}") from exc


_blob_store: Optional[R2BlobStore] = None


def get_blob_store() -> R2BlobStore:
    """Get the process-wide R2 blob store."""
    global _blob_store
    if _blob_store is None:
        _blob_store = R2BlobStore()
    return _blob_store
