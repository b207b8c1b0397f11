"""
S3-compatible object store gateway.

Stores opaque blobs under namespaced keys and mints short-lived presigned
GET URLs; the bucket itself stays private. boto3 is blocking, so every SDK
call is pushed onto a worker thread.
"""
import asyncio
import logging
import time
from typing import Protocol

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from docshelf.config import Settings
from docshelf.exceptions import StorageError, UploadError
from docshelf.services.compression import COMPRESSED_SUFFIX
from docshelf.utils.filenames import sanitize_filename

logger = logging.getLogger("docshelf.storage")

DEFAULT_URL_TTL_SECONDS = 3600
_MISSING_KEY_CODES = {"NoSuchKey", "404", "NotFound"}


class ObjectStore(Protocol):
    async def put(self, key: str, data: bytes, content_type: str) -> None:
        ...

    async def signed_get_url(self, key: str, ttl_seconds: int | None = None) -> str:
        ...

    async def delete(self, key: str) -> None:
        ...


def build_object_key(owner_id: str, display_name: str, now_ms: int | None = None) -> str:
    """documents/{owner}/{epoch millis}-{name}.gz; the timestamp keeps re-uploads apart."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"documents/{owner_id}/{now_ms}-{sanitize_filename(display_name)}{COMPRESSED_SUFFIX}"


def build_s3_client(settings: Settings):
    return boto3.client(
        "s3",
        endpoint_url=settings.storage_endpoint or None,
        aws_access_key_id=settings.storage_access_key_id or None,
        aws_secret_access_key=settings.storage_secret_access_key or None,
        config=Config(signature_version="s3v4"),
        region_name=settings.storage_region,
    )


def _error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "UnknownError")


class S3ObjectStore:
    def __init__(self, client, bucket: str, *, default_url_ttl: int = DEFAULT_URL_TTL_SECONDS) -> None:
        self._client = client
        self._bucket = bucket
        self._default_url_ttl = default_url_ttl

    async def put(self, key: str, data: bytes, content_type: str) -> None:
        """Upsert ``data`` under ``key``; an existing object is overwritten."""
        try:
            await asyncio.to_thread(
                self._client.put_object,
                Bucket=self._bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as exc:
            logger.error("Error uploading %s: %s", key, exc)
            raise UploadError() from exc
        logger.info("Stored %s (%d bytes)", key, len(data))

    async def signed_get_url(self, key: str, ttl_seconds: int | None = None) -> str:
        expires_in = ttl_seconds if ttl_seconds is not None else self._default_url_ttl
        try:
            return await asyncio.to_thread(
                self._client.generate_presigned_url,
                "get_object",
                Params={"Bucket": self._bucket, "Key": key},
                ExpiresIn=expires_in,
            )
        except (ClientError, BotoCoreError) as exc:
            logger.error("Error generating signed URL for %s: %s", key, exc)
            raise StorageError("Failed to generate download URL") from exc

    async def delete(self, key: str) -> None:
        """Delete ``key``. Deleting an absent key is indistinguishable from success."""
        try:
            await asyncio.to_thread(self._client.delete_object, Bucket=self._bucket, Key=key)
        except ClientError as exc:
            if _error_code(exc) in _MISSING_KEY_CODES:
                logger.info("Delete of %s: already gone", key)
                return
            logger.error("Error deleting %s: %s", key, exc)
            raise StorageError("Failed to delete document") from exc
        except BotoCoreError as exc:
            logger.error("Error deleting %s: %s", key, exc)
            raise StorageError("Failed to delete document") from exc
        logger.info("Deleted %s", key)

    def ensure_bucket(self) -> None:
        """Create the bucket if it does not exist yet. Blocking; run at startup."""
        try:
            self._client.head_bucket(Bucket=self._bucket)
            logger.info("Bucket %s exists", self._bucket)
        except ClientError as exc:
            match _error_code(exc):
                case "404" | "NoSuchBucket" | "NotFound":
                    logger.info("Bucket %s does not exist, creating it", self._bucket)
                    try:
                        self._client.create_bucket(Bucket=self._bucket)
                    except ClientError as create_error:
                        logger.error("Failed to create bucket %r: %s", self._bucket, create_error)
                        raise StorageError("Failed to create bucket") from create_error
                case "403":
                    raise StorageError(f"Permission denied for bucket {self._bucket}") from exc
                case _:
                    logger.error("Unexpected error checking bucket %r: %s", self._bucket, exc)
                    raise StorageError() from exc
