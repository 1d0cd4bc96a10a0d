"""Opaque blob storage for job attachments and listing cover images.

Supports two backends:
- S3-compatible object storage via boto3 (S3, Cloudflare R2, MinIO)
- Log-only (development), which logs each call and keeps nothing

Set BLOB_BACKEND=s3 and configure S3_* settings for production.

Keys are namespaced per uploader (``<namespace>/<user_id>/<uuid>_<name>``);
callers may only reference keys under their own prefix, see ``owns_key``.
Deletion after a commit goes through ``schedule_cleanup`` so it never
delays or fails the request that triggered it.
"""

import asyncio
import logging
import re
import uuid
from typing import Protocol

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from marketplace.config import settings
from marketplace.errors import DependencyFailure, ValidationFailed

logger = logging.getLogger(__name__)

JOB_ATTACHMENTS = "job-attachments"
SERVICE_COVERS = "service-covers"

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class BlobStore(Protocol):
    async def upload(self, key: str, data: bytes, content_type: str) -> None: ...

    async def delete(self, key: str) -> None: ...


class LogBlobStore:
    """Development store: logs each call, stores nothing."""

    async def upload(self, key: str, data: bytes, content_type: str) -> None:
        logger.info("BLOB upload key=%s type=%s bytes=%d", key, content_type, len(data))

    async def delete(self, key: str) -> None:
        logger.info("BLOB delete key=%s", key)


class S3BlobStore:
    """S3-compatible store. boto3 is synchronous, so calls run in a worker thread."""

    def __init__(self, client=None, bucket: str | None = None) -> None:  # type: ignore[no-untyped-def]
        self.bucket = bucket or settings.s3_bucket
        self._client = client

    @property
    def client(self):  # type: ignore[no-untyped-def]
        if self._client is None:
            self._client = boto3.client(
                "s3",
                endpoint_url=settings.s3_endpoint_url or None,
                aws_access_key_id=settings.s3_access_key_id or None,
                aws_secret_access_key=settings.s3_secret_access_key or None,
                config=Config(signature_version="s3v4"),
                region_name=settings.s3_region,
            )
        return self._client

    async def upload(self, key: str, data: bytes, content_type: str) -> None:
        try:
            await asyncio.to_thread(
                self.client.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as e:
            raise DependencyFailure(f"Blob upload failed for {key}: {e}")

    async def delete(self, key: str) -> None:
        # S3 treats deleting a missing key as success
        try:
            await asyncio.to_thread(self.client.delete_object, Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise DependencyFailure(f"Blob delete failed for {key}: {e}")


_store: BlobStore | None = None


def get_blob_store() -> BlobStore:
    global _store
    if _store is None:
        _store = S3BlobStore() if settings.blob_backend == "s3" else LogBlobStore()
    return _store


def set_blob_store(store: BlobStore | None) -> None:
    """Swap the process-wide store (tests use this to install a fake)."""
    global _store
    _store = store


def attachment_key(owner: str, filename: str, namespace: str = JOB_ATTACHMENTS) -> str:
    """Build a collision-free key like ``job-attachments/<owner>/<uuid>_<name>``."""
    safe = _UNSAFE_CHARS.sub("", filename)[:100] or "file"
    return f"{namespace}/{owner}/{uuid.uuid4().hex}_{safe}"


def owns_key(owner: uuid.UUID | str, key: str, namespace: str = JOB_ATTACHMENTS) -> bool:
    """True when ``key`` was issued to ``owner`` under ``namespace``."""
    prefix = f"{namespace}/{owner}/"
    if not key.startswith(prefix):
        return False
    name = key[len(prefix):]
    return bool(name) and "/" not in name and name not in (".", "..")


def require_owned_keys(
    owner: uuid.UUID | None, keys: list[str], namespace: str = JOB_ATTACHMENTS
) -> None:
    """Refuse blob keys the caller did not upload. Anonymous callers own none."""
    if not keys:
        return
    if owner is None:
        raise ValidationFailed("Files can only be attached by registered users")
    foreign = [key for key in keys if not owns_key(owner, key, namespace)]
    if foreign:
        raise ValidationFailed(f"Unknown attachment keys: {', '.join(foreign)}")


async def delete_blobs(keys: list[str]) -> int:
    """Best-effort deletion. Returns how many keys failed; failures are logged only."""
    store = get_blob_store()
    failed = 0
    for key in keys:
        try:
            await store.delete(key)
        except Exception:
            failed += 1
            logger.exception("Blob cleanup failed for %s", key)
    return failed


# Strong references so running cleanups are not garbage collected mid-flight
_pending: set[asyncio.Task] = set()


async def _cleanup(keys: list[str], reason: str) -> None:
    failed = await delete_blobs(keys)
    if failed:
        logger.warning("%s: %d of %d blobs left behind", reason, failed, len(keys))


def schedule_cleanup(keys: list[str], reason: str) -> asyncio.Task | None:
    """Delete blobs in the background. Must be called after the primary commit."""
    if not keys:
        return None
    task = asyncio.create_task(_cleanup(list(keys), reason))
    _pending.add(task)
    task.add_done_callback(_pending.discard)
    return task


async def drain() -> None:
    """Wait for every scheduled cleanup to finish."""
    while _pending:
        await asyncio.gather(*list(_pending), return_exceptions=True)
