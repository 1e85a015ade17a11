# src/sealhub/storage/blobs.py
"""Blob-store contract: opaque bytes in, reference and signed URL out."""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from functools import lru_cache
from pathlib import Path
from typing import Protocol, TypeVar
from urllib.parse import quote

from jose import JWTError, jwt

from sealhub.core.errors import TransferFailedError
from sealhub.core.settings import settings

logger = logging.getLogger(__name__)

BLOB_TOKEN_SCOPE = "blob:read"


@dataclass(frozen=True)
class BlobRef:
    """Location of one stored blob."""

    bucket: str
    path: str

    @property
    def key(self) -> str:
        return f"{self.bucket}/{self.path}"

    @classmethod
    def parse(cls, key: str) -> BlobRef:
        bucket, _, path = key.partition("/")
        if not bucket or not path:
            raise ValueError(f"Invalid blob reference: {key!r}")
        return cls(bucket=bucket, path=path)


def header_path(file_id: str) -> str:
    return f"encrypted/{file_id}/header.bin"


def chunk_path(file_id: str, index: int) -> str:
    return f"encrypted/{file_id}/chunk_{index}.bin"


def create_blob_token(key: str, expires_in: int | None = None) -> str:
    """Sign a short-lived read token bound to one blob key."""
    ttl = settings.signed_url_expiry_seconds if expires_in is None else expires_in
    payload = {
        "sub": key,
        "scope": BLOB_TOKEN_SCOPE,
        "exp": datetime.now(UTC) + timedelta(seconds=max(1, ttl)),
    }
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def verify_blob_token(key: str, token: str) -> bool:
    """Return True if ``token`` is an unexpired read grant for ``key``."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return False
    return payload.get("sub") == key and payload.get("scope") == BLOB_TOKEN_SCOPE


class BlobStore(Protocol):
    """Object storage collaborator."""

    bucket: str

    async def put(self, path: str, data: bytes) -> BlobRef: ...

    async def get(self, ref: BlobRef) -> bytes: ...

    async def delete(self, ref: BlobRef) -> None: ...

    def url_for(self, ref: BlobRef) -> str: ...


def signed_url(ref: BlobRef) -> str:
    base = settings.public_base_url.rstrip("/")
    token = create_blob_token(ref.key)
    return f"{base}/api/v1/blobs/{quote(ref.key)}?token={token}"


T = TypeVar("T")


async def run_bounded(
    operations: Sequence[Callable[[], Awaitable[T]]], concurrency: int
) -> list[T]:
    """Run blob transfers with at most ``concurrency`` in flight.

    Results keep input order. The first failure cancels every transfer still
    pending or running, so nothing is written after the batch has failed.

    Raises:
        TransferFailedError: For the first failing transfer.
    """
    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def bounded(operation: Callable[[], Awaitable[T]]) -> T:
        async with semaphore:
            return await operation()

    try:
        async with asyncio.TaskGroup() as group:
            tasks = [group.create_task(bounded(operation)) for operation in operations]
    except ExceptionGroup as exc:
        first = exc.exceptions[0]
        if isinstance(first, TransferFailedError):
            raise first from None
        raise TransferFailedError(f"Blob transfer failed: {first}") from first
    return [task.result() for task in tasks]


class MemoryBlobStore:
    """Keeps blobs in a dict; used for tests and ephemeral deployments."""

    def __init__(self, bucket: str | None = None) -> None:
        self.bucket = bucket or settings.storage_bucket
        self._blobs: dict[str, bytes] = {}

    async def put(self, path: str, data: bytes) -> BlobRef:
        ref = BlobRef(self.bucket, path)
        self._blobs[ref.key] = bytes(data)
        return ref

    async def get(self, ref: BlobRef) -> bytes:
        try:
            return self._blobs[ref.key]
        except KeyError as exc:
            raise TransferFailedError(f"Blob not found: {ref.key}") from exc

    async def delete(self, ref: BlobRef) -> None:
        self._blobs.pop(ref.key, None)

    def url_for(self, ref: BlobRef) -> str:
        return signed_url(ref)


class LocalBlobStore:
    """Stores blobs as files under ``<root>/<bucket>/<path>``."""

    def __init__(self, root: str | os.PathLike[str] | None = None, bucket: str | None = None) -> None:
        self.bucket = bucket or settings.storage_bucket
        self.root = Path(root or settings.storage_root).resolve()

    def _resolve(self, ref: BlobRef) -> Path:
        base = (self.root / ref.bucket).resolve()
        target = (base / ref.path).resolve()
        if not target.is_relative_to(base):
            raise TransferFailedError(f"Blob path escapes bucket: {ref.path}")
        return target

    @staticmethod
    def _write(target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)

    async def put(self, path: str, data: bytes) -> BlobRef:
        ref = BlobRef(self.bucket, path)
        target = self._resolve(ref)
        try:
            await asyncio.to_thread(self._write, target, bytes(data))
        except OSError as exc:
            raise TransferFailedError(f"Could not store blob {ref.key}: {exc}") from exc
        return ref

    async def get(self, ref: BlobRef) -> bytes:
        target = self._resolve(ref)
        try:
            return await asyncio.to_thread(target.read_bytes)
        except FileNotFoundError as exc:
            raise TransferFailedError(f"Blob not found: {ref.key}") from exc
        except OSError as exc:
            raise TransferFailedError(f"Could not read blob {ref.key}: {exc}") from exc

    async def delete(self, ref: BlobRef) -> None:
        target = self._resolve(ref)
        await asyncio.to_thread(target.unlink, True)

    def url_for(self, ref: BlobRef) -> str:
        return signed_url(ref)


def build_blob_store() -> BlobStore:
    """Build the blob store selected by ``STORAGE_PROVIDER``."""
    if settings.storage_provider == "memory":
        return MemoryBlobStore()
    return LocalBlobStore()


@lru_cache(maxsize=1)
def get_blob_store() -> BlobStore:
    """Return the shared blob store used by the HTTP layer."""
    store = build_blob_store()
    logger.info("Using %s blob store (bucket=%s)", type(store).__name__, store.bucket)
    return store
