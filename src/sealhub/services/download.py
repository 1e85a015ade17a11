# src/sealhub/services/download.py
"""Fetch, unwrap and decrypt a previously uploaded file."""

from __future__ import annotations

import functools
import hashlib
import logging
from dataclasses import dataclass, field

from sealhub.core.errors import (
    AuthenticationFailedError,
    FileExpiredError,
    RecipientKeyMissingError,
    TransferFailedError,
)
from sealhub.core.settings import settings
from sealhub.services.chunk_cipher import ChunkCipher
from sealhub.services.keys import AsymmetricKeyStore
from sealhub.storage.blobs import BlobRef, BlobStore, run_bounded
from sealhub.storage.documents import DocumentStore, FileRecord
from sealhub.utils.codec import base64_to_key

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DownloadedFile:
    file_id: str
    name: str
    mime_type: str
    file_hash: str
    data: bytes = field(repr=False)

    @property
    def size(self) -> int:
        return len(self.data)


def resolve_sealed_key(record: FileRecord, requester_id: str) -> str:
    """Pick the requester's sealed key, preferring the per-recipient entry.

    Raises:
        RecipientKeyMissingError: If neither a per-recipient nor a legacy key exists.
    """
    sealed = record.sealed_keys.get(requester_id) or record.sealed_key
    if not sealed:
        raise RecipientKeyMissingError(
            f"File {record.file_id} has no sealed key for {requester_id}"
        )
    return sealed


class DownloadOrchestrator:
    """Reassembles a file from its metadata document and blobs."""

    def __init__(
        self,
        store: DocumentStore,
        blobs: BlobStore,
        key_store: AsymmetricKeyStore,
        chunk_cipher: ChunkCipher | None = None,
        concurrency: int | None = None,
    ) -> None:
        self.store = store
        self.blobs = blobs
        self.key_store = key_store
        self.chunk_cipher = chunk_cipher or ChunkCipher(key_store.context)
        self.concurrency = concurrency or settings.transfer_concurrency

    async def get_record(self, file_id: str) -> FileRecord:
        """Load a live file record, applying expiry lazily.

        Raises:
            TransferFailedError: If the file id is unknown.
            FileExpiredError: If the record is past ``expires_at``.
        """
        record = await self.store.get_file_record(file_id)
        if record is None:
            raise TransferFailedError(f"File {file_id} not found")
        if record.is_expired():
            await self.store.mark_file_expired(file_id)
            raise FileExpiredError(f"File {file_id} has expired")
        return record

    async def _fetch_chunks(self, record: FileRecord) -> list[bytes]:
        return await run_bounded(
            [functools.partial(self.blobs.get, BlobRef.parse(key)) for key in record.chunk_refs],
            self.concurrency,
        )

    async def _header(self, record: FileRecord) -> bytes:
        if record.header_b64:
            try:
                return base64_to_key(record.header_b64)
            except ValueError:
                logger.warning("Inline header of %s is malformed; using blob", record.file_id)
        return await self.blobs.get(BlobRef.parse(record.header_ref))

    async def download_and_decrypt(
        self,
        file_id: str,
        requester_id: str,
        requester_private_key: bytes,
        requester_public_key: bytes,
    ) -> DownloadedFile:
        """Download ``file_id`` and return its plaintext.

        Raises:
            RecipientKeyMissingError: If no sealed key resolves to the requester.
            AuthenticationFailedError: If the key, header or any chunk was
                tampered with, or the result does not match ``file_hash``.
            FileExpiredError: If the file has expired.
            TransferFailedError: On unknown ids or storage failures.
        """
        record = await self.get_record(file_id)
        sealed_b64 = resolve_sealed_key(record, requester_id)
        try:
            sealed = base64_to_key(sealed_b64)
        except ValueError as exc:
            raise AuthenticationFailedError(f"Sealed key for {file_id} is malformed") from exc
        file_key = self.key_store.unseal(sealed, requester_private_key, requester_public_key)

        if len(record.chunk_refs) != record.chunk_count:
            raise TransferFailedError(
                f"File {file_id} lists {len(record.chunk_refs)} chunks, expected {record.chunk_count}"
            )
        header = await self._header(record)
        chunks = await self._fetch_chunks(record)

        data = self.chunk_cipher.decrypt_stream(header, chunks, file_key)
        if hashlib.sha256(data).hexdigest() != record.file_hash:
            raise AuthenticationFailedError(f"Content of {file_id} does not match its recorded hash")

        logger.info("Downloaded %s for %s (%d bytes)", file_id, requester_id, len(data))
        return DownloadedFile(
            file_id=record.file_id,
            name=record.original_name,
            mime_type=record.mime_type,
            file_hash=record.file_hash,
            data=data,
        )
