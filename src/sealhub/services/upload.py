# src/sealhub/services/upload.py
"""Scan, preprocess, encrypt and store one file, then publish its metadata.

Stage order is fixed and each failure aborts everything after it:

    scan -> preprocess -> chunk-encrypt -> store blobs -> seal key -> metadata

A failed or cancelled upload is not resumable. Blobs written before the
failure are orphans; ``purge_expired`` never sees them because no metadata
document references them.
"""

from __future__ import annotations

import functools
import logging
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sealhub.core.errors import RecipientKeyMissingError, SecurityScanFailedError
from sealhub.core.settings import settings
from sealhub.db.time import utcnow
from sealhub.services.chunk_cipher import ChunkCipher
from sealhub.services.identity import IdentityService
from sealhub.services.keys import AsymmetricKeyStore
from sealhub.services.preprocess import FilePreprocessor, LocalFile
from sealhub.services.scanning import ScanOptions, ScanPipeline, ScanResult, ScanTarget
from sealhub.storage.blobs import BlobRef, BlobStore, chunk_path, header_path, run_bounded
from sealhub.storage.documents import DocumentStore, FileRecord
from sealhub.utils.codec import key_to_base64

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]

PROGRESS_SCAN = 5.0
PROGRESS_PREPROCESS = 15.0
PROGRESS_ENCRYPT = 30.0
PROGRESS_TRANSFER_START = 40.0
PROGRESS_TRANSFER_SPAN = 50.0
PROGRESS_METADATA = 95.0
PROGRESS_DONE = 100.0


@dataclass(frozen=True)
class UploadOptions:
    """Per-upload settings. ``None`` toggles fall back to the global settings.

    The uploader is always added to ``recipient_ids`` so they can read back
    their own file. ``recipient_public_key`` additionally fills the legacy
    single ``sealed_key`` field.
    """

    uploaded_by: str
    recipient_ids: Sequence[str] = ()
    recipient_public_key: bytes | None = None
    room_id: str | None = None
    expires_at: datetime | None = None
    strip_exif: bool | None = None
    reencode_images: bool | None = None
    scan: ScanOptions = field(default_factory=ScanOptions)
    concurrency: int | None = None
    on_progress: ProgressCallback | None = None


@dataclass(frozen=True)
class UploadResult:
    file_id: str
    record: FileRecord
    scan_result: ScanResult
    # Signed when the upload finishes; expires with the blob token.
    download_url: str | None = None

    @property
    def storage_path(self) -> str:
        return f"encrypted/{self.file_id}"

    @property
    def uploaded_at(self) -> datetime:
        return self.record.uploaded_at

    @property
    def expires_at(self) -> datetime | None:
        return self.record.expires_at


def default_expiry(now: datetime | None = None) -> datetime | None:
    if settings.file_expiry_days <= 0:
        return None
    return (now or utcnow()) + timedelta(days=settings.file_expiry_days)


class UploadOrchestrator:
    """Drives one file through the secure upload pipeline."""

    def __init__(
        self,
        store: DocumentStore,
        blobs: BlobStore,
        key_store: AsymmetricKeyStore,
        scanner: ScanPipeline | None = None,
        preprocessor: FilePreprocessor | None = None,
        chunk_cipher: ChunkCipher | None = None,
        identities: IdentityService | None = None,
    ) -> None:
        self.store = store
        self.blobs = blobs
        self.key_store = key_store
        self.scanner = scanner or ScanPipeline.from_settings()
        self.preprocessor = preprocessor or FilePreprocessor()
        self.chunk_cipher = chunk_cipher or ChunkCipher(key_store.context)
        self.identities = identities or IdentityService(store)

    async def _store_blobs(
        self,
        items: Sequence[tuple[str, bytes]],
        concurrency: int,
        report: ProgressCallback,
    ) -> list[BlobRef]:
        """Upload blobs with at most ``concurrency`` in flight; refs keep input order.

        The first failed write cancels the rest of the batch.
        """
        total = len(items)
        completed = 0

        async def put_one(path: str, data: bytes) -> BlobRef:
            nonlocal completed
            ref = await self.blobs.put(path, data)
            completed += 1
            logger.debug("Stored blob %s (%d/%d)", ref.key, completed, total)
            report(PROGRESS_TRANSFER_START + completed / total * PROGRESS_TRANSFER_SPAN)
            return ref

        return await run_bounded(
            [functools.partial(put_one, path, data) for path, data in items], concurrency
        )

    async def _seal_file_key(
        self, file_key: bytes, recipients: Sequence[str]
    ) -> dict[str, str]:
        sealed: dict[str, str] = {}
        for recipient_id in recipients:
            public_key = await self.identities.get_public_key(recipient_id)
            if public_key is None:
                logger.warning("Recipient %s has no published key; skipping", recipient_id)
                continue
            sealed[recipient_id] = key_to_base64(self.key_store.seal(file_key, public_key))
        return sealed

    async def upload(self, file: LocalFile, options: UploadOptions) -> UploadResult:
        """Run the full pipeline for ``file`` and return the stored record.

        Raises:
            SecurityScanFailedError: If any scanner reports the file unsafe.
            PreprocessingFailedError: If an image cannot be stripped.
            RecipientKeyMissingError: If no recipient key could be resolved.
            TransferFailedError: On blob or metadata storage failures.
        """
        last_progress = 0.0

        def report(value: float) -> None:
            nonlocal last_progress
            if options.on_progress is None or value < last_progress:
                return
            last_progress = value
            options.on_progress(value)

        # 1. Scan the file exactly as the user supplied it.
        report(PROGRESS_SCAN)
        scan_result = await self.scanner.scan(ScanTarget(file.name, file.data), options.scan)
        if not scan_result.clean:
            logger.info("Rejected upload of %s by %s", file.name, options.uploaded_by)
            raise SecurityScanFailedError(scan_result.threats)

        # 2. Strip metadata / recompress images.
        report(PROGRESS_PREPROCESS)
        processed = await self.preprocessor.prepare(
            file,
            strip_exif=options.strip_exif,
            reencode=options.reencode_images,
        )

        # 3. Encrypt under a fresh per-file key.
        report(PROGRESS_ENCRYPT)
        encrypted = self.chunk_cipher.encrypt_stream(processed.data)
        file_id = str(uuid.uuid4())
        file_hash = processed.sha256_hex()

        # 4. Store header and chunks.
        report(PROGRESS_TRANSFER_START)
        header_ref = await self.blobs.put(header_path(file_id), encrypted.header)
        chunk_refs = await self._store_blobs(
            [(chunk_path(file_id, index), chunk) for index, chunk in enumerate(encrypted.chunks)],
            options.concurrency or settings.transfer_concurrency,
            report,
        )

        # 5. Wrap the file key for every recipient.
        recipients = list(dict.fromkeys([options.uploaded_by, *options.recipient_ids]))
        sealed_keys = await self._seal_file_key(encrypted.key, recipients)
        legacy_sealed = (
            key_to_base64(self.key_store.seal(encrypted.key, options.recipient_public_key))
            if options.recipient_public_key is not None
            else None
        )
        if not sealed_keys and legacy_sealed is None:
            raise RecipientKeyMissingError(
                f"None of the recipients of {file.name} have a published public key"
            )

        # 6. Publish the immutable metadata document.
        report(PROGRESS_METADATA)
        uploaded_at = utcnow()
        record = FileRecord(
            file_id=file_id,
            original_name=processed.name,
            original_size=processed.size,
            mime_type=processed.mime_type,
            file_hash=file_hash,
            header_ref=header_ref.key,
            header_b64=key_to_base64(encrypted.header),
            chunk_refs=tuple(ref.key for ref in chunk_refs),
            chunk_count=encrypted.chunk_count,
            sealed_keys=sealed_keys,
            sealed_key=legacy_sealed,
            scan_result=scan_result.to_dict(),
            room_id=options.room_id,
            uploaded_by=options.uploaded_by,
            uploaded_at=uploaded_at,
            expires_at=options.expires_at or default_expiry(uploaded_at),
        )
        await self.store.put_file_record(record)

        report(PROGRESS_DONE)
        logger.info(
            "Uploaded %s as %s (%d chunks, %d recipients)",
            processed.name,
            file_id,
            record.chunk_count,
            len(sealed_keys),
        )
        return UploadResult(
            file_id=file_id,
            record=record,
            scan_result=scan_result,
            download_url=self.blobs.url_for(header_ref),
        )
