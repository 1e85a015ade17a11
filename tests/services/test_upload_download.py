from __future__ import annotations

import asyncio
import hashlib
import os
from datetime import timedelta

import pytest

from sealhub.core.errors import (
    AuthenticationFailedError,
    FileExpiredError,
    RecipientKeyMissingError,
    SecurityScanFailedError,
    TransferFailedError,
)
from sealhub.db.time import utcnow
from sealhub.scripts.purge_expired import purge_expired
from sealhub.services.crypto import KeyPair
from sealhub.services.download import DownloadOrchestrator
from sealhub.services.keys import AsymmetricKeyStore
from sealhub.services.preprocess import LocalFile
from sealhub.services.scanning import EICAR_SIGNATURE, ScanPipeline, SignatureScanner
from sealhub.services.upload import UploadOptions, UploadOrchestrator
from sealhub.models import FILE_STATUS_EXPIRED
from sealhub.storage.blobs import BlobRef, MemoryBlobStore
from sealhub.storage.documents import SqlDocumentStore

KIB = 1024


@pytest.fixture()
def uploader(
    document_store: SqlDocumentStore, blob_store: MemoryBlobStore, key_store: AsymmetricKeyStore
) -> UploadOrchestrator:
    return UploadOrchestrator(
        document_store,
        blob_store,
        key_store,
        scanner=ScanPipeline([SignatureScanner()]),
    )


@pytest.fixture()
def downloader(
    document_store: SqlDocumentStore, blob_store: MemoryBlobStore, key_store: AsymmetricKeyStore
) -> DownloadOrchestrator:
    return DownloadOrchestrator(document_store, blob_store, key_store)


async def _download(downloader: DownloadOrchestrator, file_id: str, user_id: str, keys: KeyPair):
    return await downloader.download_and_decrypt(file_id, user_id, keys.private_key, keys.public_key)


@pytest.mark.asyncio
async def test_upload_then_download_roundtrip(
    uploader: UploadOrchestrator,
    downloader: DownloadOrchestrator,
    published_users: dict[str, KeyPair],
) -> None:
    data = os.urandom(200 * KIB)
    progress: list[float] = []
    options = UploadOptions(
        uploaded_by="alice", recipient_ids=["bob"], on_progress=progress.append
    )

    result = await uploader.upload(LocalFile("archive.bin", data), options)

    record = result.record
    assert record.chunk_count == 4
    assert len(record.chunk_refs) == 4
    assert set(record.sealed_keys) == {"alice", "bob"}
    assert record.file_hash == hashlib.sha256(data).hexdigest()
    assert record.scan_result["clean"] is True
    assert record.scan_result["scan_method"] == "signature"
    assert record.expires_at is not None
    assert result.storage_path == f"encrypted/{result.file_id}"

    assert progress == sorted(progress)
    assert progress[0] == 5.0
    assert progress[-1] == 100.0
    assert {15.0, 30.0, 40.0, 90.0, 95.0} <= set(progress)

    for user_id in ("alice", "bob"):
        downloaded = await _download(downloader, result.file_id, user_id, published_users[user_id])
        assert downloaded.data == data
        assert downloaded.name == "archive.bin"
        assert downloaded.file_hash == record.file_hash


@pytest.mark.asyncio
async def test_empty_file_roundtrip(
    uploader: UploadOrchestrator,
    downloader: DownloadOrchestrator,
    published_users: dict[str, KeyPair],
) -> None:
    result = await uploader.upload(LocalFile("empty.txt", b"", "text/plain"), UploadOptions("alice"))

    assert result.record.chunk_count == 1
    downloaded = await _download(downloader, result.file_id, "alice", published_users["alice"])
    assert downloaded.data == b""


@pytest.mark.asyncio
async def test_recipient_without_published_key_is_skipped(
    uploader: UploadOrchestrator, published_users: dict[str, KeyPair]
) -> None:
    result = await uploader.upload(
        LocalFile("notes.txt", b"notes", "text/plain"),
        UploadOptions("alice", recipient_ids=["bob", "nobody"]),
    )

    assert set(result.record.sealed_keys) == {"alice", "bob"}


@pytest.mark.asyncio
async def test_upload_without_any_resolvable_recipient_fails(uploader: UploadOrchestrator) -> None:
    with pytest.raises(RecipientKeyMissingError):
        await uploader.upload(
            LocalFile("notes.txt", b"notes", "text/plain"),
            UploadOptions("ghost", recipient_ids=["phantom"]),
        )


@pytest.mark.asyncio
async def test_infected_upload_is_rejected_before_storage(
    uploader: UploadOrchestrator, blob_store: MemoryBlobStore, published_users: dict[str, KeyPair]
) -> None:
    progress: list[float] = []

    with pytest.raises(SecurityScanFailedError) as excinfo:
        await uploader.upload(
            LocalFile("eicar.com", EICAR_SIGNATURE),
            UploadOptions("alice", on_progress=progress.append),
        )

    assert excinfo.value.threats[0].name == "EICAR-Test-File"
    assert progress == [5.0]


@pytest.mark.asyncio
async def test_legacy_single_recipient_key(
    uploader: UploadOrchestrator,
    downloader: DownloadOrchestrator,
    published_users: dict[str, KeyPair],
) -> None:
    bob = published_users["bob"]
    result = await uploader.upload(
        LocalFile("memo.txt", b"for bob", "text/plain"),
        UploadOptions("unpublished-sender", recipient_public_key=bob.public_key),
    )

    assert result.record.sealed_keys == {}
    assert result.record.sealed_key is not None
    downloaded = await _download(downloader, result.file_id, "bob", bob)
    assert downloaded.data == b"for bob"


@pytest.mark.asyncio
async def test_non_recipient_cannot_download(
    uploader: UploadOrchestrator,
    downloader: DownloadOrchestrator,
    published_users: dict[str, KeyPair],
    carol_keys: KeyPair,
) -> None:
    result = await uploader.upload(LocalFile("secret.txt", b"top secret"), UploadOptions("alice"))

    with pytest.raises(RecipientKeyMissingError):
        await _download(downloader, result.file_id, "carol", carol_keys)


@pytest.mark.asyncio
async def test_tampered_chunk_is_detected(
    uploader: UploadOrchestrator,
    downloader: DownloadOrchestrator,
    blob_store: MemoryBlobStore,
    published_users: dict[str, KeyPair],
) -> None:
    result = await uploader.upload(LocalFile("data.bin", os.urandom(100 * KIB)), UploadOptions("alice"))
    ref = BlobRef.parse(result.record.chunk_refs[1])
    corrupted = bytearray(await blob_store.get(ref))
    corrupted[10] ^= 0xFF
    await blob_store.put(ref.path, bytes(corrupted))

    with pytest.raises(AuthenticationFailedError):
        await _download(downloader, result.file_id, "alice", published_users["alice"])


@pytest.mark.asyncio
async def test_missing_chunk_blob_fails_transfer(
    uploader: UploadOrchestrator,
    downloader: DownloadOrchestrator,
    blob_store: MemoryBlobStore,
    published_users: dict[str, KeyPair],
) -> None:
    result = await uploader.upload(LocalFile("data.bin", os.urandom(10 * KIB)), UploadOptions("alice"))
    await blob_store.delete(BlobRef.parse(result.record.chunk_refs[0]))

    with pytest.raises(TransferFailedError):
        await _download(downloader, result.file_id, "alice", published_users["alice"])


@pytest.mark.asyncio
async def test_unknown_file_id(downloader: DownloadOrchestrator, published_users: dict[str, KeyPair]) -> None:
    with pytest.raises(TransferFailedError):
        await _download(downloader, "does-not-exist", "alice", published_users["alice"])


@pytest.mark.asyncio
async def test_expired_file_is_marked_and_refused(
    uploader: UploadOrchestrator,
    downloader: DownloadOrchestrator,
    document_store: SqlDocumentStore,
    published_users: dict[str, KeyPair],
) -> None:
    result = await uploader.upload(
        LocalFile("old.txt", b"stale"),
        UploadOptions("alice", expires_at=utcnow() - timedelta(minutes=1)),
    )

    with pytest.raises(FileExpiredError):
        await _download(downloader, result.file_id, "alice", published_users["alice"])

    record = await document_store.get_file_record(result.file_id)
    assert record is not None
    assert record.status == FILE_STATUS_EXPIRED


@pytest.mark.asyncio
async def test_purge_expired_removes_blobs_and_metadata(
    uploader: UploadOrchestrator,
    document_store: SqlDocumentStore,
    blob_store: MemoryBlobStore,
    published_users: dict[str, KeyPair],
) -> None:
    expired = await uploader.upload(
        LocalFile("old.txt", b"stale"),
        UploadOptions("alice", expires_at=utcnow() - timedelta(minutes=1)),
    )
    live = await uploader.upload(LocalFile("new.txt", b"fresh"), UploadOptions("alice"))

    purged = await purge_expired(document_store, blob_store)

    assert purged == 1
    assert await document_store.get_file_record(expired.file_id) is None
    with pytest.raises(TransferFailedError):
        await blob_store.get(BlobRef.parse(expired.record.header_ref))
    assert await document_store.get_file_record(live.file_id) is not None
    assert await blob_store.get(BlobRef.parse(live.record.chunk_refs[0]))


@pytest.mark.asyncio
async def test_blobs_are_stored_under_the_file_prefix(
    mocker,
    uploader: UploadOrchestrator,
    blob_store: MemoryBlobStore,
    published_users: dict[str, KeyPair],
) -> None:
    put_spy = mocker.spy(blob_store, "put")

    result = await uploader.upload(
        LocalFile("data.bin", os.urandom(130 * KIB)),
        UploadOptions("alice", concurrency=2),
    )

    paths = sorted(call.args[0] for call in put_spy.call_args_list)
    prefix = f"encrypted/{result.file_id}"
    assert paths == [
        f"{prefix}/chunk_0.bin",
        f"{prefix}/chunk_1.bin",
        f"{prefix}/chunk_2.bin",
        f"{prefix}/header.bin",
    ]
    assert [BlobRef.parse(key).path for key in result.record.chunk_refs] == paths[:3]


class SlowFailingBlobStore(MemoryBlobStore):
    """Fails the first chunk at once and holds every other chunk briefly."""

    def __init__(self) -> None:
        super().__init__(bucket="encrypted")
        self.fail_reads = False
        self.written: list[str] = []
        self.read: list[str] = []

    async def put(self, path: str, data: bytes) -> BlobRef:
        if path.endswith("/chunk_0.bin"):
            raise TransferFailedError(f"write rejected: {path}")
        if "/chunk_" in path:
            await asyncio.sleep(0.05)
        ref = await super().put(path, data)
        self.written.append(path)
        return ref

    async def get(self, ref: BlobRef) -> bytes:
        if self.fail_reads and ref.path.endswith("/chunk_0.bin"):
            raise TransferFailedError(f"read rejected: {ref.key}")
        await asyncio.sleep(0.05)
        data = await super().get(ref)
        self.read.append(ref.path)
        return data


@pytest.mark.asyncio
async def test_failed_chunk_write_cancels_the_rest_of_the_upload(
    document_store: SqlDocumentStore,
    key_store: AsymmetricKeyStore,
    published_users: dict[str, KeyPair],
) -> None:
    blobs = SlowFailingBlobStore()
    uploader = UploadOrchestrator(document_store, blobs, key_store, scanner=ScanPipeline([]))

    with pytest.raises(TransferFailedError, match="chunk_0"):
        await uploader.upload(
            LocalFile("big.bin", os.urandom(200 * KIB)),
            UploadOptions("alice", concurrency=4),
        )
    await asyncio.sleep(0.1)

    assert [path for path in blobs.written if "/chunk_" in path] == []


@pytest.mark.asyncio
async def test_failed_chunk_read_cancels_the_rest_of_the_download(
    document_store: SqlDocumentStore,
    key_store: AsymmetricKeyStore,
    published_users: dict[str, KeyPair],
) -> None:
    blobs = SlowFailingBlobStore()
    uploader = UploadOrchestrator(
        document_store, MemoryBlobStore(bucket="encrypted"), key_store, scanner=ScanPipeline([])
    )
    result = await uploader.upload(
        LocalFile("big.bin", os.urandom(200 * KIB)), UploadOptions("alice")
    )
    for key in result.record.chunk_refs:
        ref = BlobRef.parse(key)
        await MemoryBlobStore.put(blobs, ref.path, await uploader.blobs.get(ref))
    blobs.fail_reads = True
    alice = published_users["alice"]
    downloader = DownloadOrchestrator(document_store, blobs, key_store, concurrency=4)

    with pytest.raises(TransferFailedError, match="chunk_0"):
        await downloader.download_and_decrypt(
            result.file_id, "alice", alice.private_key, alice.public_key
        )
    await asyncio.sleep(0.1)

    assert blobs.read == []
