# src/sealhub/scripts/purge_expired.py
"""
Cron job that deletes expired uploads.

For every file record past its ``expires_at`` (or already marked expired),
the header and chunk blobs are removed first and the metadata document last,
so an interrupted run can simply be repeated.
"""
from __future__ import annotations

import asyncio
import logging

from sealhub.storage.blobs import BlobRef, BlobStore, get_blob_store
from sealhub.storage.documents import DocumentStore, FileRecord, SqlDocumentStore

logger = logging.getLogger(__name__)


async def purge_file(record: FileRecord, store: DocumentStore, blobs: BlobStore) -> None:
    for key in (record.header_ref, *record.chunk_refs):
        await blobs.delete(BlobRef.parse(key))
    await store.delete_file_record(record.file_id)
    logger.info("Purged expired file %s (%d chunks)", record.file_id, record.chunk_count)


async def purge_expired(
    store: DocumentStore | None = None,
    blobs: BlobStore | None = None,
) -> int:
    """Delete every expired file and return how many were purged."""
    store = store or SqlDocumentStore()
    blobs = blobs or get_blob_store()
    expired = await store.list_expired_files()
    for record in expired:
        await purge_file(record, store, blobs)
    return len(expired)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    purged = asyncio.run(purge_expired())
    print(f"Purged {purged} expired file(s)")
