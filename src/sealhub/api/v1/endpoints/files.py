# src/sealhub/api/v1/endpoints/files.py
"""Encrypted file metadata for recipients."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, status

from sealhub.schemas.file import FileMetadataResponse
from sealhub.storage.blobs import BlobRef, BlobStore
from sealhub.storage.documents import DocumentStore, FileRecord

from ..dependencies import BlobStoreDep, CurrentUserIdDep, DocumentStoreDep

router = APIRouter(prefix="/files", tags=["files"])


async def _can_read(store: DocumentStore, record: FileRecord, user_id: str) -> bool:
    """Recipients, the uploader and members of the file's room may read it.

    Records that carry only the legacy single ``sealed_key`` name no
    recipients, so outside a room they are visible to their uploader alone.
    """
    if user_id in record.sealed_keys or user_id == record.uploaded_by:
        return True
    if record.room_id is None:
        return False
    room = await store.get_room(record.room_id)
    return room is not None and user_id in room.members


def _sign(blobs: BlobStore, key: str) -> str:
    return blobs.url_for(BlobRef.parse(key))


@router.get("/{file_id}", response_model=FileMetadataResponse)
async def get_file_metadata(
    file_id: str,
    current_user_id: CurrentUserIdDep,
    store: DocumentStoreDep,
    blobs: BlobStoreDep,
) -> FileMetadataResponse:
    """Return the metadata document with freshly signed blob URLs."""
    record = await store.get_file_record(file_id)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")
    if not await _can_read(store, record, current_user_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not a recipient of this file",
        )
    if record.is_expired():
        await store.mark_file_expired(file_id)
        raise HTTPException(status_code=status.HTTP_410_GONE, detail="File has expired")
    return FileMetadataResponse.model_validate(record).model_copy(
        update={
            "header_url": _sign(blobs, record.header_ref),
            "chunk_urls": [_sign(blobs, key) for key in record.chunk_refs],
        }
    )
