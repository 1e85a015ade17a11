# src/sealhub/storage/__init__.py
"""Collaborator contracts for documents and blobs, plus reference backends."""

from .blobs import BlobRef, BlobStore, LocalBlobStore, MemoryBlobStore, build_blob_store
from .documents import (
    DocumentStore,
    FileRecord,
    IdentityRecord,
    RoomRecord,
    SealedRoomKeyRecord,
    SqlDocumentStore,
    StoredMessage,
)

__all__ = [
    "BlobRef", "BlobStore", "LocalBlobStore", "MemoryBlobStore", "build_blob_store",
    "DocumentStore", "SqlDocumentStore",
    "FileRecord", "IdentityRecord", "RoomRecord", "SealedRoomKeyRecord", "StoredMessage",
]
