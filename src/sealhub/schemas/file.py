"""Encrypted file metadata Pydantic schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class FileMetadataResponse(BaseModel):
    """Schema for a file metadata document as returned to a recipient.

    ``header_url`` and ``chunk_urls`` are not stored; they are signed per request.
    """

    file_id: str
    original_name: str
    original_size: int
    mime_type: str
    file_hash: str
    header_ref: str
    header_b64: str | None
    header_url: str | None = None
    chunk_refs: list[str]
    chunk_urls: list[str] = Field(default_factory=list)
    chunk_count: int
    sealed_keys: dict[str, str]
    sealed_key: str | None
    scan_result: dict[str, Any]
    room_id: str | None
    uploaded_by: str
    uploaded_at: datetime
    expires_at: datetime | None
    status: str
    version: int

    model_config = ConfigDict(from_attributes=True)
