# src/sealhub/models/encrypted_file.py
"""Metadata for chunk-encrypted file uploads."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, BigInteger, DateTime, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from sealhub.db.session import Base
from sealhub.db.time import utcnow

FILE_STATUS_ENCRYPTED = "encrypted"
FILE_STATUS_EXPIRED = "expired"


class EncryptedFile(Base):
    """Immutable record written once an upload completes.

    Only ``status`` changes afterwards, when expiry is applied lazily.
    """

    __tablename__ = "encrypted_file"

    file_id: Mapped[str] = mapped_column(Text, primary_key=True)
    original_name: Mapped[str] = mapped_column(Text, nullable=False)
    original_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    mime_type: Mapped[str] = mapped_column(Text, nullable=False)
    file_hash: Mapped[str] = mapped_column(Text, nullable=False)

    # Stream header is public; kept inline and as a blob.
    header_b64: Mapped[str | None] = mapped_column(Text, nullable=True)
    header_ref: Mapped[str] = mapped_column(Text, nullable=False)
    chunk_refs: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    chunk_count: Mapped[int] = mapped_column(Integer, nullable=False)

    sealed_keys: Mapped[dict[str, str]] = mapped_column(JSON, nullable=False, default=dict)
    # Single sealed key kept for records written before per-recipient keys.
    sealed_key: Mapped[str | None] = mapped_column(Text, nullable=True)

    scan_result: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    room_id: Mapped[str | None] = mapped_column(Text, nullable=True, index=True)
    uploaded_by: Mapped[str] = mapped_column(Text, nullable=False)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(Text, nullable=False, default=FILE_STATUS_ENCRYPTED)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
