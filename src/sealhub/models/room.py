# src/sealhub/models/room.py
"""Models describing rooms, their sealed secrets and encrypted messages."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, BigInteger, DateTime, ForeignKey, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from sealhub.db.session import Base
from sealhub.db.time import utcnow


class Room(Base):
    """Conversation between an append-only set of members."""

    __tablename__ = "room"

    room_id: Mapped[str] = mapped_column(Text, primary_key=True)
    members: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    secret_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    rotated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class RoomKey(Base):
    """Room secret sealed to one member's public key for one secret version."""

    __tablename__ = "room_key"

    room_id: Mapped[str] = mapped_column(
        Text, ForeignKey("room.room_id", ondelete="CASCADE"), primary_key=True
    )
    member_id: Mapped[str] = mapped_column(Text, primary_key=True)
    version: Mapped[int] = mapped_column(Integer, primary_key=True)
    sealed_key_b64: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class RoomMessage(Base):
    """Encrypted message body. The server never holds the room secret."""

    __tablename__ = "room_message"
    __table_args__ = (Index("ix_room_message_room_created", "room_id", "created_at", "id"),)

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    room_id: Mapped[str] = mapped_column(
        Text, ForeignKey("room.room_id", ondelete="CASCADE"), nullable=False
    )
    sender_id: Mapped[str] = mapped_column(Text, nullable=False)
    ciphertext_b64: Mapped[str] = mapped_column(Text, nullable=False)
    nonce_b64: Mapped[str] = mapped_column(Text, nullable=False)
    key_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    attachments: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
