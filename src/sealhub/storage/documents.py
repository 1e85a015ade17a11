# src/sealhub/storage/documents.py
"""Document-store contract and its SQLAlchemy implementation.

The crypto core only ever sees the :class:`DocumentStore` protocol and the
frozen record types below; it never touches ORM objects.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, TypeVar

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from sealhub.core.errors import TransferFailedError
from sealhub.db.time import as_utc, utcnow
from sealhub.models import (
    FILE_STATUS_ENCRYPTED,
    FILE_STATUS_EXPIRED,
    EncryptedFile,
    Room,
    RoomKey,
    RoomMessage,
    UserIdentity,
)

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]

T = TypeVar("T")


@dataclass(frozen=True)
class IdentityRecord:
    user_id: str
    public_key_b64: str
    updated_at: datetime


@dataclass(frozen=True)
class RoomRecord:
    room_id: str
    members: tuple[str, ...]
    secret_version: int
    created_at: datetime
    rotated_at: datetime | None = None


@dataclass(frozen=True)
class SealedRoomKeyRecord:
    room_id: str
    member_id: str
    version: int
    sealed_key_b64: str


@dataclass(frozen=True)
class StoredMessage:
    """Encrypted message as persisted; ordered by ``(timestamp, message_id)``."""

    message_id: int
    room_id: str
    sender_id: str
    ciphertext_b64: str
    nonce_b64: str
    key_version: int
    timestamp: datetime
    attachments: tuple[dict[str, Any], ...] = ()


@dataclass(frozen=True)
class FileRecord:
    """Metadata document for one chunk-encrypted upload.

    Only blob refs are stored. Download URLs carry expiring tokens and are
    signed whenever the record is read.
    """

    file_id: str
    original_name: str
    original_size: int
    mime_type: str
    file_hash: str
    header_ref: str
    chunk_refs: tuple[str, ...]
    chunk_count: int
    sealed_keys: Mapping[str, str]
    scan_result: Mapping[str, Any]
    uploaded_by: str
    header_b64: str | None = None
    sealed_key: str | None = None
    room_id: str | None = None
    uploaded_at: datetime = field(default_factory=utcnow)
    expires_at: datetime | None = None
    status: str = FILE_STATUS_ENCRYPTED
    version: int = 1

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.status == FILE_STATUS_EXPIRED:
            return True
        if self.expires_at is None:
            return False
        return as_utc(self.expires_at) <= (now or utcnow())


class DocumentStore(Protocol):
    """Key-value documents with merge-upsert and ordered message queries."""

    async def upsert_identity(self, user_id: str, public_key_b64: str) -> None: ...

    async def get_identity(self, user_id: str) -> IdentityRecord | None: ...

    async def get_room(self, room_id: str) -> RoomRecord | None: ...

    async def create_room(
        self, room_id: str, members: Sequence[str], sealed_keys: Mapping[str, str]
    ) -> bool: ...

    async def add_room_members(self, room_id: str, members: Sequence[str]) -> RoomRecord: ...

    async def rotate_room_secret(
        self, room_id: str, expected_version: int, sealed_keys: Mapping[str, str]
    ) -> bool: ...

    async def get_sealed_room_key(
        self, room_id: str, member_id: str, version: int | None = None
    ) -> SealedRoomKeyRecord | None: ...

    async def keyed_members(self, room_id: str, version: int) -> set[str]: ...

    async def append_message(
        self,
        room_id: str,
        sender_id: str,
        ciphertext_b64: str,
        nonce_b64: str,
        key_version: int,
        attachments: Sequence[Mapping[str, Any]] = (),
    ) -> StoredMessage: ...

    async def list_messages(self, room_id: str) -> list[StoredMessage]: ...

    async def put_file_record(self, record: FileRecord) -> None: ...

    async def get_file_record(self, file_id: str) -> FileRecord | None: ...

    async def mark_file_expired(self, file_id: str) -> None: ...

    async def list_expired_files(self, now: datetime | None = None) -> list[FileRecord]: ...

    async def delete_file_record(self, file_id: str) -> None: ...


def _room_record(room: Room) -> RoomRecord:
    return RoomRecord(
        room_id=room.room_id,
        members=tuple(room.members or ()),
        secret_version=room.secret_version,
        created_at=as_utc(room.created_at),
        rotated_at=as_utc(room.rotated_at) if room.rotated_at else None,
    )


def _message_record(message: RoomMessage) -> StoredMessage:
    return StoredMessage(
        message_id=message.id,
        room_id=message.room_id,
        sender_id=message.sender_id,
        ciphertext_b64=message.ciphertext_b64,
        nonce_b64=message.nonce_b64,
        key_version=message.key_version,
        timestamp=as_utc(message.created_at),
        attachments=tuple(message.attachments or ()),
    )


def _file_record(row: EncryptedFile) -> FileRecord:
    return FileRecord(
        file_id=row.file_id,
        original_name=row.original_name,
        original_size=row.original_size,
        mime_type=row.mime_type,
        file_hash=row.file_hash,
        header_ref=row.header_ref,
        header_b64=row.header_b64,
        chunk_refs=tuple(row.chunk_refs or ()),
        chunk_count=row.chunk_count,
        sealed_keys=dict(row.sealed_keys or {}),
        sealed_key=row.sealed_key,
        scan_result=dict(row.scan_result or {}),
        room_id=row.room_id,
        uploaded_by=row.uploaded_by,
        uploaded_at=as_utc(row.uploaded_at),
        expires_at=as_utc(row.expires_at) if row.expires_at else None,
        status=row.status,
        version=row.version,
    )


class SqlDocumentStore:
    """:class:`DocumentStore` backed by the SQLAlchemy models.

    Each operation runs in its own short-lived session on a worker thread, so
    the event loop keeps running while the database works. Multi-row writes
    that must be all-or-nothing (room creation, rotation) share one
    transaction.
    """

    def __init__(self, session_factory: SessionFactory | None = None) -> None:
        if session_factory is None:
            from sealhub.db.session import SessionLocal

            session_factory = SessionLocal
        self._session_factory = session_factory

    async def _run(self, operation: Callable[..., T], *args: Any) -> T:
        """Run ``operation(db, *args)`` inside a fresh session off the event loop."""

        def call() -> T:
            with self._session_factory() as db:
                return operation(db, *args)

        return await asyncio.to_thread(call)

    # Identities

    @staticmethod
    def _upsert_identity(db: Session, user_id: str, public_key_b64: str) -> None:
        identity = db.get(UserIdentity, user_id)
        if identity is None:
            db.add(UserIdentity(user_id=user_id, public_key_b64=public_key_b64))
        else:
            identity.public_key_b64 = public_key_b64
            identity.updated_at = utcnow()
        db.commit()

    async def upsert_identity(self, user_id: str, public_key_b64: str) -> None:
        await self._run(self._upsert_identity, user_id, public_key_b64)

    @staticmethod
    def _get_identity(db: Session, user_id: str) -> IdentityRecord | None:
        identity = db.get(UserIdentity, user_id)
        if identity is None:
            return None
        return IdentityRecord(
            user_id=identity.user_id,
            public_key_b64=identity.public_key_b64,
            updated_at=as_utc(identity.updated_at),
        )

    async def get_identity(self, user_id: str) -> IdentityRecord | None:
        return await self._run(self._get_identity, user_id)

    # Rooms and sealed room keys

    @staticmethod
    def _get_room(db: Session, room_id: str) -> RoomRecord | None:
        room = db.get(Room, room_id)
        return _room_record(room) if room else None

    async def get_room(self, room_id: str) -> RoomRecord | None:
        return await self._run(self._get_room, room_id)

    @staticmethod
    def _create_room(
        db: Session, room_id: str, members: Sequence[str], sealed_keys: Mapping[str, str]
    ) -> bool:
        db.add(Room(room_id=room_id, members=list(dict.fromkeys(members)), secret_version=1))
        for member_id, sealed in sealed_keys.items():
            db.add(RoomKey(room_id=room_id, member_id=member_id, version=1, sealed_key_b64=sealed))
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            return False
        return True

    async def create_room(
        self, room_id: str, members: Sequence[str], sealed_keys: Mapping[str, str]
    ) -> bool:
        """Create the room and its first sealed keys atomically.

        Returns False, persisting nothing, if the room already exists.
        """
        return await self._run(self._create_room, room_id, members, sealed_keys)

    @staticmethod
    def _add_room_members(db: Session, room_id: str, members: Sequence[str]) -> RoomRecord:
        room = db.get(Room, room_id)
        if room is None:
            raise TransferFailedError(f"Room {room_id} does not exist")
        merged = list(dict.fromkeys([*(room.members or []), *members]))
        if merged != list(room.members or []):
            room.members = merged
            db.commit()
            db.refresh(room)
        return _room_record(room)

    async def add_room_members(self, room_id: str, members: Sequence[str]) -> RoomRecord:
        return await self._run(self._add_room_members, room_id, members)

    @staticmethod
    def _rotate_room_secret(
        db: Session, room_id: str, expected_version: int, sealed_keys: Mapping[str, str]
    ) -> bool:
        new_version = expected_version + 1
        result = db.execute(
            update(Room)
            .where(Room.room_id == room_id, Room.secret_version == expected_version)
            .values(secret_version=new_version, rotated_at=utcnow())
        )
        if result.rowcount != 1:
            db.rollback()
            return False
        for member_id, sealed in sealed_keys.items():
            db.merge(
                RoomKey(
                    room_id=room_id,
                    member_id=member_id,
                    version=new_version,
                    sealed_key_b64=sealed,
                )
            )
        db.commit()
        return True

    async def rotate_room_secret(
        self, room_id: str, expected_version: int, sealed_keys: Mapping[str, str]
    ) -> bool:
        """Advance the secret version and store every re-sealed key in one write.

        Returns False if another writer advanced the version first.
        """
        return await self._run(self._rotate_room_secret, room_id, expected_version, sealed_keys)

    @staticmethod
    def _get_sealed_room_key(
        db: Session, room_id: str, member_id: str, version: int | None
    ) -> SealedRoomKeyRecord | None:
        stmt = select(RoomKey).where(RoomKey.room_id == room_id, RoomKey.member_id == member_id)
        if version is None:
            stmt = stmt.order_by(RoomKey.version.desc())
        else:
            stmt = stmt.where(RoomKey.version == version)
        key = db.execute(stmt.limit(1)).scalars().first()
        if key is None:
            return None
        return SealedRoomKeyRecord(
            room_id=key.room_id,
            member_id=key.member_id,
            version=key.version,
            sealed_key_b64=key.sealed_key_b64,
        )

    async def get_sealed_room_key(
        self, room_id: str, member_id: str, version: int | None = None
    ) -> SealedRoomKeyRecord | None:
        return await self._run(self._get_sealed_room_key, room_id, member_id, version)

    @staticmethod
    def _keyed_members(db: Session, room_id: str, version: int) -> set[str]:
        rows = db.execute(
            select(RoomKey.member_id).where(RoomKey.room_id == room_id, RoomKey.version == version)
        )
        return set(rows.scalars())

    async def keyed_members(self, room_id: str, version: int) -> set[str]:
        return await self._run(self._keyed_members, room_id, version)

    # Messages

    @staticmethod
    def _append_message(
        db: Session,
        room_id: str,
        sender_id: str,
        ciphertext_b64: str,
        nonce_b64: str,
        key_version: int,
        attachments: Sequence[Mapping[str, Any]],
    ) -> StoredMessage:
        message = RoomMessage(
            room_id=room_id,
            sender_id=sender_id,
            ciphertext_b64=ciphertext_b64,
            nonce_b64=nonce_b64,
            key_version=key_version,
            attachments=[dict(item) for item in attachments],
            created_at=utcnow(),
        )
        db.add(message)
        db.commit()
        db.refresh(message)
        return _message_record(message)

    async def append_message(
        self,
        room_id: str,
        sender_id: str,
        ciphertext_b64: str,
        nonce_b64: str,
        key_version: int,
        attachments: Sequence[Mapping[str, Any]] = (),
    ) -> StoredMessage:
        return await self._run(
            self._append_message,
            room_id,
            sender_id,
            ciphertext_b64,
            nonce_b64,
            key_version,
            attachments,
        )

    @staticmethod
    def _list_messages(db: Session, room_id: str) -> list[StoredMessage]:
        rows = db.execute(
            select(RoomMessage)
            .where(RoomMessage.room_id == room_id)
            .order_by(RoomMessage.created_at.asc(), RoomMessage.id.asc())
        )
        return [_message_record(message) for message in rows.scalars()]

    async def list_messages(self, room_id: str) -> list[StoredMessage]:
        return await self._run(self._list_messages, room_id)

    # Files

    @staticmethod
    def _put_file_record(db: Session, record: FileRecord) -> None:
        db.add(
            EncryptedFile(
                file_id=record.file_id,
                original_name=record.original_name,
                original_size=record.original_size,
                mime_type=record.mime_type,
                file_hash=record.file_hash,
                header_b64=record.header_b64,
                header_ref=record.header_ref,
                chunk_refs=list(record.chunk_refs),
                chunk_count=record.chunk_count,
                sealed_keys=dict(record.sealed_keys),
                sealed_key=record.sealed_key,
                scan_result=dict(record.scan_result),
                room_id=record.room_id,
                uploaded_by=record.uploaded_by,
                uploaded_at=record.uploaded_at,
                expires_at=record.expires_at,
                status=record.status,
                version=record.version,
            )
        )
        try:
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Failed to store metadata for %s", record.file_id, exc_info=True)
            raise TransferFailedError(f"Could not store file metadata: {exc}") from exc

    async def put_file_record(self, record: FileRecord) -> None:
        await self._run(self._put_file_record, record)

    @staticmethod
    def _get_file_record(db: Session, file_id: str) -> FileRecord | None:
        row = db.get(EncryptedFile, file_id)
        return _file_record(row) if row else None

    async def get_file_record(self, file_id: str) -> FileRecord | None:
        return await self._run(self._get_file_record, file_id)

    @staticmethod
    def _mark_file_expired(db: Session, file_id: str) -> None:
        db.execute(
            update(EncryptedFile)
            .where(EncryptedFile.file_id == file_id)
            .values(status=FILE_STATUS_EXPIRED)
        )
        db.commit()

    async def mark_file_expired(self, file_id: str) -> None:
        await self._run(self._mark_file_expired, file_id)

    @staticmethod
    def _list_expired_files(db: Session, cutoff: datetime) -> list[FileRecord]:
        rows = db.execute(
            select(EncryptedFile).where(
                (EncryptedFile.status == FILE_STATUS_EXPIRED)
                | (EncryptedFile.expires_at.is_not(None) & (EncryptedFile.expires_at <= cutoff))
            )
        )
        return [_file_record(row) for row in rows.scalars()]

    async def list_expired_files(self, now: datetime | None = None) -> list[FileRecord]:
        return await self._run(self._list_expired_files, now or utcnow())

    @staticmethod
    def _delete_file_record(db: Session, file_id: str) -> None:
        row = db.get(EncryptedFile, file_id)
        if row is not None:
            db.delete(row)
            db.commit()

    async def delete_file_record(self, file_id: str) -> None:
        await self._run(self._delete_file_record, file_id)
