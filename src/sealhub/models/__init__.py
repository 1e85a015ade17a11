# src/sealhub/models/__init__.py
"""SQLAlchemy models for the SealHub document store."""

from .encrypted_file import FILE_STATUS_ENCRYPTED, FILE_STATUS_EXPIRED, EncryptedFile
from .identity import UserIdentity
from .room import Room, RoomKey, RoomMessage

__all__ = [
    "EncryptedFile", "FILE_STATUS_ENCRYPTED", "FILE_STATUS_EXPIRED",
    "UserIdentity",
    "Room", "RoomKey", "RoomMessage",
]
