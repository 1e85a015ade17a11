"""Room message and room key Pydantic schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict


class EncryptedMessageResponse(BaseModel):
    """Schema for one stored, still-encrypted room message."""

    message_id: int
    room_id: str
    sender_id: str
    ciphertext_b64: str
    nonce_b64: str
    key_version: int
    timestamp: datetime
    attachments: list[dict[str, Any]] = []

    model_config = ConfigDict(from_attributes=True)


class SealedRoomKeyResponse(BaseModel):
    """Schema for the caller's sealed copy of a room secret."""

    room_id: str
    member_id: str
    version: int
    sealed_key_b64: str

    model_config = ConfigDict(from_attributes=True)
