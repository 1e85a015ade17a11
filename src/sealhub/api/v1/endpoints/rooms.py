# src/sealhub/api/v1/endpoints/rooms.py
"""Encrypted room history and sealed room keys."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, status

from sealhub.schemas.room import EncryptedMessageResponse, SealedRoomKeyResponse
from sealhub.storage.documents import DocumentStore, RoomRecord

from ..dependencies import CurrentUserIdDep, DocumentStoreDep

router = APIRouter(prefix="/rooms", tags=["rooms"])


async def _require_member(store: DocumentStore, room_id: str, user_id: str) -> RoomRecord:
    room = await store.get_room(room_id)
    if room is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Room not found")
    if user_id not in room.members:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not a member of this room",
        )
    return room


@router.get("/{room_id}/messages", response_model=list[EncryptedMessageResponse])
async def list_room_messages(
    room_id: str,
    current_user_id: CurrentUserIdDep,
    store: DocumentStoreDep,
) -> list[EncryptedMessageResponse]:
    """Return the room's encrypted messages in ascending server order."""
    await _require_member(store, room_id, current_user_id)
    messages = await store.list_messages(room_id)
    return [EncryptedMessageResponse.model_validate(message) for message in messages]


@router.get("/{room_id}/keys/me", response_model=SealedRoomKeyResponse)
async def get_my_room_key(
    room_id: str,
    current_user_id: CurrentUserIdDep,
    store: DocumentStoreDep,
    version: int | None = Query(None, ge=1),
) -> SealedRoomKeyResponse:
    """Return the caller's sealed room secret (latest version unless given)."""
    await _require_member(store, room_id, current_user_id)
    record = await store.get_sealed_room_key(room_id, current_user_id, version)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No room key for this member yet",
        )
    return SealedRoomKeyResponse.model_validate(record)
