"""Encrypted room messaging: send, subscribe and share files."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any

from sealhub.core.errors import AuthenticationFailedError, NoRoomKeyError
from sealhub.core.settings import settings
from sealhub.services.crypto import KeyPair
from sealhub.services.message_cipher import MessageCipher
from sealhub.services.preprocess import LocalFile
from sealhub.services.room_keys import RoomKeyService
from sealhub.services.upload import UploadOptions, UploadOrchestrator, UploadResult
from sealhub.storage.blobs import BlobRef, BlobStore
from sealhub.storage.documents import DocumentStore, StoredMessage
from sealhub.utils.codec import base64_to_key, key_to_base64

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Attachment:
    """Reference to an uploaded file carried alongside a message.

    Only ``ref`` (the header blob key) is stored with the message. ``url`` is a
    short-lived signed link filled in each time the message is rendered.
    """

    id: str
    name: str
    type: str = "file"
    ref: str | None = None
    url: str | None = None
    size: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "ref": self.ref,
            "size": self.size,
        }

    def signed(self, blobs: BlobStore) -> Attachment:
        if not self.ref:
            return self
        return replace(self, url=blobs.url_for(BlobRef.parse(self.ref)))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Attachment:
        return cls(
            id=str(data.get("id", "")),
            name=str(data.get("name", "")),
            type=str(data.get("type") or "file"),
            ref=data.get("ref"),
            url=data.get("url"),
            size=int(data.get("size") or 0),
        )


@dataclass(frozen=True)
class DecryptedMessage:
    """A message as seen by one member.

    ``decryptable`` is False (and ``content`` None) for messages sent under a
    secret version the member was never keyed for, e.g. before they joined.
    """

    message_id: int
    room_id: str
    sender_id: str
    timestamp: datetime
    key_version: int
    content: str | None
    attachments: tuple[Attachment, ...] = ()
    decryptable: bool = True


class MessageSubscription:
    """Polling async iterator yielding the full decrypted snapshot on change.

    The first iteration yields the current snapshot immediately. Each room
    secret version is fetched and unsealed at most once for the life of the
    subscription; start a new subscription to drop the cache.

    Usage::

        subscription = chat.subscribe(room_id, user_id, key_pair)
        async for messages in subscription:
            render(messages)
        # elsewhere: subscription.close()
    """

    def __init__(
        self,
        chat: ChatService,
        room_id: str,
        user_id: str,
        key_pair: KeyPair,
        poll_interval: float,
    ) -> None:
        self.chat = chat
        self.room_id = room_id
        self.user_id = user_id
        self._key_pair = key_pair
        self.poll_interval = poll_interval
        self._secrets: dict[int, bytes | None] = {}
        self._last_seen: tuple[int, ...] | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True

    async def _secret_for(self, version: int) -> bytes | None:
        if version in self._secrets:
            return self._secrets[version]
        try:
            secret = await self.chat.room_keys.get_room_secret_for_user(
                self.room_id,
                self.user_id,
                self._key_pair.public_key,
                self._key_pair.private_key,
                version=version,
            )
        except NoRoomKeyError:
            logger.debug("%s holds no key for %s v%d", self.user_id, self.room_id, version)
            self._secrets[version] = None
            return None
        self._secrets[version] = secret.key
        return secret.key

    async def _decrypt(self, message: StoredMessage) -> DecryptedMessage:
        attachments = tuple(Attachment.from_dict(item) for item in message.attachments)
        if self.chat.blobs is not None:
            attachments = tuple(attachment.signed(self.chat.blobs) for attachment in attachments)
        secret = await self._secret_for(message.key_version)
        content: str | None = None
        if secret is not None:
            try:
                ciphertext = base64_to_key(message.ciphertext_b64)
                nonce = base64_to_key(message.nonce_b64)
            except ValueError as exc:
                raise AuthenticationFailedError(
                    f"Message {message.message_id} has malformed ciphertext"
                ) from exc
            content = self.chat.cipher.decrypt_text(ciphertext, nonce, secret)
        return DecryptedMessage(
            message_id=message.message_id,
            room_id=message.room_id,
            sender_id=message.sender_id,
            timestamp=message.timestamp,
            key_version=message.key_version,
            content=content,
            attachments=attachments,
            decryptable=secret is not None,
        )

    async def snapshot(self) -> list[DecryptedMessage]:
        """Fetch and decrypt the whole room history in ascending order."""
        messages = await self.chat.store.list_messages(self.room_id)
        self._last_seen = tuple(message.message_id for message in messages)
        return [await self._decrypt(message) for message in messages]

    def __aiter__(self) -> MessageSubscription:
        return self

    async def __anext__(self) -> list[DecryptedMessage]:
        if self._last_seen is None and not self._closed:
            return await self.snapshot()
        while not self._closed:
            await asyncio.sleep(self.poll_interval)
            if self._closed:
                break
            messages = await self.chat.store.list_messages(self.room_id)
            if tuple(message.message_id for message in messages) != self._last_seen:
                return await self.snapshot()
        raise StopAsyncIteration


class ChatService:
    """Sends and reads end-to-end encrypted room messages."""

    def __init__(
        self,
        store: DocumentStore,
        room_keys: RoomKeyService,
        cipher: MessageCipher | None = None,
        uploader: UploadOrchestrator | None = None,
        poll_interval: float | None = None,
        blobs: BlobStore | None = None,
    ) -> None:
        self.store = store
        self.room_keys = room_keys
        self.cipher = cipher or MessageCipher(room_keys.context)
        self.uploader = uploader
        # Signs attachment links on read; defaults to where uploads go.
        if blobs is None and uploader is not None:
            blobs = uploader.blobs
        self.blobs = blobs
        self.poll_interval = (
            settings.message_poll_interval_seconds if poll_interval is None else poll_interval
        )

    async def send_encrypted_message(
        self,
        room_id: str,
        sender_id: str,
        plaintext: str,
        key_pair: KeyPair,
        attachments: Sequence[Attachment] | None = None,
    ) -> StoredMessage:
        """Encrypt ``plaintext`` under the sender's latest room secret and append it.

        Raises:
            NoRoomKeyError: If the sender is not keyed; run ``ensure_room`` first.
        """
        secret = await self.room_keys.get_room_secret_for_user(
            room_id, sender_id, key_pair.public_key, key_pair.private_key
        )
        sealed = self.cipher.encrypt_text(plaintext, secret.key)
        message = await self.store.append_message(
            room_id,
            sender_id,
            key_to_base64(sealed.ciphertext),
            key_to_base64(sealed.nonce),
            secret.version,
            [attachment.to_dict() for attachment in attachments or ()],
        )
        logger.debug("Appended message %s to room %s", message.message_id, room_id)
        return message

    def subscribe(
        self,
        room_id: str,
        user_id: str,
        key_pair: KeyPair,
        poll_interval: float | None = None,
    ) -> MessageSubscription:
        return MessageSubscription(
            self,
            room_id,
            user_id,
            key_pair,
            self.poll_interval if poll_interval is None else poll_interval,
        )

    async def share_file(
        self,
        room_id: str,
        sender_id: str,
        key_pair: KeyPair,
        file: LocalFile,
        options: UploadOptions | None = None,
    ) -> tuple[UploadResult, StoredMessage]:
        """Upload ``file`` for every room member, then announce it in the room.

        The message is only sent once the upload has fully succeeded, so a
        failed upload never leaves an attachment pointing at nothing.
        """
        if self.uploader is None:
            raise RuntimeError("ChatService was built without an uploader")
        room = await self.store.get_room(room_id)
        if room is None:
            raise NoRoomKeyError(f"Room {room_id} does not exist; run ensure_room first")

        upload_options = replace(
            options or UploadOptions(uploaded_by=sender_id),
            uploaded_by=sender_id,
            room_id=room_id,
            recipient_ids=tuple(room.members),
        )
        result = await self.uploader.upload(file, upload_options)
        attachment = Attachment(
            id=result.file_id,
            name=file.name,
            type="file",
            ref=result.record.header_ref,
            size=result.record.original_size,
        )
        message = await self.send_encrypted_message(
            room_id,
            sender_id,
            f"Shared a file: {file.name}",
            key_pair,
            [attachment],
        )
        return result, message
