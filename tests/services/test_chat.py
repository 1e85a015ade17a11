from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import replace
from urllib.parse import parse_qs, urlsplit

import pytest

from sealhub.core.errors import NoRoomKeyError
from sealhub.services.chat import Attachment, ChatService
from sealhub.services.crypto import KeyPair
from sealhub.services.download import DownloadOrchestrator
from sealhub.services.keys import AsymmetricKeyStore
from sealhub.services.preprocess import LocalFile
from sealhub.services.room_keys import RoomKeyService
from sealhub.services.scanning import ScanPipeline
from sealhub.services.upload import UploadOrchestrator
from sealhub.storage.blobs import MemoryBlobStore, verify_blob_token
from sealhub.storage.documents import SqlDocumentStore

POLL = 0.01


def _token_verifies(url: str | None, key: str) -> bool:
    assert url is not None
    token = parse_qs(urlsplit(url).query)["token"][0]
    return verify_blob_token(key, token)


@pytest.fixture()
def room_keys(document_store: SqlDocumentStore, key_store: AsymmetricKeyStore) -> RoomKeyService:
    return RoomKeyService(document_store, key_store)


@pytest.fixture()
def chat(
    document_store: SqlDocumentStore,
    blob_store: MemoryBlobStore,
    key_store: AsymmetricKeyStore,
    room_keys: RoomKeyService,
) -> ChatService:
    uploader = UploadOrchestrator(document_store, blob_store, key_store, scanner=ScanPipeline([]))
    return ChatService(document_store, room_keys, uploader=uploader, poll_interval=POLL)


@pytest.mark.asyncio
async def test_members_read_each_others_messages(
    chat: ChatService, room_keys: RoomKeyService, published_users: dict[str, KeyPair]
) -> None:
    await room_keys.ensure_room("room-1", ["alice", "bob"])
    await chat.send_encrypted_message("room-1", "alice", "hi bob", published_users["alice"])
    await chat.send_encrypted_message("room-1", "bob", "hi alice", published_users["bob"])

    subscription = chat.subscribe("room-1", "bob", published_users["bob"])
    snapshot = await subscription.__anext__()

    assert [(m.sender_id, m.content) for m in snapshot] == [("alice", "hi bob"), ("bob", "hi alice")]
    assert all(m.decryptable for m in snapshot)
    subscription.close()


@pytest.mark.asyncio
async def test_stored_messages_are_ciphertext_only(
    chat: ChatService,
    room_keys: RoomKeyService,
    document_store: SqlDocumentStore,
    published_users: dict[str, KeyPair],
) -> None:
    await room_keys.ensure_room("room-1", ["alice", "bob"])

    stored = await chat.send_encrypted_message("room-1", "alice", "plain words", published_users["alice"])

    assert "plain words" not in stored.ciphertext_b64
    assert stored.key_version == 1
    assert (await document_store.list_messages("room-1"))[0].ciphertext_b64 == stored.ciphertext_b64


@pytest.mark.asyncio
async def test_sending_without_a_room_key_fails(
    chat: ChatService, published_users: dict[str, KeyPair]
) -> None:
    with pytest.raises(NoRoomKeyError):
        await chat.send_encrypted_message("nowhere", "alice", "hello?", published_users["alice"])


@pytest.mark.asyncio
async def test_subscription_yields_again_when_a_message_arrives(
    chat: ChatService, room_keys: RoomKeyService, published_users: dict[str, KeyPair]
) -> None:
    await room_keys.ensure_room("room-1", ["alice", "bob"])
    subscription = chat.subscribe("room-1", "alice", published_users["alice"])

    assert await subscription.__anext__() == []

    await chat.send_encrypted_message("room-1", "bob", "ping", published_users["bob"])
    snapshot = await asyncio.wait_for(subscription.__anext__(), timeout=2)

    assert [m.content for m in snapshot] == ["ping"]
    subscription.close()


@pytest.mark.asyncio
async def test_closed_subscription_stops_iterating(
    chat: ChatService, room_keys: RoomKeyService, published_users: dict[str, KeyPair]
) -> None:
    await room_keys.ensure_room("room-1", ["alice", "bob"])
    subscription = chat.subscribe("room-1", "alice", published_users["alice"])
    received = []

    async for snapshot in subscription:
        received.append(snapshot)
        subscription.close()

    assert received == [[]]
    assert subscription.closed


@pytest.mark.asyncio
async def test_late_joiner_cannot_read_history(
    chat: ChatService,
    room_keys: RoomKeyService,
    published_users: dict[str, KeyPair],
    publish_key: Callable[[str, KeyPair], None],
    carol_keys: KeyPair,
) -> None:
    await room_keys.ensure_room("room-1", ["alice", "bob"])
    await chat.send_encrypted_message("room-1", "alice", "before carol", published_users["alice"])
    publish_key("carol", carol_keys)
    await room_keys.ensure_room("room-1", ["carol"])
    await chat.send_encrypted_message("room-1", "alice", "welcome carol", published_users["alice"])

    carol_view = await chat.subscribe("room-1", "carol", carol_keys).snapshot()
    bob_view = await chat.subscribe("room-1", "bob", published_users["bob"]).snapshot()

    assert [(m.key_version, m.decryptable, m.content) for m in carol_view] == [
        (1, False, None),
        (2, True, "welcome carol"),
    ]
    assert [m.content for m in bob_view] == ["before carol", "welcome carol"]


@pytest.mark.asyncio
async def test_share_file_uploads_for_the_room_and_posts_attachment(
    chat: ChatService,
    room_keys: RoomKeyService,
    document_store: SqlDocumentStore,
    blob_store: MemoryBlobStore,
    key_store: AsymmetricKeyStore,
    published_users: dict[str, KeyPair],
) -> None:
    await room_keys.ensure_room("room-1", ["alice", "bob"])
    file = LocalFile("plan.txt", b"the plan", "text/plain")

    result, message = await chat.share_file("room-1", "alice", published_users["alice"], file)

    assert result.record.room_id == "room-1"
    assert set(result.record.sealed_keys) == {"alice", "bob"}
    assert message.attachments[0]["id"] == result.file_id

    snapshot = await chat.subscribe("room-1", "bob", published_users["bob"]).snapshot()
    assert snapshot[-1].content == "Shared a file: plan.txt"
    attachment = snapshot[-1].attachments[0]
    assert replace(attachment, url=None) == Attachment(
        id=result.file_id,
        name="plan.txt",
        type="file",
        ref=result.record.header_ref,
        size=len(b"the plan"),
    )
    assert _token_verifies(attachment.url, result.record.header_ref)

    bob = published_users["bob"]
    downloaded = await DownloadOrchestrator(document_store, blob_store, key_store).download_and_decrypt(
        attachment.id, "bob", bob.private_key, bob.public_key
    )
    assert downloaded.data == b"the plan"


@pytest.mark.asyncio
async def test_share_file_into_unknown_room_fails(
    chat: ChatService, published_users: dict[str, KeyPair]
) -> None:
    with pytest.raises(NoRoomKeyError):
        await chat.share_file(
            "nowhere", "alice", published_users["alice"], LocalFile("a.txt", b"a", "text/plain")
        )


@pytest.mark.asyncio
async def test_room_secret_is_fetched_once_per_version_per_subscription(
    mocker,
    chat: ChatService,
    room_keys: RoomKeyService,
    published_users: dict[str, KeyPair],
) -> None:
    await room_keys.ensure_room("room-1", ["alice", "bob"])
    for text in ("one", "two", "three"):
        await chat.send_encrypted_message("room-1", "alice", text, published_users["alice"])
    secret_spy = mocker.spy(room_keys, "get_room_secret_for_user")

    def bob_fetches() -> int:
        return sum(1 for call in secret_spy.call_args_list if "bob" in call.args)

    subscription = chat.subscribe("room-1", "bob", published_users["bob"])
    first = await subscription.__anext__()
    await chat.send_encrypted_message("room-1", "alice", "four", published_users["alice"])
    second = await asyncio.wait_for(subscription.__anext__(), timeout=2)
    subscription.close()

    assert [m.content for m in first] == ["one", "two", "three"]
    assert [m.content for m in second] == ["one", "two", "three", "four"]
    assert bob_fetches() == 1

    await chat.subscribe("room-1", "bob", published_users["bob"]).snapshot()

    assert bob_fetches() == 2


@pytest.mark.asyncio
async def test_attachments_store_the_blob_ref_and_sign_links_on_read(
    chat: ChatService,
    room_keys: RoomKeyService,
    document_store: SqlDocumentStore,
    published_users: dict[str, KeyPair],
) -> None:
    await room_keys.ensure_room("room-1", ["alice", "bob"])
    result, _ = await chat.share_file(
        "room-1", "alice", published_users["alice"], LocalFile("notes.txt", b"notes", "text/plain")
    )

    stored = (await document_store.list_messages("room-1"))[-1]
    assert stored.attachments[0]["ref"] == result.record.header_ref
    assert "url" not in stored.attachments[0]

    snapshot = await chat.subscribe("room-1", "bob", published_users["bob"]).snapshot()
    assert _token_verifies(snapshot[-1].attachments[0].url, result.record.header_ref)
