"""Per-room symmetric secrets sealed individually to every member.

Room lifecycle: absent, created, keyed, and then zero or more rounds of
"backfill needed" followed by keyed again. A backfill generates a new
secret version and re-seals it to the whole membership; earlier versions
stay readable by the members they were sealed to.

Members are append-only. Nothing here removes a member or revokes the
secrets already sealed to them.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Final

from sealhub.core.errors import NoRoomKeyError, TransferFailedError
from sealhub.services.crypto import CryptoContext
from sealhub.services.identity import IdentityService
from sealhub.services.keys import AsymmetricKeyStore
from sealhub.storage.documents import DocumentStore, RoomRecord
from sealhub.utils.codec import base64_to_key, key_to_base64

logger = logging.getLogger(__name__)

MAX_SETTLE_ATTEMPTS: Final[int] = 3


@dataclass(frozen=True)
class RoomSecret:
    """Unsealed room secret together with the version it belongs to."""

    room_id: str
    version: int
    key: bytes = field(repr=False)


class RoomKeyService:
    """Creates rooms, distributes their secrets and unseals them for members."""

    def __init__(
        self,
        store: DocumentStore,
        key_store: AsymmetricKeyStore,
        identities: IdentityService | None = None,
    ) -> None:
        self.store = store
        self.key_store = key_store
        self.identities = identities or IdentityService(store)

    @property
    def context(self) -> CryptoContext:
        return self.key_store.context

    async def _resolve_public_keys(self, member_ids: Iterable[str]) -> dict[str, bytes]:
        resolved: dict[str, bytes] = {}
        for member_id in member_ids:
            public_key = await self.identities.get_public_key(member_id)
            if public_key is None:
                logger.info("Member %s has no published key yet; leaving unkeyed", member_id)
                continue
            resolved[member_id] = public_key
        return resolved

    def _seal_to_all(self, secret: bytes, public_keys: Mapping[str, bytes]) -> dict[str, str]:
        return {
            member_id: key_to_base64(self.key_store.seal(secret, public_key))
            for member_id, public_key in public_keys.items()
        }

    async def _require_room(self, room_id: str) -> RoomRecord:
        room = await self.store.get_room(room_id)
        if room is None:
            raise TransferFailedError(f"Room {room_id} disappeared while being keyed")
        return room

    async def ensure_room(self, room_id: str, member_ids: Sequence[str]) -> RoomRecord:
        """Create the room or merge new members, keying everyone resolvable.

        Idempotent: repeating a call with the same members changes nothing.
        Members without a published key are skipped, not treated as errors.
        """
        members = list(dict.fromkeys(member_ids))

        for _ in range(MAX_SETTLE_ATTEMPTS):
            room = await self.store.get_room(room_id)

            if room is None:
                secret = self.context.secretbox_keygen()
                public_keys = await self._resolve_public_keys(members)
                sealed = self._seal_to_all(secret, public_keys)
                if await self.store.create_room(room_id, members, sealed):
                    logger.info(
                        "Created room %s with %d of %d members keyed",
                        room_id,
                        len(sealed),
                        len(members),
                    )
                    return await self._require_room(room_id)
                # Lost the create race: our secret was never stored, drop it.
                logger.info("Room %s was created concurrently; discarding local secret", room_id)
                continue

            room = await self.store.add_room_members(room_id, members)
            keyed = await self.store.keyed_members(room_id, room.secret_version)
            public_keys = await self._resolve_public_keys(room.members)
            missing = [m for m in room.members if m not in keyed and m in public_keys]
            if not missing:
                return room

            # Re-seal to the full membership, never only to the backfilled subset.
            secret = self.context.secretbox_keygen()
            sealed = self._seal_to_all(secret, public_keys)
            if await self.store.rotate_room_secret(room_id, room.secret_version, sealed):
                logger.info(
                    "Rotated secret for room %s to version %d; backfilled %s",
                    room_id,
                    room.secret_version + 1,
                    ", ".join(missing),
                )
                return await self._require_room(room_id)
            logger.info("Room %s was rotated concurrently; re-evaluating", room_id)

        raise TransferFailedError(
            f"Could not settle keys for room {room_id} after {MAX_SETTLE_ATTEMPTS} attempts"
        )

    async def get_room_secret_for_user(
        self,
        room_id: str,
        user_id: str,
        user_public_key: bytes,
        user_private_key: bytes,
        version: int | None = None,
    ) -> RoomSecret:
        """Fetch and unseal the member's room secret (latest version by default).

        Raises:
            NoRoomKeyError: If no sealed key exists for this member and version.
            AuthenticationFailedError: If the sealed key was tampered with or
                sealed to a different keypair.
        """
        record = await self.store.get_sealed_room_key(room_id, user_id, version)
        if record is None:
            suffix = f" (version {version})" if version is not None else ""
            raise NoRoomKeyError(f"No room key for {user_id} in room {room_id}{suffix}")
        try:
            sealed = base64_to_key(record.sealed_key_b64)
        except ValueError as exc:
            raise NoRoomKeyError(f"Stored room key for {user_id} is malformed") from exc
        secret = self.key_store.unseal(sealed, user_private_key, user_public_key)
        return RoomSecret(room_id=room_id, version=record.version, key=secret)
