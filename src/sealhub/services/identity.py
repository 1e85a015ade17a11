"""Publishing and resolving users' public keys (trust on first use)."""

from __future__ import annotations

import logging

from sealhub.storage.documents import DocumentStore
from sealhub.utils.codec import base64_to_key, key_to_base64

logger = logging.getLogger(__name__)


class IdentityService:
    """Reads and writes the published ``UserIdentity`` records."""

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    async def publish(self, user_id: str, public_key: bytes) -> None:
        """Upsert the caller's public key; the latest write wins."""
        await self.store.upsert_identity(user_id, key_to_base64(public_key))
        logger.debug("Published public key for %s", user_id)

    async def get_public_key(self, user_id: str) -> bytes | None:
        """Return the published key for ``user_id`` or None if unpublished or unreadable."""
        identity = await self.store.get_identity(user_id)
        if identity is None:
            return None
        try:
            return base64_to_key(identity.public_key_b64)
        except ValueError:
            logger.warning("Ignoring malformed public key published by %s", user_id)
            return None
