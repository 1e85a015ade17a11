"""Long-term keypair management and anonymous public-key sealing."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sealhub.services.crypto import CryptoContext, KeyPair, get_crypto_context
from sealhub.services.secret_store import SecretStore, build_secret_store

logger = logging.getLogger(__name__)


class AsymmetricKeyStore:
    """Generates and holds the local user's keypair; seals and unseals payloads.

    Sealing needs only the recipient's public key and embeds an ephemeral
    sender key, so no sender identity is exposed. Opening needs both halves
    of the recipient's keypair.
    """

    def __init__(
        self,
        context: CryptoContext | None = None,
        secret_store: SecretStore | None = None,
    ) -> None:
        self.context = context or get_crypto_context()
        self.secret_store = secret_store or build_secret_store()

    def generate_key_pair(self) -> KeyPair:
        """Return a fresh Curve25519 keypair suitable for sealed boxes."""
        return self.context.box_keypair()

    def seal(self, message: bytes, recipient_public_key: bytes) -> bytes:
        """Encrypt ``message`` so only the matching private key can open it."""
        return self.context.box_seal(message, recipient_public_key)

    def unseal(self, sealed: bytes, private_key: bytes, public_key: bytes) -> bytes:
        """Open a sealed payload.

        Raises:
            AuthenticationFailedError: If the payload was not sealed for this
                keypair or has been modified.
        """
        return self.context.box_seal_open(sealed, public_key, private_key)

    def load_or_create(self, user_id: str) -> KeyPair:
        """Return the stored keypair for ``user_id``, generating one if absent."""
        key_pair = self.secret_store.load(user_id)
        if key_pair is None:
            key_pair = self.generate_key_pair()
            self.secret_store.save(user_id, key_pair)
            logger.info("Generated new keypair for user %s", user_id)
        return key_pair

    @contextmanager
    def acquire(self, user_id: str) -> Iterator[KeyPair]:
        """Scope access to the keypair; nothing is cached past the block."""
        yield self.load_or_create(user_id)

    def clear(self, user_id: str) -> None:
        """Forget the keypair, e.g. on logout. This is unrecoverable."""
        self.secret_store.delete(user_id)
        logger.info("Cleared keypair for user %s", user_id)
