# src/sealhub/services/crypto.py
"""Process-lifetime crypto context wrapping the libsodium primitives.

Every component receives a :class:`CryptoContext` explicitly instead of
reaching for module-level library state. The context is initialized once at
process start and never torn down.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Final

import nacl.bindings
import nacl.exceptions
import nacl.utils
from nacl.secret import SecretBox

from sealhub.core.errors import AuthenticationFailedError, CryptoUnavailableError

logger = logging.getLogger(__name__)

SECRET_KEY_BYTES: Final[int] = SecretBox.KEY_SIZE
SECRET_NONCE_BYTES: Final[int] = SecretBox.NONCE_SIZE
STREAM_KEY_BYTES: Final[int] = nacl.bindings.crypto_secretstream_xchacha20poly1305_KEYBYTES
STREAM_HEADER_BYTES: Final[int] = nacl.bindings.crypto_secretstream_xchacha20poly1305_HEADERBYTES
STREAM_TAG_MESSAGE: Final[int] = nacl.bindings.crypto_secretstream_xchacha20poly1305_TAG_MESSAGE
STREAM_TAG_FINAL: Final[int] = nacl.bindings.crypto_secretstream_xchacha20poly1305_TAG_FINAL

# Errors PyNaCl raises for bad ciphertext, bad lengths or mismatched keys.
_OPEN_ERRORS = (nacl.exceptions.CryptoError, ValueError, TypeError)


@dataclass(frozen=True)
class KeyPair:
    """Long-term public/private keypair owned by the local user."""

    public_key: bytes
    private_key: bytes = field(repr=False)


class CryptoContext:
    """Thin, explicit handle over libsodium via PyNaCl."""

    def __init__(self) -> None:
        self._ready = False

    @property
    def ready(self) -> bool:
        return self._ready

    def initialize(self) -> CryptoContext:
        """Initialize libsodium; safe to call more than once.

        Raises:
            CryptoUnavailableError: If the library fails to initialize.
        """
        if self._ready:
            return self
        try:
            nacl.bindings.sodium_init()
        except nacl.exceptions.RuntimeError as exc:
            raise CryptoUnavailableError(f"libsodium failed to initialize: {exc}") from exc
        self._ready = True
        logger.debug("Crypto context initialized")
        return self

    def _require_ready(self) -> None:
        if not self._ready:
            raise CryptoUnavailableError("Crypto context used before initialize()")

    def random_bytes(self, size: int) -> bytes:
        """Return ``size`` bytes from the CSPRNG."""
        self._require_ready()
        return nacl.utils.random(size)

    # Public-key sealing (crypto_box_seal)

    def box_keypair(self) -> KeyPair:
        self._require_ready()
        public_key, private_key = nacl.bindings.crypto_box_keypair()
        return KeyPair(public_key=public_key, private_key=private_key)

    def box_seal(self, message: bytes, recipient_public_key: bytes) -> bytes:
        self._require_ready()
        return nacl.bindings.crypto_box_seal(message, recipient_public_key)

    def box_seal_open(self, sealed: bytes, public_key: bytes, private_key: bytes) -> bytes:
        self._require_ready()
        try:
            return nacl.bindings.crypto_box_seal_open(sealed, public_key, private_key)
        except _OPEN_ERRORS as exc:
            raise AuthenticationFailedError("Sealed box could not be opened") from exc

    # Symmetric secretbox (XSalsa20-Poly1305)

    def secretbox_keygen(self) -> bytes:
        return self.random_bytes(SECRET_KEY_BYTES)

    def secretbox_encrypt(self, plaintext: bytes, key: bytes) -> tuple[bytes, bytes]:
        """Encrypt under a fresh random nonce and return ``(nonce, ciphertext)``."""
        nonce = self.random_bytes(SECRET_NONCE_BYTES)
        encrypted = SecretBox(key).encrypt(plaintext, nonce)
        return nonce, encrypted.ciphertext

    def secretbox_decrypt(self, ciphertext: bytes, nonce: bytes, key: bytes) -> bytes:
        self._require_ready()
        try:
            return SecretBox(key).decrypt(ciphertext, nonce)
        except _OPEN_ERRORS as exc:
            raise AuthenticationFailedError("Message authentication failed") from exc

    # Secretstream (XChaCha20-Poly1305)

    def stream_keygen(self) -> bytes:
        self._require_ready()
        return nacl.bindings.crypto_secretstream_xchacha20poly1305_keygen()

    def stream_init_push(self, key: bytes) -> tuple[object, bytes]:
        """Return ``(state, header)`` for a new encryption stream."""
        self._require_ready()
        state = nacl.bindings.crypto_secretstream_xchacha20poly1305_state()
        header = nacl.bindings.crypto_secretstream_xchacha20poly1305_init_push(state, key)
        return state, header

    def stream_push(self, state: object, chunk: bytes, tag: int) -> bytes:
        return nacl.bindings.crypto_secretstream_xchacha20poly1305_push(
            state, chunk, None, tag
        )

    def stream_init_pull(self, header: bytes, key: bytes) -> object:
        self._require_ready()
        state = nacl.bindings.crypto_secretstream_xchacha20poly1305_state()
        try:
            nacl.bindings.crypto_secretstream_xchacha20poly1305_init_pull(state, header, key)
        except _OPEN_ERRORS as exc:
            raise AuthenticationFailedError("Invalid stream header or key") from exc
        return state

    def stream_pull(self, state: object, chunk: bytes) -> tuple[bytes, int]:
        """Decrypt one chunk and return ``(plaintext, tag)``."""
        try:
            return nacl.bindings.crypto_secretstream_xchacha20poly1305_pull(state, chunk, None)
        except (nacl.exceptions.RuntimeError, *_OPEN_ERRORS) as exc:
            raise AuthenticationFailedError("Chunk authentication failed") from exc


@lru_cache(maxsize=1)
def get_crypto_context() -> CryptoContext:
    """Return the process-wide, initialized crypto context."""
    return CryptoContext().initialize()
