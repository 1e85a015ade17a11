"""Symmetric encryption of message bodies under the room secret."""

from __future__ import annotations

from dataclasses import dataclass

from sealhub.core.errors import AuthenticationFailedError
from sealhub.services.crypto import CryptoContext, get_crypto_context


@dataclass(frozen=True)
class SealedText:
    """Ciphertext plus the nonce it was produced under."""

    nonce: bytes
    ciphertext: bytes


class MessageCipher:
    """XSalsa20-Poly1305 secretbox over UTF-8 text."""

    def __init__(self, context: CryptoContext | None = None) -> None:
        self.context = context or get_crypto_context()

    def encrypt_text(self, plaintext: str, secret: bytes) -> SealedText:
        """Encrypt ``plaintext``; every call draws a fresh random 24-byte nonce."""
        nonce, ciphertext = self.context.secretbox_encrypt(plaintext.encode("utf-8"), secret)
        return SealedText(nonce=nonce, ciphertext=ciphertext)

    def decrypt_text(self, ciphertext: bytes, nonce: bytes, secret: bytes) -> str:
        """Decrypt and authenticate a message body.

        Raises:
            AuthenticationFailedError: On tampering, a wrong secret or a wrong nonce.
        """
        plaintext = self.context.secretbox_decrypt(ciphertext, nonce, secret)
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise AuthenticationFailedError("Message body is not valid UTF-8") from exc
