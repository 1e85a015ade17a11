"""Pluggable storage for the local user's private key.

Two variants ship with the package: an in-memory store whose keys die with
the process, and a passphrase-encrypted file store. Plain unencrypted
persistence is deliberately not offered.
"""

from __future__ import annotations

import base64
import hashlib
import json
import logging
import os
from pathlib import Path
from threading import Lock
from typing import Protocol

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from sealhub.core.errors import KeyStoreError
from sealhub.core.settings import settings
from sealhub.services.crypto import KeyPair
from sealhub.utils.codec import base64_to_key, key_to_base64

logger = logging.getLogger(__name__)

PBKDF2_ITERATIONS = 390_000
SALT_BYTES = 16


class SecretStore(Protocol):
    """Storage contract for keypairs keyed by user id."""

    def load(self, user_id: str) -> KeyPair | None: ...

    def save(self, user_id: str, key_pair: KeyPair) -> None: ...

    def delete(self, user_id: str) -> None: ...


class InMemorySecretStore:
    """Keeps keypairs only for the lifetime of the process."""

    def __init__(self) -> None:
        self._pairs: dict[str, KeyPair] = {}
        self._lock = Lock()

    def load(self, user_id: str) -> KeyPair | None:
        with self._lock:
            return self._pairs.get(user_id)

    def save(self, user_id: str, key_pair: KeyPair) -> None:
        with self._lock:
            self._pairs[user_id] = key_pair

    def delete(self, user_id: str) -> None:
        with self._lock:
            self._pairs.pop(user_id, None)


def derive_fernet_key(passphrase: str, salt: bytes) -> bytes:
    """Derive a Fernet key from a passphrase using PBKDF2-HMAC-SHA256."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=PBKDF2_ITERATIONS,
    )
    return base64.urlsafe_b64encode(kdf.derive(passphrase.encode("utf-8")))


class EncryptedFileSecretStore:
    """Persists each keypair as a Fernet token under a passphrase-derived key.

    Each file holds its own random salt, so two users never share a
    derived key even with the same passphrase.
    """

    def __init__(self, directory: str | os.PathLike[str], passphrase: str) -> None:
        if not passphrase:
            raise KeyStoreError("An encrypted key store requires a passphrase")
        self.directory = Path(directory)
        self._passphrase = passphrase

    def _path_for(self, user_id: str) -> Path:
        digest = hashlib.sha256(user_id.encode("utf-8")).hexdigest()
        return self.directory / f"{digest}.key"

    def load(self, user_id: str) -> KeyPair | None:
        path = self._path_for(user_id)
        if not path.exists():
            return None
        try:
            envelope = json.loads(path.read_text(encoding="utf-8"))
            salt = base64_to_key(envelope["salt"])
            fernet = Fernet(derive_fernet_key(self._passphrase, salt))
            payload = json.loads(fernet.decrypt(envelope["token"].encode("ascii")))
            return KeyPair(
                public_key=base64_to_key(payload["public_key"]),
                private_key=base64_to_key(payload["private_key"]),
            )
        except InvalidToken as exc:
            raise KeyStoreError("Key store passphrase is incorrect or file was modified") from exc
        except (OSError, KeyError, ValueError) as exc:
            raise KeyStoreError(f"Key store file is unreadable: {exc}") from exc

    def save(self, user_id: str, key_pair: KeyPair) -> None:
        salt = os.urandom(SALT_BYTES)
        fernet = Fernet(derive_fernet_key(self._passphrase, salt))
        payload = json.dumps(
            {
                "public_key": key_to_base64(key_pair.public_key),
                "private_key": key_to_base64(key_pair.private_key),
            }
        ).encode("utf-8")
        envelope = {
            "version": 1,
            "salt": key_to_base64(salt),
            "token": fernet.encrypt(payload).decode("ascii"),
        }
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            path = self._path_for(user_id)
            path.write_text(json.dumps(envelope), encoding="utf-8")
            os.chmod(path, 0o600)
        except OSError as exc:
            raise KeyStoreError(f"Could not write key store file: {exc}") from exc
        logger.info("Stored encrypted keypair in %s", self.directory)

    def delete(self, user_id: str) -> None:
        self._path_for(user_id).unlink(missing_ok=True)


def build_secret_store() -> SecretStore:
    """Build the secret store selected by configuration."""
    if settings.key_store == "encrypted_file":
        return EncryptedFileSecretStore(
            settings.key_store_path,
            settings.key_store_passphrase or "",
        )
    return InMemorySecretStore()
