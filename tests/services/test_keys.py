"""Keypairs, sealed boxes and the private-key stores."""

from __future__ import annotations

import stat

import pytest

from sealhub.core.errors import AuthenticationFailedError, CryptoUnavailableError, KeyStoreError
from sealhub.services.crypto import CryptoContext, KeyPair
from sealhub.services.keys import AsymmetricKeyStore
from sealhub.services.secret_store import EncryptedFileSecretStore, InMemorySecretStore


def test_generate_key_pair_produces_distinct_32_byte_keys(key_store: AsymmetricKeyStore) -> None:
    first = key_store.generate_key_pair()
    second = key_store.generate_key_pair()

    assert len(first.public_key) == 32
    assert len(first.private_key) == 32
    assert first.public_key != second.public_key


def test_key_pair_repr_hides_private_key(key_store: AsymmetricKeyStore) -> None:
    pair = key_store.generate_key_pair()
    assert pair.private_key.hex() not in repr(pair)
    assert "private_key" not in repr(pair)


def test_seal_unseal_roundtrip(key_store: AsymmetricKeyStore, alice_keys: KeyPair) -> None:
    sealed = key_store.seal(b"room secret", alice_keys.public_key)

    assert sealed != b"room secret"
    assert key_store.unseal(sealed, alice_keys.private_key, alice_keys.public_key) == b"room secret"


def test_seal_is_randomized(key_store: AsymmetricKeyStore, alice_keys: KeyPair) -> None:
    assert key_store.seal(b"x", alice_keys.public_key) != key_store.seal(b"x", alice_keys.public_key)


def test_unseal_with_wrong_keypair_fails(
    key_store: AsymmetricKeyStore, alice_keys: KeyPair, bob_keys: KeyPair
) -> None:
    sealed = key_store.seal(b"for alice", alice_keys.public_key)

    with pytest.raises(AuthenticationFailedError):
        key_store.unseal(sealed, bob_keys.private_key, bob_keys.public_key)


def test_unseal_detects_single_bit_flip(key_store: AsymmetricKeyStore, alice_keys: KeyPair) -> None:
    sealed = bytearray(key_store.seal(b"payload", alice_keys.public_key))
    sealed[-1] ^= 0x01

    with pytest.raises(AuthenticationFailedError):
        key_store.unseal(bytes(sealed), alice_keys.private_key, alice_keys.public_key)


def test_uninitialized_context_refuses_work() -> None:
    with pytest.raises(CryptoUnavailableError):
        CryptoContext().box_keypair()


def test_load_or_create_is_stable_until_cleared(crypto_context: CryptoContext) -> None:
    store = AsymmetricKeyStore(crypto_context, InMemorySecretStore())

    first = store.load_or_create("alice")
    assert store.load_or_create("alice") == first

    store.clear("alice")
    assert store.load_or_create("alice") != first


def test_acquire_yields_the_stored_pair(crypto_context: CryptoContext) -> None:
    store = AsymmetricKeyStore(crypto_context, InMemorySecretStore())
    expected = store.load_or_create("bob")

    with store.acquire("bob") as pair:
        assert pair == expected


def test_encrypted_file_store_roundtrip(tmp_path, crypto_context: CryptoContext) -> None:
    secret_store = EncryptedFileSecretStore(tmp_path, "correct horse")
    pair = crypto_context.box_keypair()

    secret_store.save("alice", pair)

    files = list(tmp_path.glob("*.key"))
    assert len(files) == 1
    assert "alice" not in files[0].name
    assert pair.private_key.hex() not in files[0].read_text()
    assert stat.S_IMODE(files[0].stat().st_mode) == 0o600
    assert EncryptedFileSecretStore(tmp_path, "correct horse").load("alice") == pair


def test_encrypted_file_store_rejects_wrong_passphrase(tmp_path, crypto_context: CryptoContext) -> None:
    EncryptedFileSecretStore(tmp_path, "correct horse").save("alice", crypto_context.box_keypair())

    with pytest.raises(KeyStoreError):
        EncryptedFileSecretStore(tmp_path, "battery staple").load("alice")


def test_encrypted_file_store_missing_user_and_delete(tmp_path, crypto_context: CryptoContext) -> None:
    secret_store = EncryptedFileSecretStore(tmp_path, "pw")
    assert secret_store.load("nobody") is None

    secret_store.save("alice", crypto_context.box_keypair())
    secret_store.delete("alice")
    assert secret_store.load("alice") is None


def test_encrypted_file_store_requires_passphrase(tmp_path) -> None:
    with pytest.raises(KeyStoreError):
        EncryptedFileSecretStore(tmp_path, "")
