# tests/conftest.py
from __future__ import annotations

import os
from collections.abc import Callable, Generator, Iterator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("SECRET_KEY", "test-secret-key-for-sealhub")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("STORAGE_PROVIDER", "memory")
os.environ.setdefault("KEY_STORE", "memory")
os.environ.setdefault("PUBLIC_BASE_URL", "http://test")

from sealhub.api.v1.dependencies import get_blob_store_dep, get_document_store
from sealhub.core.security import create_access_token
from sealhub.db.session import Base
from sealhub.main import app as fastapi_app
from sealhub.models import UserIdentity
from sealhub.services.crypto import CryptoContext, KeyPair, get_crypto_context
from sealhub.services.identity import IdentityService
from sealhub.services.keys import AsymmetricKeyStore
from sealhub.services.secret_store import InMemorySecretStore
from sealhub.storage.blobs import MemoryBlobStore
from sealhub.storage.documents import SqlDocumentStore
from sealhub.utils.codec import key_to_base64

TEST_DB_URL = "sqlite://"


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> Iterator[Callable[[], Session]]:
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    try:
        yield factory
    finally:
        # Ensure each test sees a clean database even though the store commits.
        with engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())


@pytest.fixture()
def document_store(session_factory: Callable[[], Session]) -> SqlDocumentStore:
    return SqlDocumentStore(session_factory)


@pytest.fixture()
def blob_store() -> MemoryBlobStore:
    return MemoryBlobStore(bucket="encrypted")


@pytest.fixture(scope="session")
def crypto_context() -> CryptoContext:
    return get_crypto_context()


@pytest.fixture()
def key_store(crypto_context: CryptoContext) -> AsymmetricKeyStore:
    return AsymmetricKeyStore(crypto_context, InMemorySecretStore())


@pytest.fixture()
def identities(document_store: SqlDocumentStore) -> IdentityService:
    return IdentityService(document_store)


@pytest.fixture()
def alice_keys(key_store: AsymmetricKeyStore) -> KeyPair:
    return key_store.load_or_create("alice")


@pytest.fixture()
def bob_keys(key_store: AsymmetricKeyStore) -> KeyPair:
    return key_store.load_or_create("bob")


@pytest.fixture()
def carol_keys(key_store: AsymmetricKeyStore) -> KeyPair:
    return key_store.load_or_create("carol")


@pytest.fixture()
def publish_key(session_factory: Callable[[], Session]) -> Callable[[str, KeyPair], None]:
    """Return a helper that publishes a user's public key directly in the database."""

    def _publish(user_id: str, key_pair: KeyPair) -> None:
        with session_factory() as db:
            db.merge(UserIdentity(user_id=user_id, public_key_b64=key_to_base64(key_pair.public_key)))
            db.commit()

    return _publish


@pytest.fixture()
def published_users(
    publish_key: Callable[[str, KeyPair], None],
    alice_keys: KeyPair,
    bob_keys: KeyPair,
) -> dict[str, KeyPair]:
    """Alice and Bob with published keys."""
    publish_key("alice", alice_keys)
    publish_key("bob", bob_keys)
    return {"alice": alice_keys, "bob": bob_keys}


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture(autouse=True)
def override_store_dependencies(
    app: FastAPI,
    document_store: SqlDocumentStore,
    blob_store: MemoryBlobStore,
) -> Iterator[None]:
    app.dependency_overrides[get_document_store] = lambda: document_store
    app.dependency_overrides[get_blob_store_dep] = lambda: blob_store
    try:
        yield
    finally:
        app.dependency_overrides.pop(get_document_store, None)
        app.dependency_overrides.pop(get_blob_store_dep, None)


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


@pytest.fixture()
def auth_headers() -> Callable[[str], dict[str, str]]:
    """Return a helper building bearer headers for a user id."""

    def _headers(user_id: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user_id)}"}

    return _headers
