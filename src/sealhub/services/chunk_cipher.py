# src/sealhub/services/chunk_cipher.py
"""Chunked, authenticated stream encryption of file payloads.

Built on libsodium's secretstream (XChaCha20-Poly1305). The stream state
carries a sequential counter, so chunks must be pushed and pulled in the
exact order they were produced; a reordered, dropped or duplicated chunk
fails authentication.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field

from sealhub.core.errors import AuthenticationFailedError
from sealhub.core.settings import settings
from sealhub.services.crypto import (
    STREAM_TAG_FINAL,
    STREAM_TAG_MESSAGE,
    CryptoContext,
    get_crypto_context,
)

logger = logging.getLogger(__name__)


@dataclass
class PushStream:
    """Encryption state for one file. ``key`` is the per-file key."""

    header: bytes
    key: bytes = field(repr=False)
    state: object = field(repr=False)
    finalized: bool = False
    chunks_pushed: int = 0


@dataclass
class PullStream:
    state: object = field(repr=False)
    finished: bool = False
    chunks_pulled: int = 0


@dataclass(frozen=True)
class DecryptedChunk:
    plaintext: bytes
    is_final: bool


@dataclass(frozen=True)
class EncryptedStream:
    """Header plus ordered ciphertext chunks of one file."""

    header: bytes
    chunks: tuple[bytes, ...]
    key: bytes = field(repr=False)

    @property
    def chunk_count(self) -> int:
        return len(self.chunks)


class ChunkCipher:
    """Streaming encryption with a mandatory FINAL-tagged terminating chunk."""

    def __init__(self, context: CryptoContext | None = None, chunk_size: int | None = None) -> None:
        self.context = context or get_crypto_context()
        self.chunk_size = chunk_size or settings.chunk_size_bytes
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")

    def init_encrypt(self, key: bytes | None = None) -> PushStream:
        """Start a stream under a fresh per-file key unless one is given."""
        file_key = key if key is not None else self.context.stream_keygen()
        state, header = self.context.stream_init_push(file_key)
        return PushStream(header=header, key=file_key, state=state)

    def push_chunk(self, stream: PushStream, chunk: bytes, is_final: bool) -> bytes:
        if stream.finalized:
            raise ValueError("Stream already finalized; no chunks may follow FINAL")
        tag = STREAM_TAG_FINAL if is_final else STREAM_TAG_MESSAGE
        ciphertext = self.context.stream_push(stream.state, bytes(chunk), tag)
        stream.chunks_pushed += 1
        stream.finalized = is_final
        return ciphertext

    def init_decrypt(self, header: bytes, key: bytes) -> PullStream:
        return PullStream(state=self.context.stream_init_pull(header, key))

    def pull_chunk(self, stream: PullStream, chunk: bytes) -> DecryptedChunk:
        """Authenticate and decrypt the next chunk in sequence.

        Raises:
            AuthenticationFailedError: On a corrupted or out-of-order chunk,
                or any data arriving after the FINAL chunk.
        """
        if stream.finished:
            raise AuthenticationFailedError("Data found after the final chunk")
        plaintext, tag = self.context.stream_pull(stream.state, bytes(chunk))
        stream.chunks_pulled += 1
        stream.finished = tag == STREAM_TAG_FINAL
        return DecryptedChunk(plaintext=plaintext, is_final=stream.finished)

    def iter_plain_chunks(self, data: bytes) -> Iterator[tuple[bytes, bool]]:
        """Yield ``(chunk, is_final)`` slices of ``data``.

        Every full chunk is a MESSAGE; whatever remains (possibly nothing) is
        the FINAL chunk. An exact multiple of the chunk size therefore ends
        with an empty FINAL chunk, and an empty file is a single empty FINAL.
        """
        view = memoryview(data)
        offset = 0
        while len(view) - offset >= self.chunk_size:
            yield bytes(view[offset : offset + self.chunk_size]), False
            offset += self.chunk_size
        yield bytes(view[offset:]), True

    def encrypt_stream(self, data: bytes, key: bytes | None = None) -> EncryptedStream:
        stream = self.init_encrypt(key)
        chunks = tuple(
            self.push_chunk(stream, chunk, is_final) for chunk, is_final in self.iter_plain_chunks(data)
        )
        logger.debug("Encrypted %d bytes into %d chunks", len(data), len(chunks))
        return EncryptedStream(header=stream.header, chunks=chunks, key=stream.key)

    def decrypt_stream(self, header: bytes, chunks: Sequence[bytes], key: bytes) -> bytes:
        """Decrypt ``chunks`` in order and return the reassembled plaintext.

        Raises:
            AuthenticationFailedError: On tampering, reordering, a missing
                FINAL chunk (truncation) or chunks after FINAL.
        """
        stream = self.init_decrypt(header, key)
        parts = [self.pull_chunk(stream, chunk).plaintext for chunk in chunks]
        if not stream.finished:
            raise AuthenticationFailedError("Stream truncated: final chunk missing")
        return b"".join(parts)
