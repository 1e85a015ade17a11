"""Base64 marshaling for keys, nonces and ciphertext."""

from __future__ import annotations

import base64
import binascii


def key_to_base64(key: bytes) -> str:
    """Encode raw key bytes as padded standard base64."""
    return base64.b64encode(key).decode("ascii")


def base64_to_key(encoded: str) -> bytes:
    """Decode a standard base64 string back into raw bytes.

    Raises:
        ValueError: If the input is not valid base64.
    """
    try:
        return base64.b64decode(encoded.strip(), validate=True)
    except (binascii.Error, ValueError) as err:
        raise ValueError(f"Invalid base64 encoding: {err}") from err
