"""
Pydantic schemas for API request/response models.

Everything here is ciphertext or public material; no schema ever carries a
private key or plaintext.
"""

from .file import FileMetadataResponse
from .identity import IdentityResponse, PublicKeyPublish
from .room import EncryptedMessageResponse, SealedRoomKeyResponse

__all__ = [
    "FileMetadataResponse",
    "IdentityResponse", "PublicKeyPublish",
    "EncryptedMessageResponse", "SealedRoomKeyResponse",
]
