# src/sealhub/services/__init__.py
"""Client-side crypto core and transfer pipeline."""

from .chat import Attachment, ChatService, DecryptedMessage, MessageSubscription
from .chunk_cipher import ChunkCipher, EncryptedStream
from .crypto import CryptoContext, KeyPair, get_crypto_context
from .download import DownloadedFile, DownloadOrchestrator
from .identity import IdentityService
from .keys import AsymmetricKeyStore
from .message_cipher import MessageCipher, SealedText
from .preprocess import FilePreprocessor, LocalFile
from .room_keys import RoomKeyService, RoomSecret
from .scanning import ScanOptions, ScanPipeline, ScanResult, Threat, ThreatType
from .upload import UploadOptions, UploadOrchestrator, UploadResult

__all__ = [
    "AsymmetricKeyStore",
    "Attachment",
    "ChatService",
    "ChunkCipher",
    "CryptoContext",
    "DecryptedMessage",
    "DownloadOrchestrator",
    "DownloadedFile",
    "EncryptedStream",
    "FilePreprocessor",
    "IdentityService",
    "KeyPair",
    "LocalFile",
    "MessageCipher",
    "MessageSubscription",
    "RoomKeyService",
    "RoomSecret",
    "ScanOptions",
    "ScanPipeline",
    "ScanResult",
    "SealedText",
    "Threat",
    "ThreatType",
    "UploadOptions",
    "UploadOrchestrator",
    "UploadResult",
    "get_crypto_context",
]
