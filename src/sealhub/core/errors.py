"""Error taxonomy shared by the crypto core, the transfer pipeline and the API."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover - typing helper
    from sealhub.services.scanning import Threat


class SealHubError(RuntimeError):
    """Base exception raised for SealHub failures."""


class CryptoUnavailableError(SealHubError):
    """Raised when the underlying crypto primitive cannot initialize.

    This is fatal for the process; there is no degraded mode.
    """


class AuthenticationFailedError(SealHubError):
    """Raised when ciphertext was tampered with or opened with the wrong key.

    Signals corruption or an active attack, so callers must never swallow it.
    """


class NoRoomKeyError(SealHubError):
    """Raised when a member has no sealed room key; retry ``ensure_room``."""


class RecipientKeyMissingError(SealHubError):
    """Raised when no sealed file key resolves to the requesting user."""


class SecurityScanFailedError(SealHubError):
    """Raised when an upload is rejected by the threat scan."""

    def __init__(self, threats: Sequence[Threat]) -> None:
        self.threats = list(threats)
        names = ", ".join(threat.name for threat in self.threats) or "unknown threat"
        super().__init__(f"File failed security scan: {names}")


class TransferFailedError(SealHubError):
    """Raised for network or storage failures during scan, upload or download.

    The core never retries; callers restart the whole transfer.
    """


class FileExpiredError(TransferFailedError):
    """Raised when a file record is past its expiry timestamp."""


class PreprocessingFailedError(SealHubError):
    """Raised when an image cannot be decoded for metadata stripping."""


class KeyStoreError(SealHubError):
    """Raised when the local private key store cannot be read or written."""
