"""Pre-upload threat scanning.

Three independent sources can inspect a file before it is encrypted:

- a local byte-signature scanner (best effort),
- a hash-reputation lookup through a Safe Browsing proxy (primary gate),
- an optional third-party hash search on urlscan.io.

Every scanner carries its own ``fail_closed`` flag. When a lookup errors, a
fail-closed scanner reports the file as unsafe and a fail-open scanner
reports it as clean. :class:`ScanPipeline` ANDs the verdicts and unions the
threats of whichever scanners ran.
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

import httpx

from sealhub.core.settings import settings
from sealhub.db.time import utcnow

logger = logging.getLogger(__name__)

EICAR_SIGNATURE = (
    b"X5O!P%@AP[4\\PZX54(P^)7CC)7}$EICAR-STANDARD-ANTIVIRUS-TEST-FILE!$H+H*"
)


class ThreatType(Enum):
    MALWARE = "malware"
    VIRUS = "virus"
    TROJAN = "trojan"
    PHISHING = "phishing"
    SUSPICIOUS = "suspicious"
    UNKNOWN = "unknown"


class ScanSource(Enum):
    """Tag identifying which scanner produced a verdict."""

    SIGNATURE = "signature"
    SAFE_BROWSING = "safe-browsing"
    URLSCAN = "urlscan"


SAFE_BROWSING_THREAT_TYPES: dict[str, ThreatType] = {
    "MALWARE": ThreatType.MALWARE,
    "SOCIAL_ENGINEERING": ThreatType.PHISHING,
    "UNWANTED_SOFTWARE": ThreatType.MALWARE,
    "POTENTIALLY_HARMFUL_APPLICATION": ThreatType.SUSPICIOUS,
}


@dataclass(frozen=True)
class Threat:
    type: ThreatType
    name: str
    description: str = ""

    def to_dict(self) -> dict[str, str]:
        return {"type": self.type.value, "name": self.name, "description": self.description}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Threat:
        try:
            threat_type = ThreatType(data.get("type"))
        except ValueError:
            threat_type = ThreatType.UNKNOWN
        return cls(
            type=threat_type,
            name=str(data.get("name") or "Unknown threat"),
            description=str(data.get("description") or ""),
        )


SCAN_ERROR_THREAT = Threat(
    type=ThreatType.UNKNOWN,
    name="Scan Error",
    description="Unable to verify file safety",
)


def map_safe_browsing_threat(threat_type: str) -> ThreatType:
    """Normalize a Safe Browsing ``threatType`` into :class:`ThreatType`."""
    return SAFE_BROWSING_THREAT_TYPES.get(threat_type, ThreatType.UNKNOWN)


@dataclass(frozen=True)
class ScanTarget:
    """The bytes being scanned plus the name they were uploaded under."""

    name: str
    data: bytes = field(repr=False)

    @property
    def sha256_hex(self) -> str:
        return hashlib.sha256(self.data).hexdigest()


@dataclass(frozen=True)
class SourceVerdict:
    source: ScanSource
    clean: bool
    threats: tuple[Threat, ...] = ()
    errored: bool = False


@dataclass(frozen=True)
class ScanResult:
    """Reduced verdict over every scanner that ran."""

    clean: bool
    threats: tuple[Threat, ...]
    sources: tuple[ScanSource, ...]
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def scan_method(self) -> str:
        if not self.sources:
            return "none"
        if len(self.sources) > 1:
            return "combined"
        return self.sources[0].value

    def to_dict(self) -> dict[str, Any]:
        return {
            "clean": self.clean,
            "threats": [threat.to_dict() for threat in self.threats],
            "scan_method": self.scan_method,
            "sources": [source.value for source in self.sources],
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def reduce(cls, verdicts: Sequence[SourceVerdict]) -> ScanResult:
        """AND the verdicts and union (order-preserving) their threats."""
        threats: dict[Threat, None] = {}
        for verdict in verdicts:
            threats.update(dict.fromkeys(verdict.threats))
        return cls(
            clean=all(verdict.clean for verdict in verdicts),
            threats=tuple(threats),
            sources=tuple(verdict.source for verdict in verdicts),
        )


class Scanner:
    """Base class applying the scanner's failure policy around ``_inspect``."""

    source: ScanSource
    fail_closed: bool = False

    @property
    def configured(self) -> bool:
        return True

    async def _inspect(self, target: ScanTarget) -> list[Threat]:
        raise NotImplementedError

    async def scan(self, target: ScanTarget) -> SourceVerdict:
        try:
            threats = await self._inspect(target)
        except (httpx.HTTPError, ValueError, OSError) as exc:
            if self.fail_closed:
                logger.warning(
                    "%s scan failed for %s; rejecting file: %s", self.source.value, target.name, exc
                )
                return SourceVerdict(self.source, clean=False, threats=(SCAN_ERROR_THREAT,), errored=True)
            logger.warning(
                "%s scan failed for %s; ignoring optional source: %s",
                self.source.value,
                target.name,
                exc,
            )
            return SourceVerdict(self.source, clean=True, errored=True)
        return SourceVerdict(self.source, clean=not threats, threats=tuple(threats))


class _HttpScanner(Scanner):
    def __init__(self, client: httpx.AsyncClient | None = None, timeout: float | None = None) -> None:
        self._client = client
        self.timeout = settings.scan_timeout_seconds if timeout is None else timeout

    async def _send(self, request: httpx.Request) -> httpx.Response:
        if self._client is not None:
            response = await self._client.send(request)
        else:
            async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout)) as client:
                response = await client.send(request)
        response.raise_for_status()
        return response


class SignatureScanner(Scanner):
    """Matches known byte signatures anywhere in the file."""

    source = ScanSource.SIGNATURE
    fail_closed = False

    def __init__(self, signatures: Mapping[str, bytes] | None = None) -> None:
        self.signatures: dict[str, bytes] = {"EICAR-Test-File": EICAR_SIGNATURE}
        if signatures:
            self.signatures.update(signatures)

    @classmethod
    def from_file(cls, path: str | Path) -> SignatureScanner:
        """Load extra ``name<TAB>hex`` signatures, one per line; ``#`` starts a comment."""
        signatures: dict[str, bytes] = {}
        for lineno, line in enumerate(Path(path).read_text(encoding="utf-8").splitlines(), 1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            name, sep, hex_pattern = line.partition("\t")
            if not sep or not name.strip():
                raise ValueError(f"{path}:{lineno}: expected 'name<TAB>hex'")
            signatures[name.strip()] = bytes.fromhex(hex_pattern.strip())
        return cls(signatures)

    async def _inspect(self, target: ScanTarget) -> list[Threat]:
        return [
            Threat(ThreatType.MALWARE, name, "Matched local signature database")
            for name, pattern in self.signatures.items()
            if pattern and pattern in target.data
        ]


class ReputationScanner(_HttpScanner):
    """Hash lookup against the Safe Browsing proxy. Fails closed."""

    source = ScanSource.SAFE_BROWSING
    fail_closed = True

    def __init__(
        self,
        proxy_url: str | None,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        super().__init__(client, timeout)
        self.proxy_url = proxy_url

    @property
    def configured(self) -> bool:
        return bool(self.proxy_url)

    async def _inspect(self, target: ScanTarget) -> list[Threat]:
        if not self.proxy_url:
            raise ValueError("Reputation proxy URL is not configured")
        request = httpx.Request(
            "POST",
            self.proxy_url,
            json={"hash": target.sha256_hex, "url": target.name},
        )
        payload = (await self._send(request)).json()
        if not isinstance(payload, dict):
            raise ValueError("Unexpected reputation response")
        matches = payload.get("matches") or []
        if not isinstance(matches, list):
            raise ValueError("Reputation response 'matches' is not a list")
        return [self._normalize(match) for match in matches]

    @staticmethod
    def _normalize(match: Any) -> Threat:
        if not isinstance(match, dict):
            return Threat(ThreatType.UNKNOWN, "Unknown threat")
        threat_type = str(match.get("threatType") or "")
        platform = str(match.get("platformType") or "")
        return Threat(
            type=map_safe_browsing_threat(threat_type),
            name=threat_type or "Unknown threat",
            description=platform,
        )


class ThirdPartyHashScanner(_HttpScanner):
    """urlscan.io hash search. Fails open; skipped when no API key is set."""

    source = ScanSource.URLSCAN
    fail_closed = False

    def __init__(
        self,
        api_key: str | None,
        base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        super().__init__(client, timeout)
        self.api_key = api_key
        self.base_url = (base_url or settings.urlscan_base_url).rstrip("/")

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def _inspect(self, target: ScanTarget) -> list[Threat]:
        request = httpx.Request(
            "GET",
            f"{self.base_url}/api/v1/search/",
            params={"q": f"hash:{target.sha256_hex}"},
            headers={"API-Key": self.api_key or ""},
        )
        payload = (await self._send(request)).json()
        results = payload.get("results") if isinstance(payload, dict) else None
        if results:
            return [
                Threat(
                    ThreatType.SUSPICIOUS,
                    "File hash found in threat database",
                    "File hash matches known suspicious content",
                )
            ]
        return []


@dataclass(frozen=True)
class ScanOptions:
    """Per-call toggles; a source also has to be configured to run."""

    use_signature: bool = True
    use_reputation: bool = True
    use_third_party: bool = True

    def enables(self, source: ScanSource) -> bool:
        return {
            ScanSource.SIGNATURE: self.use_signature,
            ScanSource.SAFE_BROWSING: self.use_reputation,
            ScanSource.URLSCAN: self.use_third_party,
        }[source]


class ScanPipeline:
    """Runs every enabled, configured scanner and reduces their verdicts."""

    def __init__(self, scanners: Iterable[Scanner]) -> None:
        self.scanners = list(scanners)

    @classmethod
    def from_settings(cls, client: httpx.AsyncClient | None = None) -> ScanPipeline:
        scanners: list[Scanner] = []
        if settings.signature_scan_enabled:
            if settings.signature_db_path:
                scanners.append(SignatureScanner.from_file(settings.signature_db_path))
            else:
                scanners.append(SignatureScanner())
        scanners.append(ReputationScanner(settings.safe_browsing_proxy_url, client=client))
        scanners.append(
            ThirdPartyHashScanner(
                settings.urlscan_api_key,
                base_url=settings.urlscan_base_url,
                client=client,
            )
        )
        return cls(scanners)

    async def scan(self, target: ScanTarget, options: ScanOptions | None = None) -> ScanResult:
        options = options or ScanOptions()
        verdicts: list[SourceVerdict] = []
        for scanner in self.scanners:
            if not scanner.configured or not options.enables(scanner.source):
                continue
            verdicts.append(await scanner.scan(target))

        result = ScanResult.reduce(verdicts)
        if result.clean:
            logger.debug("Scan of %s clean via %s", target.name, result.scan_method)
        else:
            logger.info(
                "Scan of %s found %d threat(s) via %s",
                target.name,
                len(result.threats),
                result.scan_method,
            )
        return result
