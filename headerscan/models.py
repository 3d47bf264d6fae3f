from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urlsplit


class Severity(Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"

    @classmethod
    def parse(cls, value: Any) -> "Severity":
        if isinstance(value, Severity):
            return value
        return cls(str(value).strip().lower())

    @property
    def rank(self) -> int:
        return {"critical": 0, "warning": 1, "info": 2}[self.value]


@dataclass(frozen=True)
class Target:
    url: str
    domain: str

    @classmethod
    def from_url(cls, url: str) -> "Target":
        url = url.strip()
        if "://" not in url:
            url = f"https://{url}"
        domain = (urlsplit(url).hostname or "").lower()
        if not domain:
            raise ValueError(f"cannot derive domain from target: {url}")
        return cls(url=url, domain=domain)


@dataclass(frozen=True)
class Finding:
    header: str
    issue: str
    severity: Severity
    recommended_fix: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "header": self.header,
            "issue": self.issue,
            "severity": self.severity.value,
            "recommended_fix": self.recommended_fix,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Finding":
        return cls(
            header=str(data["header"]),
            issue=str(data["issue"]),
            severity=Severity.parse(data["severity"]),
            recommended_fix=data.get("recommended_fix"),
        )


@dataclass(frozen=True)
class FetchResponse:
    """What a fetcher hands back for a single URL."""

    url: str
    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def success(self) -> bool:
        return 200 <= self.status_code < 300


@dataclass(frozen=True)
class ScanResult:
    url: str
    timestamp: str
    headers: Dict[str, str]
    findings: List[Finding]
    score: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "timestamp": self.timestamp,
            "headers": dict(self.headers),
            "findings": [f.to_dict() for f in self.findings],
            "score": self.score,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ScanResult":
        return cls(
            url=str(data["url"]),
            timestamp=str(data["timestamp"]),
            headers={str(k): str(v) for k, v in (data.get("headers") or {}).items()},
            findings=[Finding.from_dict(f) for f in data.get("findings") or []],
            score=int(data["score"]),
        )


@dataclass(frozen=True)
class SkippedTarget:
    url: str
    domain: str
    reason: str
    error: Optional[str] = None


@dataclass(frozen=True)
class ScanEvent:
    url: str
    domain: str
    outcome: str
    latency_ms: int
    error_type: Optional[str] = None


@dataclass(frozen=True)
class ScanSummary:
    total: int
    scanned_count: int
    cache_hit_count: int
    circuit_open_count: int
    failed_count: int
    avg_latency_ms: float
    failures_by_type: Dict[str, int]

    @property
    def skipped_count(self) -> int:
        return self.circuit_open_count + self.failed_count
