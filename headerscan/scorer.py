from __future__ import annotations

from typing import Dict, Iterable, Mapping

from .models import Finding, Severity

HEADER_WEIGHTS: Dict[str, int] = {
    "content-security-policy": 25,
    "strict-transport-security": 25,
    "x-frame-options": 15,
    "x-content-type-options": 10,
    "referrer-policy": 10,
    "permissions-policy": 5,
    "cross-origin-opener-policy": 5,
    "cross-origin-embedder-policy": 3,
    "cross-origin-resource-policy": 2,
}

SEVERITY_PENALTIES: Dict[Severity, int] = {
    Severity.CRITICAL: 20,
    Severity.WARNING: 10,
    Severity.INFO: 5,
}

MIN_SCORE = 0
MAX_SCORE = 100


def base_score(headers: Mapping[str, str]) -> int:
    """Sum of weights for every scored header present (names lower-cased)."""
    return sum(weight for name, weight in HEADER_WEIGHTS.items() if name in headers)


def penalty(findings: Iterable[Finding]) -> int:
    return sum(SEVERITY_PENALTIES[f.severity] for f in findings)


def calculate_score(headers: Mapping[str, str], findings: Iterable[Finding]) -> int:
    """Presence-based score minus severity penalties, clamped to [0, 100]."""
    raw = base_score(headers) - penalty(findings)
    return int(round(min(MAX_SCORE, max(MIN_SCORE, raw))))
