from __future__ import annotations

import datetime as _dt
import logging
import re
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from .checks import CheckRegistry
from .models import Finding, ScanResult, Severity
from .rules import Rule, evaluate_rules
from .scorer import calculate_score

logger = logging.getLogger(__name__)

HSTS_MIN_MAX_AGE = 31_536_000

# Scored headers and what to report when one is absent.
SECURITY_HEADERS: Dict[str, Dict[str, Any]] = {
    "content-security-policy": {
        "required": True,
        "severity": Severity.CRITICAL,
        "message": "Content-Security-Policy header is missing",
        "fix": "Add CSP header: Content-Security-Policy: default-src 'self'",
    },
    "strict-transport-security": {
        "required": True,
        "severity": Severity.CRITICAL,
        "message": "Strict-Transport-Security (HSTS) header is missing",
        "fix": "Add HSTS header: Strict-Transport-Security: max-age=31536000; includeSubDomains",
    },
    "x-frame-options": {
        "required": True,
        "severity": Severity.WARNING,
        "message": "X-Frame-Options header is missing",
        "fix": "Add X-Frame-Options: DENY or SAMEORIGIN",
    },
    "x-content-type-options": {
        "required": True,
        "severity": Severity.WARNING,
        "message": "X-Content-Type-Options header is missing",
        "fix": "Add X-Content-Type-Options: nosniff",
    },
    "referrer-policy": {
        "required": True,
        "severity": Severity.INFO,
        "message": "Referrer-Policy header is missing",
        "fix": "Add Referrer-Policy: strict-origin-when-cross-origin",
    },
    "permissions-policy": {
        "required": False,
        "severity": Severity.INFO,
        "message": "Permissions-Policy header is missing",
        "fix": "Consider adding Permissions-Policy to control browser features",
    },
    "cross-origin-opener-policy": {
        "required": False,
        "severity": Severity.INFO,
        "message": "Cross-Origin-Opener-Policy header is missing",
        "fix": "Add Cross-Origin-Opener-Policy: same-origin",
    },
    "cross-origin-embedder-policy": {
        "required": False,
        "severity": Severity.INFO,
        "message": "Cross-Origin-Embedder-Policy header is missing",
        "fix": "Add Cross-Origin-Embedder-Policy: require-corp",
    },
    "cross-origin-resource-policy": {
        "required": False,
        "severity": Severity.INFO,
        "message": "Cross-Origin-Resource-Policy header is missing",
        "fix": "Add Cross-Origin-Resource-Policy: same-origin",
    },
}

# Collaborator signatures: certificate checks get the URL, security.txt
# checks get the URL and may fetch through whatever they were built with.
CertificateCheck = Callable[[str], List[Finding]]
SecurityTxtCheck = Callable[[str], List[Finding]]


def normalize_headers(headers: Mapping[str, Any]) -> Dict[str, str]:
    """Lower-case header names and stringify values (lists are comma-joined)."""
    normalized: Dict[str, str] = {}
    for name, value in headers.items():
        if isinstance(value, (list, tuple)):
            value = ", ".join(str(v) for v in value)
        normalized[str(name).lower()] = str(value)
    return normalized


def missing_header_findings(headers: Mapping[str, str]) -> List[Finding]:
    findings = []
    for name, config in SECURITY_HEADERS.items():
        if not config["required"] or name in headers:
            continue
        findings.append(
            Finding(
                header=name,
                issue=config["message"],
                severity=config["severity"],
                recommended_fix=config["fix"],
            )
        )
    return findings


def header_value_findings(headers: Mapping[str, str]) -> List[Finding]:
    findings = []

    csp = headers.get("content-security-policy")
    if csp and ("unsafe-inline" in csp or "unsafe-eval" in csp):
        findings.append(
            Finding(
                header="content-security-policy",
                issue="CSP contains unsafe directives (unsafe-inline or unsafe-eval)",
                severity=Severity.WARNING,
                recommended_fix="Remove unsafe-inline and unsafe-eval, use nonces or hashes",
            )
        )

    hsts = headers.get("strict-transport-security")
    if hsts:
        match = re.search(r"max-age=(\d+)", hsts)
        if match and int(match.group(1)) < HSTS_MIN_MAX_AGE:
            findings.append(
                Finding(
                    header="strict-transport-security",
                    issue="HSTS max-age is less than 1 year (31536000 seconds)",
                    severity=Severity.WARNING,
                    recommended_fix="Set max-age to at least 31536000",
                )
            )

    xfo = headers.get("x-frame-options")
    if xfo is not None:
        tokens = xfo.upper().split()
        if not tokens or tokens[0] not in ("DENY", "SAMEORIGIN"):
            findings.append(
                Finding(
                    header="x-frame-options",
                    issue="X-Frame-Options has invalid value",
                    severity=Severity.WARNING,
                    recommended_fix="Use DENY or SAMEORIGIN",
                )
            )

    xcto = headers.get("x-content-type-options")
    if xcto is not None and xcto.strip().lower() != "nosniff":
        findings.append(
            Finding(
                header="x-content-type-options",
                issue='X-Content-Type-Options should be "nosniff"',
                severity=Severity.INFO,
                recommended_fix="Set to nosniff",
            )
        )

    return findings


class HeaderAnalyzer:
    """Turns a response's headers into an ordered findings list and a score.

    Passes run in a fixed order: missing required headers, value
    validation, declarative rules, registered checks, certificate checks,
    security.txt checks.
    """

    def __init__(
        self,
        rules: Optional[Sequence[Rule]] = None,
        checks: Optional[CheckRegistry] = None,
        certificate_check: Optional[CertificateCheck] = None,
        security_txt_check: Optional[SecurityTxtCheck] = None,
    ) -> None:
        self._rules = list(rules or [])
        self._checks = checks if checks is not None else CheckRegistry()
        self._certificate_check = certificate_check
        self._security_txt_check = security_txt_check

    def findings_for(self, url: str, headers: Mapping[str, str]) -> List[Finding]:
        findings: List[Finding] = []
        findings.extend(missing_header_findings(headers))
        findings.extend(header_value_findings(headers))
        findings.extend(evaluate_rules(self._rules, headers))
        findings.extend(self._checks.run(headers))
        if self._certificate_check is not None:
            findings.extend(self._run_collaborator("certificate", self._certificate_check, url))
        if self._security_txt_check is not None:
            findings.extend(self._run_collaborator("security.txt", self._security_txt_check, url))
        return findings

    def analyze(self, url: str, headers: Mapping[str, Any]) -> ScanResult:
        normalized = normalize_headers(headers)
        findings = self.findings_for(url, normalized)
        return ScanResult(
            url=url,
            timestamp=_dt.datetime.now(tz=_dt.timezone.utc).isoformat(timespec="seconds"),
            headers=normalized,
            findings=findings,
            score=calculate_score(normalized, findings),
        )

    @staticmethod
    def _run_collaborator(label: str, check: Callable[[str], List[Finding]], url: str) -> List[Finding]:
        try:
            return list(check(url) or [])
        except Exception as exc:  # noqa: BLE001
            logger.warning("%s check failed for %s: %s", label, url, exc)
            return []
