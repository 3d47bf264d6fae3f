"""security.txt (RFC 9116) presence and content checks."""

from __future__ import annotations

import datetime as _dt
import logging
import re
from typing import List, Optional
from urllib.parse import urlsplit

from .exceptions import HeaderScanError
from .fetchers import BaseFetcher
from .models import Finding, Severity

logger = logging.getLogger(__name__)

SECURITY_TXT_PATHS = ("/.well-known/security.txt", "/security.txt")


def origin_of(url: str) -> str:
    parts = urlsplit(url)
    host = parts.hostname or ""
    if parts.port and parts.port not in (80, 443):
        host = f"{host}:{parts.port}"
    return f"{parts.scheme}://{host}"


def _parse_expires(value: str) -> Optional[_dt.datetime]:
    try:
        parsed = _dt.datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=_dt.timezone.utc)
    return parsed


def validate_security_txt(content: str, now: Optional[_dt.datetime] = None) -> List[Finding]:
    now = now or _dt.datetime.now(tz=_dt.timezone.utc)
    findings: List[Finding] = []

    if not re.search(r"^Contact:", content, re.IGNORECASE | re.MULTILINE):
        findings.append(
            Finding(
                header="security.txt",
                issue="Missing required field: Contact",
                severity=Severity.WARNING,
                recommended_fix="Add Contact field to security.txt",
            )
        )

    expires = re.search(r"^Expires:\s*(.+)$", content, re.IGNORECASE | re.MULTILINE)
    if not expires:
        findings.append(
            Finding(
                header="security.txt",
                issue="Missing recommended field: Expires",
                severity=Severity.INFO,
                recommended_fix="Consider adding Expires field to security.txt",
            )
        )
    else:
        expiry = _parse_expires(expires.group(1))
        if expiry is not None and expiry < now:
            findings.append(
                Finding(
                    header="security.txt",
                    issue="security.txt has expired",
                    severity=Severity.WARNING,
                    recommended_fix="Update Expires field in security.txt",
                )
            )
    return findings


class SecurityTxtChecker:
    def __init__(self, fetcher: BaseFetcher) -> None:
        self._fetcher = fetcher

    def check(self, url: str) -> List[Finding]:
        base = origin_of(url)
        for path in SECURITY_TXT_PATHS:
            try:
                response = self._fetcher.fetch(base + path)
            except (HeaderScanError, ValueError) as exc:
                logger.debug("security.txt not at %s%s: %s", base, path, exc)
                continue
            return validate_security_txt(response.body.decode("utf-8", errors="replace"))

        return [
            Finding(
                header="security.txt",
                issue="security.txt file not found",
                severity=Severity.INFO,
                recommended_fix="Add security.txt file at /.well-known/security.txt",
            )
        ]

    __call__ = check
