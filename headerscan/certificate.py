from __future__ import annotations

import datetime as _dt
import logging
import socket
import ssl
from dataclasses import dataclass
from typing import Callable, List, Optional
from urllib.parse import urlsplit

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import rsa

from .models import Finding, Severity

logger = logging.getLogger(__name__)

EXPIRY_WARNING_DAYS = 30
MIN_RSA_KEY_BITS = 2048
WEAK_SIGNATURE_ALGORITHMS = ("md5", "sha1")


@dataclass(frozen=True)
class CertificateInfo:
    subject: str
    issuer: str
    not_after: _dt.datetime
    signature_algorithm: str
    key_size: Optional[int]


def fetch_certificate(host: str, port: int = 443, timeout: float = 10.0) -> CertificateInfo:
    """Connect without verification and describe the peer's leaf certificate."""
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    with socket.create_connection((host, port), timeout=timeout) as sock:
        with context.wrap_socket(sock, server_hostname=host) as tls:
            der = tls.getpeercert(binary_form=True)
    if not der:
        raise ssl.SSLError(f"no certificate presented by {host}:{port}")
    return describe_certificate(x509.load_der_x509_certificate(der))


def describe_certificate(cert: x509.Certificate) -> CertificateInfo:
    hash_alg = cert.signature_hash_algorithm
    public_key = cert.public_key()
    not_after = getattr(cert, "not_valid_after_utc", None)
    if not_after is None:
        not_after = cert.not_valid_after.replace(tzinfo=_dt.timezone.utc)
    return CertificateInfo(
        subject=cert.subject.rfc4514_string(),
        issuer=cert.issuer.rfc4514_string(),
        not_after=not_after,
        signature_algorithm=hash_alg.name if hash_alg is not None else "unknown",
        key_size=public_key.key_size if isinstance(public_key, rsa.RSAPublicKey) else None,
    )


def certificate_findings(info: CertificateInfo, now: Optional[_dt.datetime] = None) -> List[Finding]:
    now = now or _dt.datetime.now(tz=_dt.timezone.utc)
    findings: List[Finding] = []

    days_left = int((info.not_after - now).total_seconds() // 86_400)
    if info.not_after < now:
        findings.append(
            Finding(
                header="ssl-certificate",
                issue="SSL certificate has expired",
                severity=Severity.CRITICAL,
                recommended_fix="Renew SSL certificate immediately",
            )
        )
    elif days_left < EXPIRY_WARNING_DAYS:
        findings.append(
            Finding(
                header="ssl-certificate",
                issue=f"SSL certificate expires in {days_left} days",
                severity=Severity.WARNING,
                recommended_fix="Renew SSL certificate soon",
            )
        )

    if any(weak in info.signature_algorithm.lower() for weak in WEAK_SIGNATURE_ALGORITHMS):
        findings.append(
            Finding(
                header="ssl-certificate",
                issue=f"Weak signature algorithm: {info.signature_algorithm}",
                severity=Severity.WARNING,
                recommended_fix="Use SHA256 or stronger",
            )
        )

    if info.key_size is not None and info.key_size < MIN_RSA_KEY_BITS:
        findings.append(
            Finding(
                header="ssl-certificate",
                issue=f"Weak key size: {info.key_size} bits",
                severity=Severity.CRITICAL,
                recommended_fix="Use at least 2048-bit RSA or 256-bit ECC",
            )
        )
    return findings


class CertificateChecker:
    """Inspects the TLS certificate of https targets; errors yield no findings."""

    def __init__(
        self,
        timeout: float = 10.0,
        fetch: Callable[[str, int, float], CertificateInfo] = fetch_certificate,
    ) -> None:
        self._timeout = timeout
        self._fetch = fetch

    def check(self, url: str) -> List[Finding]:
        parts = urlsplit(url)
        if parts.scheme != "https" or not parts.hostname:
            return []
        try:
            info = self._fetch(parts.hostname, parts.port or 443, self._timeout)
        except (OSError, ValueError) as exc:
            logger.warning("Certificate check failed for %s: %s", url, exc)
            return []
        return certificate_findings(info)

    __call__ = check
