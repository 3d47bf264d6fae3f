from __future__ import annotations

import re
from typing import Callable, Dict, List, Mapping, Tuple

from .models import Finding, Severity

_DISCLOSED_SOFTWARE = re.compile(
    r"(Apache|nginx|IIS|Microsoft|PHP|Python|Ruby|Express|Tomcat|Jetty)", re.IGNORECASE
)


def _split_cookies(value: str) -> List[str]:
    # Folded Set-Cookie values are joined with ", " and Expires dates contain commas too.
    return [c.strip() for c in re.split(r",\s*(?=[^;,=\s]+=)", value) if c.strip()]


def cookie_security_check(headers: Mapping[str, str]) -> List[Finding]:
    """Flag Set-Cookie values missing Secure, HttpOnly or SameSite."""
    raw = headers.get("set-cookie")
    if not raw:
        return []

    findings: List[Finding] = []
    for cookie in _split_cookies(raw):
        if not re.search(r";\s*Secure\b", cookie, re.IGNORECASE):
            findings.append(
                Finding(
                    header="set-cookie",
                    issue="Cookie missing Secure flag",
                    severity=Severity.WARNING,
                    recommended_fix="Add Secure flag to cookies: Set-Cookie: name=value; Secure",
                )
            )
        if not re.search(r";\s*HttpOnly\b", cookie, re.IGNORECASE):
            findings.append(
                Finding(
                    header="set-cookie",
                    issue="Cookie missing HttpOnly flag",
                    severity=Severity.WARNING,
                    recommended_fix="Add HttpOnly flag to cookies: Set-Cookie: name=value; HttpOnly",
                )
            )
        if not re.search(r";\s*SameSite=", cookie, re.IGNORECASE):
            findings.append(
                Finding(
                    header="set-cookie",
                    issue="Cookie missing SameSite attribute",
                    severity=Severity.INFO,
                    recommended_fix="Add SameSite attribute: Set-Cookie: name=value; SameSite=Strict",
                )
            )

    unique: List[Finding] = []
    for f in findings:
        if f not in unique:
            unique.append(f)
    return unique


def information_disclosure_check(headers: Mapping[str, str]) -> List[Finding]:
    """Flag headers that reveal server software, framework versions or proxies."""
    findings: List[Finding] = []

    server = headers.get("server")
    if server and _DISCLOSED_SOFTWARE.search(server):
        findings.append(
            Finding(
                header="server",
                issue=f"Server header discloses software: {server}",
                severity=Severity.INFO,
                recommended_fix="Remove or obfuscate Server header to prevent information disclosure",
            )
        )
    if "x-powered-by" in headers:
        findings.append(
            Finding(
                header="x-powered-by",
                issue=f"X-Powered-By header discloses technology: {headers['x-powered-by']}",
                severity=Severity.WARNING,
                recommended_fix="Remove X-Powered-By header to prevent technology stack disclosure",
            )
        )
    if "x-aspnet-version" in headers:
        findings.append(
            Finding(
                header="x-aspnet-version",
                issue="X-AspNet-Version header discloses ASP.NET version",
                severity=Severity.WARNING,
                recommended_fix="Remove X-AspNet-Version header",
            )
        )
    if "x-aspnetmvc-version" in headers:
        findings.append(
            Finding(
                header="x-aspnetmvc-version",
                issue="X-AspNetMvc-Version header discloses ASP.NET MVC version",
                severity=Severity.WARNING,
                recommended_fix="Remove X-AspNetMvc-Version header",
            )
        )
    if "via" in headers:
        findings.append(
            Finding(
                header="via",
                issue=f"Via header may disclose proxy information: {headers['via']}",
                severity=Severity.INFO,
                recommended_fix="Consider removing or sanitizing Via header",
            )
        )
    return findings


BUILTIN_CHECKS: List[Tuple[str, Callable[[Mapping[str, str]], List[Finding]]]] = [
    ("builtin.cookie_security", cookie_security_check),
    ("builtin.information_disclosure", information_disclosure_check),
]


_CSP_DANGEROUS_SOURCES = (
    ("unsafe-inline", "Allows inline scripts/styles, vulnerable to XSS", Severity.CRITICAL),
    ("unsafe-eval", "Allows eval(), vulnerable to code injection", Severity.CRITICAL),
    ("unsafe-hashes", "Allows event handler attributes", Severity.CRITICAL),
    ("*", "Allows resources from any origin", Severity.WARNING),
)

_CSP_DEPRECATED_DIRECTIVES = {
    "block-all-mixed-content": "Use upgrade-insecure-requests instead",
    "plugin-types": "Deprecated, use object-src none instead",
    "referrer": "Use Referrer-Policy header instead",
}


def parse_csp(value: str) -> Dict[str, List[str]]:
    """Split a policy into ``{directive: [source, ...]}``; later duplicates are ignored."""
    directives: Dict[str, List[str]] = {}
    for part in value.split(";"):
        tokens = part.split()
        if tokens and tokens[0].lower() not in directives:
            directives[tokens[0].lower()] = tokens[1:]
    return directives


def _csp(issue: str, severity: Severity, fix: str) -> Finding:
    return Finding(header="content-security-policy", issue=issue, severity=severity, recommended_fix=fix)


def csp_directive_check(headers: Mapping[str, str]) -> List[Finding]:
    """Directive-level review of Content-Security-Policy."""
    csp = headers.get("content-security-policy")
    if not csp:
        return []
    directives = parse_csp(csp)
    findings: List[Finding] = []

    for name, sources in directives.items():
        for source in sources:
            for token, reason, severity in _CSP_DANGEROUS_SOURCES:
                if token in source:
                    findings.append(
                        _csp(
                            f"CSP directive '{name}' contains '{token}': {reason}",
                            severity,
                            f"Remove '{token}' and use nonces, hashes, or strict-dynamic",
                        )
                    )

    if "default-src" not in directives:
        findings.append(
            _csp(
                "Missing critical directive 'default-src'",
                Severity.CRITICAL,
                "Add 'default-src' directive as fallback",
            )
        )
    if "script-src" not in directives:
        findings.append(
            _csp(
                "Missing 'script-src' directive",
                Severity.WARNING,
                "Add 'script-src' directive to control script sources",
            )
        )
    if "object-src" not in directives:
        findings.append(
            _csp("Missing 'object-src' directive", Severity.INFO, "Add 'object-src none' to prevent plugin execution")
        )

    if "data:" in directives.get("script-src", []):
        findings.append(
            _csp(
                "script-src allows 'data:' URIs, potential XSS vector",
                Severity.WARNING,
                "Remove 'data:' from script-src",
            )
        )
    for name, sources in directives.items():
        for source in sources:
            if source.startswith("*.") and source.count(".") == 1:
                findings.append(
                    _csp(
                        f"{name} allows all subdomains of {source}",
                        Severity.INFO,
                        "Consider restricting to specific subdomains",
                    )
                )

    for name, fix in _CSP_DEPRECATED_DIRECTIVES.items():
        if name in directives:
            findings.append(_csp(f"Deprecated directive '{name}'", Severity.INFO, fix))

    for name in ("script-src", "style-src"):
        sources = directives.get(name)
        if sources is None:
            continue
        has_nonce_or_hash = any(s.startswith("'nonce-") or s.startswith("'sha") for s in sources)
        if "'unsafe-inline'" in sources and not has_nonce_or_hash:
            findings.append(
                _csp(
                    f"{name} uses 'unsafe-inline' without nonces or hashes",
                    Severity.CRITICAL,
                    "Use nonces or hashes instead of 'unsafe-inline'",
                )
            )
        if has_nonce_or_hash and "'strict-dynamic'" not in sources:
            findings.append(
                _csp(
                    f"{name} uses nonces/hashes but not 'strict-dynamic'",
                    Severity.INFO,
                    "Consider adding 'strict-dynamic' for better security",
                )
            )
    return findings


def cache_control_check(headers: Mapping[str, str]) -> List[Finding]:
    """Flag responses that may let shared caches keep sensitive content."""
    raw = headers.get("cache-control")
    if raw is None:
        return [
            Finding(
                header="cache-control",
                issue="Cache-Control header is missing",
                severity=Severity.INFO,
                recommended_fix="Add Cache-Control header for sensitive pages: Cache-Control: no-store, no-cache",
            )
        ]

    value = raw.lower()
    findings: List[Finding] = []
    if "public" in value:
        findings.append(
            Finding(
                header="cache-control",
                issue="Cache-Control allows public caching which may expose sensitive data",
                severity=Severity.WARNING,
                recommended_fix="Use private or no-store for sensitive pages",
            )
        )
    if "no-store" not in value and "no-cache" not in value:
        findings.append(
            Finding(
                header="cache-control",
                issue="Cache-Control does not prevent caching of potentially sensitive data",
                severity=Severity.INFO,
                recommended_fix="Add no-store or no-cache directive for sensitive pages",
            )
        )
    if "pragma" not in headers:
        findings.append(
            Finding(
                header="pragma",
                issue="Pragma header missing (needed for HTTP/1.0 compatibility)",
                severity=Severity.INFO,
                recommended_fix="Add Pragma: no-cache for HTTP/1.0 clients",
            )
        )
    return findings


def transport_security_check(headers: Mapping[str, str]) -> List[Finding]:
    """HSTS hardening and CSP upgrade-insecure-requests."""
    findings: List[Finding] = []
    hsts = headers.get("strict-transport-security")
    if hsts is not None:
        directives = {part.strip().split("=", 1)[0].lower() for part in hsts.split(";")}
        if "preload" not in directives:
            findings.append(
                Finding(
                    header="strict-transport-security",
                    issue="HSTS header missing preload directive",
                    severity=Severity.INFO,
                    recommended_fix="Add preload: max-age=31536000; includeSubDomains; preload",
                )
            )
        if "includesubdomains" not in directives:
            findings.append(
                Finding(
                    header="strict-transport-security",
                    issue="HSTS header missing includeSubDomains directive",
                    severity=Severity.WARNING,
                    recommended_fix="Add includeSubDomains: max-age=31536000; includeSubDomains",
                )
            )

    if "upgrade-insecure-requests" not in parse_csp(headers.get("content-security-policy", "")):
        findings.append(
            Finding(
                header="content-security-policy",
                issue="CSP missing upgrade-insecure-requests directive",
                severity=Severity.INFO,
                recommended_fix="Add upgrade-insecure-requests to CSP to automatically upgrade HTTP requests to HTTPS",
            )
        )
    return findings


# Opt-in: these are strict enough to flag most production sites.
EXTENDED_CHECKS: List[Tuple[str, Callable[[Mapping[str, str]], List[Finding]]]] = [
    ("builtin.csp_directives", csp_directive_check),
    ("builtin.cache_control", cache_control_check),
    ("builtin.transport_security", transport_security_check),
]
