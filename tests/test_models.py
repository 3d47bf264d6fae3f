"""Tests for data model classes."""

import unittest

from headerscan.models import FetchResponse, Finding, ScanResult, Severity, Target


class TestTarget(unittest.TestCase):
    """Verify Target construction and immutability."""

    def test_domain_derived_from_url(self):
        """The domain should be the lower-cased host of the URL."""
        target = Target.from_url("https://Example.COM:8443/path?q=1")
        self.assertEqual(target.url, "https://Example.COM:8443/path?q=1")
        self.assertEqual(target.domain, "example.com")

    def test_scheme_defaults_to_https(self):
        """A bare host should be scanned over https."""
        target = Target.from_url("example.org")
        self.assertEqual(target.url, "https://example.org")
        self.assertEqual(target.domain, "example.org")

    def test_target_is_immutable(self):
        """Frozen dataclass should raise on attribute assignment."""
        target = Target.from_url("https://example.com")
        with self.assertRaises(AttributeError):
            target.url = "https://other.com"

    def test_url_without_host_rejected(self):
        """A URL with no host cannot be mapped to a circuit breaker."""
        with self.assertRaises(ValueError):
            Target.from_url("https://")


class TestSeverity(unittest.TestCase):
    """Verify severity parsing and ordering."""

    def test_parse_is_case_insensitive(self):
        """Severity names from config files may be in any case."""
        self.assertIs(Severity.parse("Critical"), Severity.CRITICAL)
        self.assertIs(Severity.parse(" info "), Severity.INFO)

    def test_parse_rejects_unknown(self):
        """Unknown severities should raise ValueError."""
        with self.assertRaises(ValueError):
            Severity.parse("fatal")

    def test_rank_orders_critical_first(self):
        """Critical sorts before warning, warning before info."""
        ranked = sorted([Severity.INFO, Severity.CRITICAL, Severity.WARNING], key=lambda s: s.rank)
        self.assertEqual(ranked, [Severity.CRITICAL, Severity.WARNING, Severity.INFO])


class TestFinding(unittest.TestCase):
    """Verify the Finding export schema."""

    def test_to_dict_uses_lowercase_severity(self):
        """Exported findings carry the severity as a lower-case string."""
        finding = Finding(header="x-frame-options", issue="missing", severity=Severity.WARNING)
        self.assertEqual(
            finding.to_dict(),
            {"header": "x-frame-options", "issue": "missing", "severity": "warning", "recommended_fix": None},
        )

    def test_from_dict(self):
        """Dict findings, as returned by plugins, should convert cleanly."""
        finding = Finding.from_dict(
            {"header": "server", "issue": "leak", "severity": "info", "recommended_fix": "remove it"}
        )
        self.assertEqual(finding, Finding("server", "leak", Severity.INFO, "remove it"))


class TestFetchResponse(unittest.TestCase):
    """Verify success is derived from the status code."""

    def test_2xx_is_success(self):
        self.assertTrue(FetchResponse(url="u", status_code=204).success)

    def test_redirect_and_errors_are_not_success(self):
        self.assertFalse(FetchResponse(url="u", status_code=301).success)
        self.assertFalse(FetchResponse(url="u", status_code=503).success)


class TestScanResult(unittest.TestCase):
    """Verify ScanResult serialization used by the cache and writers."""

    def test_from_dict_restores_findings(self):
        """A cached dict should rebuild an equal ScanResult."""
        result = ScanResult(
            url="https://example.com",
            timestamp="2026-01-01T00:00:00+00:00",
            headers={"x-frame-options": "DENY"},
            findings=[Finding("content-security-policy", "missing", Severity.CRITICAL, "add it")],
            score=15,
        )
        restored = ScanResult.from_dict(result.to_dict())
        self.assertEqual(restored, result)
        self.assertIs(restored.findings[0].severity, Severity.CRITICAL)


if __name__ == "__main__":
    unittest.main()
