"""Tests for HeaderAnalyzer findings order, value checks and scoring."""

import unittest

from headerscan.analyzer import (
    HeaderAnalyzer,
    header_value_findings,
    missing_header_findings,
    normalize_headers,
)
from headerscan.checks import CheckRegistry
from headerscan.models import Finding, Severity
from headerscan.rules import parse_rule


GOOD_HEADERS = {
    "content-security-policy": "default-src 'self'",
    "strict-transport-security": "max-age=63072000; includeSubDomains",
    "x-frame-options": "DENY",
    "x-content-type-options": "nosniff",
    "referrer-policy": "no-referrer",
}


class TestNormalizeHeaders(unittest.TestCase):
    def test_lowercases_names_and_joins_lists(self):
        normalized = normalize_headers({"X-Frame-Options": "DENY", "Set-Cookie": ["a=1", "b=2"]})
        self.assertEqual(normalized, {"x-frame-options": "DENY", "set-cookie": "a=1, b=2"})


class TestMissingHeaders(unittest.TestCase):
    def test_only_required_headers_reported(self):
        findings = missing_header_findings({})
        self.assertEqual(
            [f.header for f in findings],
            [
                "content-security-policy",
                "strict-transport-security",
                "x-frame-options",
                "x-content-type-options",
                "referrer-policy",
            ],
        )
        self.assertIs(findings[0].severity, Severity.CRITICAL)

    def test_present_headers_not_reported(self):
        self.assertEqual(missing_header_findings(GOOD_HEADERS), [])


class TestHeaderValues(unittest.TestCase):
    def test_good_values_are_clean(self):
        self.assertEqual(header_value_findings(GOOD_HEADERS), [])

    def test_bad_values(self):
        headers = {
            "content-security-policy": "script-src 'self' 'unsafe-inline'",
            "strict-transport-security": "max-age=300",
            "x-frame-options": "ALLOW-FROM https://example.com",
            "x-content-type-options": "sniff",
        }
        findings = header_value_findings(headers)
        self.assertEqual(
            [(f.header, f.severity) for f in findings],
            [
                ("content-security-policy", Severity.WARNING),
                ("strict-transport-security", Severity.WARNING),
                ("x-frame-options", Severity.WARNING),
                ("x-content-type-options", Severity.INFO),
            ],
        )

    def test_hsts_at_one_year_is_clean(self):
        self.assertEqual(header_value_findings({"strict-transport-security": "max-age=31536000"}), [])

    def test_sameorigin_is_accepted_case_insensitively(self):
        self.assertEqual(header_value_findings({"x-frame-options": "sameorigin"}), [])


class TestHeaderAnalyzer(unittest.TestCase):
    def test_passes_run_in_fixed_order(self):
        """Missing, values, rules, checks, certificate, then security.txt."""
        rule = parse_rule({"type": "missing", "header": "x-custom", "message": "rule", "severity": "info"})
        registry = CheckRegistry()
        registry.register("plugin", lambda h: [Finding("p", "check", Severity.INFO)])
        analyzer = HeaderAnalyzer(
            rules=[rule],
            checks=registry,
            certificate_check=lambda url: [Finding("certificate", "cert", Severity.WARNING)],
            security_txt_check=lambda url: [Finding("security.txt", "sectxt", Severity.INFO)],
        )
        headers = dict(GOOD_HEADERS)
        del headers["referrer-policy"]
        headers["x-frame-options"] = "bogus"

        findings = analyzer.findings_for("https://example.com", headers)
        self.assertEqual(
            [f.issue for f in findings],
            [
                "Referrer-Policy header is missing",
                "X-Frame-Options has invalid value",
                "rule",
                "check",
                "cert",
                "sectxt",
            ],
        )

    def test_collaborator_failure_is_isolated(self):
        def broken(url):
            raise RuntimeError("tls handshake failed")

        analyzer = HeaderAnalyzer(
            certificate_check=broken,
            security_txt_check=lambda url: [Finding("security.txt", "sectxt", Severity.INFO)],
        )
        with self.assertLogs("headerscan.analyzer", level="WARNING"):
            findings = analyzer.findings_for("https://example.com", GOOD_HEADERS)
        self.assertEqual([f.issue for f in findings], ["sectxt"])

    def test_analyze_builds_scored_result(self):
        analyzer = HeaderAnalyzer()
        result = analyzer.analyze(
            "https://example.com",
            {"Content-Security-Policy": "default-src 'self'", "Strict-Transport-Security": "max-age=31536000"},
        )
        self.assertEqual(result.url, "https://example.com")
        self.assertIn("content-security-policy", result.headers)
        # 50 base, minus x-frame-options (10), x-content-type-options (10), referrer-policy (5).
        self.assertEqual(result.score, 25)
        self.assertTrue(result.timestamp.endswith("+00:00"))

    def test_analyze_score_within_bounds(self):
        result = HeaderAnalyzer().analyze("https://example.com", {})
        self.assertEqual(result.score, 0)
        self.assertEqual(len(result.findings), 5)


if __name__ == "__main__":
    unittest.main()
