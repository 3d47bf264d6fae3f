"""Tests for TLS certificate findings."""

import datetime as dt
import unittest

from headerscan.certificate import CertificateChecker, CertificateInfo, certificate_findings
from headerscan.models import Severity

NOW = dt.datetime(2026, 6, 1, tzinfo=dt.timezone.utc)


def _info(days_left=365, algorithm="sha256", key_size=2048):
    return CertificateInfo(
        subject="CN=example.com",
        issuer="CN=Test CA",
        not_after=NOW + dt.timedelta(days=days_left),
        signature_algorithm=algorithm,
        key_size=key_size,
    )


class TestCertificateFindings(unittest.TestCase):
    def test_healthy_certificate(self):
        self.assertEqual(certificate_findings(_info(), now=NOW), [])

    def test_expired(self):
        findings = certificate_findings(_info(days_left=-1), now=NOW)
        self.assertEqual([(f.issue, f.severity) for f in findings], [("SSL certificate has expired", Severity.CRITICAL)])

    def test_expiring_soon(self):
        findings = certificate_findings(_info(days_left=10), now=NOW)
        self.assertEqual(findings[0].issue, "SSL certificate expires in 10 days")
        self.assertIs(findings[0].severity, Severity.WARNING)

    def test_weak_signature_and_key(self):
        findings = certificate_findings(_info(algorithm="sha1", key_size=1024), now=NOW)
        self.assertEqual(
            [f.severity for f in findings],
            [Severity.WARNING, Severity.CRITICAL],
        )

    def test_non_rsa_key_not_size_checked(self):
        self.assertEqual(certificate_findings(_info(key_size=None), now=NOW), [])


class TestCertificateChecker(unittest.TestCase):
    def test_plain_http_skipped(self):
        calls = []
        checker = CertificateChecker(fetch=lambda *args: calls.append(args))
        self.assertEqual(checker("http://example.com"), [])
        self.assertEqual(calls, [])

    def test_host_and_port_passed_through(self):
        calls = []

        def fetch(host, port, timeout):
            calls.append((host, port, timeout))
            return _info(days_left=-5)

        findings = CertificateChecker(timeout=4, fetch=fetch).check("https://example.com:8443/x")
        self.assertEqual(calls, [("example.com", 8443, 4)])
        self.assertEqual(len(findings), 1)

    def test_connection_error_yields_no_findings(self):
        def fetch(host, port, timeout):
            raise ConnectionRefusedError("refused")

        with self.assertLogs("headerscan.certificate", level="WARNING"):
            self.assertEqual(CertificateChecker(fetch=fetch).check("https://example.com"), [])


if __name__ == "__main__":
    unittest.main()
