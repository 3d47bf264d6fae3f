"""Tests for the check registry, plugin loading and built-in checks."""

import os
import shutil
import tempfile
import textwrap
import unittest

from headerscan.builtin_checks import (
    cache_control_check,
    cookie_security_check,
    csp_directive_check,
    information_disclosure_check,
    parse_csp,
    transport_security_check,
)
from headerscan.checks import (
    CheckRegistry,
    build_registry,
    install_plugin,
    list_plugins,
    remove_plugin,
)
from headerscan.exceptions import HeaderScanError
from headerscan.models import Finding, Severity


PLUGIN_WITH_CHECK = textwrap.dedent(
    """
    def check(headers):
        if "x-debug" in headers:
            return [{"header": "x-debug", "issue": "Debug header exposed", "severity": "warning"}]
        return []
    """
)

PLUGIN_WITH_CHECKS_LIST = textwrap.dedent(
    """
    def first(headers):
        return [{"header": "a", "issue": "first", "severity": "info"}]

    def second(headers):
        return [{"header": "b", "issue": "second", "severity": "info"}]

    CHECKS = [first, second]
    """
)


class TestCheckRegistry(unittest.TestCase):
    def test_runs_in_registration_order(self):
        registry = CheckRegistry()
        registry.register("one", lambda h: [Finding("a", "one", Severity.INFO)])
        registry.register("two", lambda h: [Finding("b", "two", Severity.INFO)])
        self.assertEqual([f.issue for f in registry.run({})], ["one", "two"])
        self.assertEqual(registry.names(), ["one", "two"])

    def test_failing_check_is_isolated(self):
        """One broken check is logged and the others still run."""
        registry = CheckRegistry()

        def broken(headers):
            raise RuntimeError("plugin bug")

        registry.register("broken", broken)
        registry.register("ok", lambda h: [Finding("a", "ok", Severity.INFO)])
        with self.assertLogs("headerscan.checks", level="WARNING") as logs:
            findings = registry.run({})
        self.assertEqual([f.issue for f in findings], ["ok"])
        self.assertIn("broken", logs.output[0])

    def test_non_list_result_is_skipped(self):
        registry = CheckRegistry()
        registry.register("bad", lambda h: "oops")
        with self.assertLogs("headerscan.checks", level="WARNING"):
            self.assertEqual(registry.run({}), [])

    def test_dict_results_are_coerced(self):
        registry = CheckRegistry()
        registry.register("dicts", lambda h: [{"header": "x", "issue": "i", "severity": "critical"}])
        findings = registry.run({})
        self.assertEqual(findings, [Finding("x", "i", Severity.CRITICAL)])

    def test_partially_invalid_result_contributes_nothing(self):
        """A list with one malformed item is dropped whole, not half-applied."""
        registry = CheckRegistry()
        registry.register("mixed", lambda h: [Finding("a", "kept?", Severity.INFO), {"bad": 1}])
        registry.register("ok", lambda h: [Finding("b", "ok", Severity.INFO)])
        with self.assertLogs("headerscan.checks", level="WARNING") as logs:
            findings = registry.run({})
        self.assertEqual([f.issue for f in findings], ["ok"])
        self.assertIn("mixed", logs.output[0])

    def test_register_rejects_non_callable(self):
        with self.assertRaises(TypeError):
            CheckRegistry().register("nope", 42)


class PluginDirTestCase(unittest.TestCase):
    def setUp(self):
        self.dir = tempfile.mkdtemp(prefix="headerscan-plugins-")

    def tearDown(self):
        shutil.rmtree(self.dir, ignore_errors=True)

    def write_plugin(self, name, source, directory=None):
        path = os.path.join(directory or self.dir, name)
        with open(path, "w", encoding="utf-8") as f:
            f.write(source)
        return path


class TestPluginLoading(PluginDirTestCase):
    def test_load_directory_registers_check_and_checks_list(self):
        self.write_plugin("debug_header.py", PLUGIN_WITH_CHECK)
        self.write_plugin("pair.py", PLUGIN_WITH_CHECKS_LIST)
        self.write_plugin("_private.py", PLUGIN_WITH_CHECK)
        self.write_plugin("notes.txt", "not python")

        registry = CheckRegistry()
        self.assertEqual(registry.load_directory(self.dir), 3)
        self.assertEqual(registry.names(), ["debug_header.check", "pair.first", "pair.second"])
        issues = [f.issue for f in registry.run({"x-debug": "1"})]
        self.assertEqual(issues, ["Debug header exposed", "first", "second"])

    def test_broken_plugin_is_skipped(self):
        self.write_plugin("broken.py", "raise RuntimeError('import failure')\n")
        self.write_plugin("good.py", PLUGIN_WITH_CHECK)
        registry = CheckRegistry()
        with self.assertLogs("headerscan.checks", level="WARNING"):
            self.assertEqual(registry.load_directory(self.dir), 1)
        self.assertEqual(registry.names(), ["good.check"])

    def test_plugin_without_checks_is_skipped(self):
        self.write_plugin("empty.py", "VALUE = 1\n")
        registry = CheckRegistry()
        with self.assertLogs("headerscan.checks", level="WARNING"):
            self.assertEqual(registry.load_directory(self.dir), 0)

    def test_missing_directory_loads_nothing(self):
        registry = CheckRegistry()
        self.assertEqual(registry.load_directory(os.path.join(self.dir, "absent")), 0)

    def test_build_registry_puts_builtins_first(self):
        self.write_plugin("debug_header.py", PLUGIN_WITH_CHECK)
        registry = build_registry(self.dir)
        self.assertEqual(
            registry.names(),
            ["builtin.cookie_security", "builtin.information_disclosure", "debug_header.check"],
        )
        self.assertEqual(len(build_registry(include_builtin=False)), 0)

    def test_build_registry_extended_checks_are_opt_in(self):
        self.assertNotIn("builtin.csp_directives", build_registry(self.dir).names())
        registry = build_registry(self.dir, include_extended=True)
        self.assertEqual(
            registry.names(),
            [
                "builtin.cookie_security",
                "builtin.information_disclosure",
                "builtin.csp_directives",
                "builtin.cache_control",
                "builtin.transport_security",
            ],
        )


class TestPluginManagement(PluginDirTestCase):
    def setUp(self):
        super().setUp()
        self.source_dir = tempfile.mkdtemp(prefix="headerscan-src-")
        self.plugin_dir = os.path.join(self.dir, "plugins")

    def tearDown(self):
        shutil.rmtree(self.source_dir, ignore_errors=True)
        super().tearDown()

    def test_install_list_remove(self):
        source = self.write_plugin("custom.py", PLUGIN_WITH_CHECK, directory=self.source_dir)
        dest = install_plugin(source, self.plugin_dir)
        self.assertTrue(os.path.isfile(dest))
        self.assertEqual(list_plugins(self.plugin_dir), ["custom"])

        remove_plugin("custom", self.plugin_dir)
        self.assertEqual(list_plugins(self.plugin_dir), [])

    def test_install_rejects_missing_and_non_python_files(self):
        with self.assertRaises(HeaderScanError):
            install_plugin(os.path.join(self.source_dir, "nope.py"), self.plugin_dir)
        text = self.write_plugin("readme.txt", "hello", directory=self.source_dir)
        with self.assertRaises(HeaderScanError):
            install_plugin(text, self.plugin_dir)

    def test_remove_unknown_plugin_raises(self):
        with self.assertRaises(HeaderScanError):
            remove_plugin("ghost", self.plugin_dir)


class TestCookieSecurityCheck(unittest.TestCase):
    def test_no_cookie_no_findings(self):
        self.assertEqual(cookie_security_check({}), [])

    def test_secure_cookie_is_clean(self):
        headers = {"set-cookie": "sid=abc; Path=/; Secure; HttpOnly; SameSite=Strict"}
        self.assertEqual(cookie_security_check(headers), [])

    def test_insecure_cookies_reported_once_per_issue(self):
        headers = {
            "set-cookie": "a=1; Expires=Wed, 21 Oct 2026 07:28:00 GMT; Path=/, b=2; Path=/",
        }
        issues = [f.issue for f in cookie_security_check(headers)]
        self.assertEqual(
            issues,
            [
                "Cookie missing Secure flag",
                "Cookie missing HttpOnly flag",
                "Cookie missing SameSite attribute",
            ],
        )


class TestInformationDisclosureCheck(unittest.TestCase):
    def test_disclosing_headers(self):
        headers = {
            "server": "Apache/2.4.41 (Ubuntu)",
            "x-powered-by": "PHP/7.4",
            "x-aspnet-version": "4.0.30319",
            "via": "1.1 varnish",
        }
        findings = information_disclosure_check(headers)
        self.assertEqual(
            [(f.header, f.severity) for f in findings],
            [
                ("server", Severity.INFO),
                ("x-powered-by", Severity.WARNING),
                ("x-aspnet-version", Severity.WARNING),
                ("via", Severity.INFO),
            ],
        )

    def test_generic_server_is_not_flagged(self):
        self.assertEqual(information_disclosure_check({"server": "cloudflare"}), [])


def _issues(findings):
    return [(f.issue, f.severity) for f in findings]


class TestCspDirectiveCheck(unittest.TestCase):
    def test_no_policy_no_findings(self):
        self.assertEqual(csp_directive_check({}), [])

    def test_parse_csp_first_directive_wins(self):
        parsed = parse_csp("Default-Src 'self'; script-src 'self' cdn.example; default-src *;")
        self.assertEqual(parsed, {"default-src": ["'self'"], "script-src": ["'self'", "cdn.example"]})

    def test_strict_policy_is_clean(self):
        policy = "default-src 'none'; script-src 'nonce-abc' 'strict-dynamic'; object-src 'none'"
        self.assertEqual(csp_directive_check({"content-security-policy": policy}), [])

    def test_missing_directives(self):
        findings = csp_directive_check({"content-security-policy": "img-src 'self'"})
        self.assertEqual(
            _issues(findings),
            [
                ("Missing critical directive 'default-src'", Severity.CRITICAL),
                ("Missing 'script-src' directive", Severity.WARNING),
                ("Missing 'object-src' directive", Severity.INFO),
            ],
        )
        self.assertTrue(all(f.header == "content-security-policy" for f in findings))

    def test_unsafe_sources(self):
        policy = "default-src 'self'; script-src 'self' 'unsafe-inline' 'unsafe-eval' data:; object-src 'none'"
        issues = _issues(csp_directive_check({"content-security-policy": policy}))
        inline = "CSP directive 'script-src' contains 'unsafe-inline': Allows inline scripts/styles, vulnerable to XSS"
        evaluated = "CSP directive 'script-src' contains 'unsafe-eval': Allows eval(), vulnerable to code injection"
        self.assertIn((inline, Severity.CRITICAL), issues)
        self.assertIn((evaluated, Severity.CRITICAL), issues)
        self.assertIn(("script-src allows 'data:' URIs, potential XSS vector", Severity.WARNING), issues)
        self.assertIn(("script-src uses 'unsafe-inline' without nonces or hashes", Severity.CRITICAL), issues)

    def test_wildcards_deprecated_and_nonce_without_strict_dynamic(self):
        policy = (
            "default-src 'self'; img-src *.example; script-src 'sha256-abc'; "
            "object-src 'none'; block-all-mixed-content"
        )
        issues = _issues(csp_directive_check({"content-security-policy": policy}))
        self.assertIn(("img-src allows all subdomains of *.example", Severity.INFO), issues)
        any_origin = "CSP directive 'img-src' contains '*': Allows resources from any origin"
        self.assertIn((any_origin, Severity.WARNING), issues)
        self.assertIn(("Deprecated directive 'block-all-mixed-content'", Severity.INFO), issues)
        self.assertIn(("script-src uses nonces/hashes but not 'strict-dynamic'", Severity.INFO), issues)


class TestCacheControlCheck(unittest.TestCase):
    def test_missing_header(self):
        findings = cache_control_check({})
        self.assertEqual(_issues(findings), [("Cache-Control header is missing", Severity.INFO)])

    def test_sensitive_page_settings_are_clean(self):
        headers = {"cache-control": "no-store, no-cache, private", "pragma": "no-cache"}
        self.assertEqual(cache_control_check(headers), [])

    def test_public_caching_without_pragma(self):
        findings = cache_control_check({"cache-control": "Public, max-age=600"})
        self.assertEqual(
            _issues(findings),
            [
                ("Cache-Control allows public caching which may expose sensitive data", Severity.WARNING),
                ("Cache-Control does not prevent caching of potentially sensitive data", Severity.INFO),
                ("Pragma header missing (needed for HTTP/1.0 compatibility)", Severity.INFO),
            ],
        )
        self.assertEqual(findings[-1].header, "pragma")


class TestTransportSecurityCheck(unittest.TestCase):
    def test_hardened_headers_are_clean(self):
        headers = {
            "strict-transport-security": "max-age=63072000; includeSubDomains; preload",
            "content-security-policy": "default-src 'self'; upgrade-insecure-requests",
        }
        self.assertEqual(transport_security_check(headers), [])

    def test_weak_hsts_and_no_upgrade(self):
        findings = transport_security_check({"strict-transport-security": "max-age=31536000"})
        self.assertEqual(
            _issues(findings),
            [
                ("HSTS header missing preload directive", Severity.INFO),
                ("HSTS header missing includeSubDomains directive", Severity.WARNING),
                ("CSP missing upgrade-insecure-requests directive", Severity.INFO),
            ],
        )

    def test_no_hsts_only_checks_csp(self):
        findings = transport_security_check({})
        self.assertEqual([f.header for f in findings], ["content-security-policy"])


if __name__ == "__main__":
    unittest.main()
