from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from typing import List, Optional, Sequence

from headerscan import __version__
from headerscan.analyzer import HeaderAnalyzer
from headerscan.cache import ResponseCache
from headerscan.certificate import CertificateChecker
from headerscan.checks import CheckRegistry, build_registry, install_plugin, list_plugins, remove_plugin
from headerscan.circuit_breaker import BreakerRegistry
from headerscan.compare import Comparison, compare_results
from headerscan.config import OUTPUT_FORMATS, ScanConfig, load_config
from headerscan.dispatcher import DispatchReport, ScanDispatcher, targets_from_urls
from headerscan.exceptions import ConfigError, HeaderScanError
from headerscan.factory import TRANSPORTS, FetcherFactory
from headerscan.metrics import ScanMetrics
from headerscan.models import ScanResult, Severity, Target
from headerscan.progress import ProgressTracker
from headerscan.rate_limiter import RateLimiter
from headerscan.rules import load_rules
from headerscan.security_txt import SecurityTxtChecker
from headerscan.storage import StorageBase, create_storage, write_csv

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


def configure_logging(args: argparse.Namespace) -> None:
    if args.debug:
        level = logging.DEBUG
    elif args.verbose:
        level = logging.INFO
    elif args.quiet:
        level = logging.ERROR
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _read_urls(path: str) -> List[str]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return [line.strip() for line in f if line.strip() and not line.lstrip().startswith("#")]
    except OSError as exc:
        raise ConfigError(f"Cannot read URL file {path}: {exc}") from exc


def _collect_urls(args: argparse.Namespace) -> List[str]:
    urls: List[str] = []
    for target in args.targets:
        urls.extend(_read_urls(target) if args.file else [target])
    if not urls:
        raise ConfigError("No targets given")
    return urls


def resolve_config(args: argparse.Namespace) -> ScanConfig:
    """Defaults < config file < command line flags."""
    config = load_config(args.config)
    overrides = {
        name: getattr(args, name, None)
        for name in (
            "timeout",
            "concurrency",
            "follow_redirects",
            "user_agent",
            "proxy",
            "transport",
            "rate",
            "cache",
            "cache_ttl",
            "check_certificates",
            "check_security_txt",
            "builtin_checks",
            "extended_checks",
            "plugin_dir",
            "rules_file",
            "output_format",
        )
    }
    return config.merged(overrides)


def build_dispatcher(
    config: ScanConfig,
    metrics: Optional[ScanMetrics] = None,
    storage: Optional[StorageBase] = None,
) -> ScanDispatcher:
    """Wire every collaborator from the config. Raises ConfigError before any scanning."""
    fetcher = FetcherFactory(
        timeout=config.timeout,
        user_agent=config.user_agent,
        proxy=config.proxy,
        follow_redirects=config.follow_redirects,
    ).create_fetcher(config.transport)

    analyzer = HeaderAnalyzer(
        rules=load_rules(config.resolved_rules_file),
        checks=build_registry(
            config.resolved_plugin_dir,
            include_builtin=config.builtin_checks,
            include_extended=config.extended_checks,
        ),
        certificate_check=CertificateChecker(timeout=config.timeout) if config.check_certificates else None,
        security_txt_check=SecurityTxtChecker(fetcher) if config.check_security_txt else None,
    )
    cache = (
        ResponseCache(
            config.resolved_cache_dir,
            ttl=config.cache_ttl,
            max_entries=config.cache_max_entries,
            evict_slack=config.cache_evict_slack,
        )
        if config.cache
        else None
    )
    return ScanDispatcher(
        fetch=fetcher.fetch,
        analyzer=analyzer,
        breakers=BreakerRegistry(
            failure_threshold=config.breaker_threshold,
            timeout=config.breaker_timeout,
            half_open_successes=config.breaker_half_open_successes,
        ),
        rate_limiter=RateLimiter(config.rate) if config.rate else None,
        cache=cache,
        max_workers=config.concurrency,
        metrics=metrics,
        on_result=storage.write if storage is not None else None,
    )


def format_result(result: ScanResult) -> str:
    lines = [f"{result.url}  score={result.score}/100  ({result.timestamp})"]
    if not result.findings:
        lines.append("  no issues found")
    for finding in sorted(result.findings, key=lambda f: f.severity.rank):
        lines.append(f"  [{finding.severity.value.upper():8}] {finding.header}: {finding.issue}")
        if finding.recommended_fix:
            lines.append(f"             fix: {finding.recommended_fix}")
    return "\n".join(lines)


def format_summary(report: DispatchReport) -> str:
    s = report.summary
    text = (
        f"Scanned {s.total} targets: {s.scanned_count} fetched, {s.cache_hit_count} from cache, "
        f"{s.skipped_count} skipped (circuit open: {s.circuit_open_count}, failed: {s.failed_count})"
    )
    if s.failures_by_type:
        reasons = ", ".join(f"{k}={v}" for k, v in sorted(s.failures_by_type.items()))
        text += f"\nFailure reasons: {reasons}"
    return text


def run_scan(
    config: ScanConfig,
    urls: Sequence[str],
    show_progress: bool,
    quiet: bool,
    output: Optional[str],
) -> DispatchReport:
    try:
        targets = targets_from_urls(urls)
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc
    storage = None
    if output:
        storage = create_storage("json" if config.output_format == "table" else config.output_format, output)
    try:
        dispatcher = build_dispatcher(config, ScanMetrics(), storage)
        progress = ProgressTracker(len(targets), quiet=quiet) if show_progress and not quiet else None
        report = dispatcher.run(targets, progress=progress)
    finally:
        if storage is not None:
            storage.close()
    if progress is not None:
        progress.finish()
    return report


def cmd_scan(args: argparse.Namespace) -> int:
    config = resolve_config(args)
    report = run_scan(config, _collect_urls(args), args.progress, args.quiet, args.output)

    if not args.output:
        ordered = sorted(report.results, key=lambda r: r.url)
        if config.output_format == "table":
            if not args.quiet:
                for result in ordered:
                    print(format_result(result))
                    print()
        else:
            _print_structured(ordered, config.output_format)
    elif not args.quiet:
        print(f"Results saved to {args.output}", file=sys.stderr)

    if not args.quiet:
        print(format_summary(report), file=sys.stderr)
    return EXIT_OK


def _print_structured(results: Sequence[ScanResult], fmt: str) -> None:
    if fmt == "json":
        print(json.dumps([r.to_dict() for r in results], indent=2, ensure_ascii=False))
    elif fmt == "jsonl":
        for r in results:
            print(json.dumps(r.to_dict(), ensure_ascii=False))
    else:
        write_csv(results, sys.stdout)


def ci_failures(report: DispatchReport, threshold: int, fail_on_critical: bool) -> List[str]:
    failures = []
    for result in sorted(report.results, key=lambda r: r.url):
        if result.score < threshold:
            failures.append(f"{result.url} - Score {result.score} below threshold {threshold}")
        if fail_on_critical and any(f.severity is Severity.CRITICAL for f in result.findings):
            failures.append(f"{result.url} - Critical security issues found")
    for skipped in report.skipped:
        failures.append(f"{skipped.url} - Not scanned ({skipped.reason}: {skipped.error})")
    return failures


def cmd_ci_check(args: argparse.Namespace) -> int:
    config = resolve_config(args)
    report = run_scan(config, _collect_urls(args), show_progress=False, quiet=True, output=args.output)
    failures = ci_failures(report, args.threshold, args.fail_on_critical)
    for line in failures:
        print(f"FAIL: {line}")
    if failures:
        print("\nCI check failed")
        return EXIT_FAILED
    print("\nCI check passed")
    return EXIT_OK


def _live_config(args: argparse.Namespace, **defaults: object) -> ScanConfig:
    """Config for single-shot commands: no response cache, ``defaults`` where no flag was given."""
    config = resolve_config(args)
    unset = {name: value for name, value in defaults.items() if getattr(args, name, None) is None}
    return config.merged({"cache": False, **unset})


def _single_target(url: str) -> Target:
    try:
        return Target.from_url(url)
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc


def _skip_message(report: DispatchReport, url: str) -> str:
    for skipped in report.skipped:
        if skipped.url == url:
            return f"{skipped.url} ({skipped.reason}: {skipped.error})"
    return url


def _write_json(path: str, data: object) -> None:
    try:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
            f.write("\n")
    except OSError as exc:
        raise HeaderScanError(f"Cannot write {path}: {exc}") from exc


def cmd_audit(args: argparse.Namespace) -> int:
    config = _live_config(args, check_certificates=True, check_security_txt=True)
    target = _single_target(args.url)
    report = build_dispatcher(config).run([target])
    if not report.results:
        raise HeaderScanError(f"Audit failed: {_skip_message(report, target.url)}")
    result = report.results[0]

    if args.output:
        _write_json(args.output, result.to_dict())
        if not args.quiet:
            print(f"Audit saved to {args.output}", file=sys.stderr)
    elif args.json:
        print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
    else:
        print(format_result(result))
    return EXIT_OK


def cmd_watch(args: argparse.Namespace) -> int:
    if args.interval < 0:
        raise ConfigError(f"interval must be >= 0, got {args.interval}")
    if args.count < 0:
        raise ConfigError(f"count must be >= 0, got {args.count}")
    config = _live_config(args)
    target = _single_target(args.url)
    dispatcher = build_dispatcher(config)

    if not args.quiet:
        print(f"Watching {target.url} every {args.interval:g} seconds. Press Ctrl+C to stop.")
    runs = 0
    try:
        while True:
            report = dispatcher.run([target])
            for result in report.results:
                print(format_result(result))
                print()
            if not report.results:
                print(f"Watch check failed: {_skip_message(report, target.url)}", file=sys.stderr)
            runs += 1
            if args.count and runs >= args.count:
                break
            time.sleep(args.interval)
    except KeyboardInterrupt:
        print("\nStopped watching.")
    return EXIT_OK


def format_comparison(comparison: Comparison) -> str:
    lines = [
        f"URL 1: {comparison.first.url} (Score: {comparison.first.score})",
        f"URL 2: {comparison.second.url} (Score: {comparison.second.score})",
    ]
    if comparison.only_in_first:
        lines.append("")
        lines.append("Only in URL 1:")
        lines.extend(f"  - {name}" for name in comparison.only_in_first)
    if comparison.only_in_second:
        lines.append("")
        lines.append("Only in URL 2:")
        lines.extend(f"  - {name}" for name in comparison.only_in_second)
    lines.append("")
    lines.append(f"Common headers: {len(comparison.common)}")
    return "\n".join(lines)


def cmd_compare(args: argparse.Namespace) -> int:
    config = _live_config(args)
    first, second = _single_target(args.url1), _single_target(args.url2)
    report = build_dispatcher(config).run([first] if first == second else [first, second])
    by_url = {result.url: result for result in report.results}
    for target in (first, second):
        if target.url not in by_url:
            raise HeaderScanError(f"Comparison failed: {_skip_message(report, target.url)}")

    comparison = compare_results(by_url[first.url], by_url[second.url])
    print(format_comparison(comparison))
    if args.output:
        _write_json(args.output, comparison.to_dict())
        print(f"Comparison saved to {args.output}")
    return EXIT_OK


def cmd_cache(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    cache = ResponseCache(config.resolved_cache_dir, ttl=config.cache_ttl)
    if args.cache_command == "clear":
        removed = cache.clear()
        print(f"Cache cleared ({removed} entries).")
    else:
        removed = cache.clear_expired()
        print(f"Expired cache entries cleared ({removed} entries).")
    return EXIT_OK


def cmd_plugin(args: argparse.Namespace) -> int:
    plugin_dir = load_config(args.config).resolved_plugin_dir
    if args.plugin_command == "list":
        plugins = list_plugins(plugin_dir)
        if not plugins:
            print("No plugins installed.")
        else:
            print("Installed plugins:")
            for name in plugins:
                print(f"  - {name}")
    elif args.plugin_command == "install":
        dest = install_plugin(args.path, plugin_dir)
        loaded = CheckRegistry().load_file(dest)
        print(f"Plugin installed: {dest} ({loaded} checks)")
    else:
        remove_plugin(args.name, plugin_dir)
        print(f"Plugin removed: {args.name}")
    return EXIT_OK


def _add_fetch_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("-t", "--timeout", type=float, help="Request timeout in seconds (default 10)")
    p.add_argument("--proxy", help="HTTP/SOCKS proxy URL")
    p.add_argument("--user-agent", dest="user_agent", help="Custom User-Agent header")
    p.add_argument("--follow-redirects", dest="follow_redirects", action=argparse.BooleanOptionalAction, default=None)
    p.add_argument("--transport", choices=TRANSPORTS, help="HTTP transport (default requests)")
    p.add_argument(
        "--check-certificates", dest="check_certificates", action=argparse.BooleanOptionalAction, default=None
    )
    p.add_argument(
        "--check-security-txt", dest="check_security_txt", action=argparse.BooleanOptionalAction, default=None
    )
    p.add_argument("--builtin-checks", dest="builtin_checks", action=argparse.BooleanOptionalAction, default=None)
    p.add_argument(
        "--extended-checks",
        dest="extended_checks",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Also run the strict CSP directive and Cache-Control checks",
    )
    p.add_argument("--plugin-dir", dest="plugin_dir", help="Directory with checker plugins")
    p.add_argument("--rules", dest="rules_file", help="YAML file with custom rules")


def _add_target_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("targets", nargs="+", help="URLs, or files with one URL per line when --file is set")
    p.add_argument("-f", "--file", action="store_true", help="Treat targets as files containing URLs")
    p.add_argument("-c", "--concurrency", type=int, help="Concurrent workers (default 10)")
    p.add_argument("--rate", help="Rate limit such as 5/s, 100/m, 1000/h")
    p.add_argument("--cache", action=argparse.BooleanOptionalAction, default=None, help="Enable response caching")
    p.add_argument("--cache-ttl", dest="cache_ttl", type=int, help="Cache TTL in seconds (default 3600)")
    p.add_argument("-o", "--output", help="Output file")
    _add_fetch_args(p)


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    common.add_argument("-q", "--quiet", action="store_true", help="Quiet mode")
    common.add_argument("--debug", action="store_true", help="Enable debug logging")
    common.add_argument("--config", help="Path to config.yml")

    parser = argparse.ArgumentParser(prog="headerscan", description="HTTP security header scanner")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    scan = sub.add_parser("scan", parents=[common], help="Scan URLs for security headers")
    _add_target_args(scan)
    scan.add_argument("--format", dest="output_format", choices=OUTPUT_FORMATS, help="Output format")
    scan.add_argument("--progress", action=argparse.BooleanOptionalAction, default=True, help="Show progress bar")
    scan.set_defaults(func=cmd_scan)

    ci = sub.add_parser("ci-check", parents=[common], help="Exit non-zero when scores fall below a threshold")
    _add_target_args(ci)
    ci.add_argument("--threshold", type=int, default=80, help="Minimum score (default 80)")
    ci.add_argument(
        "--fail-on-critical", dest="fail_on_critical", action=argparse.BooleanOptionalAction, default=True
    )
    ci.set_defaults(func=cmd_ci_check)

    audit = sub.add_parser("audit", parents=[common], help="Detailed audit of a single URL")
    audit.add_argument("url")
    audit.add_argument("--json", action="store_true", help="Print the result as JSON")
    audit.add_argument("-o", "--output", help="Write the JSON result to this file")
    _add_fetch_args(audit)
    audit.set_defaults(func=cmd_audit)

    watch = sub.add_parser("watch", parents=[common], help="Rescan a URL periodically")
    watch.add_argument("url")
    watch.add_argument("--interval", type=float, default=3600, help="Seconds between checks (default 3600)")
    watch.add_argument("--count", type=int, default=0, help="Stop after this many checks (default: run until Ctrl+C)")
    _add_fetch_args(watch)
    watch.set_defaults(func=cmd_watch)

    compare = sub.add_parser("compare", parents=[common], help="Compare security headers of two URLs")
    compare.add_argument("url1")
    compare.add_argument("url2")
    compare.add_argument("-o", "--output", help="Write the comparison as JSON to this file")
    _add_fetch_args(compare)
    compare.set_defaults(func=cmd_compare)

    cache = sub.add_parser("cache", parents=[common], help="Manage the response cache")
    cache.add_argument("cache_command", choices=("clear", "clear-expired"))
    cache.set_defaults(func=cmd_cache)

    plugin = sub.add_parser("plugin", parents=[common], help="Manage checker plugins")
    plugin_sub = plugin.add_subparsers(dest="plugin_command", required=True)
    plugin_sub.add_parser("list", help="List installed plugins")
    install = plugin_sub.add_parser("install", help="Install a plugin file")
    install.add_argument("path")
    remove = plugin_sub.add_parser("remove", help="Remove an installed plugin")
    remove.add_argument("name")
    plugin.set_defaults(func=cmd_plugin)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args)
    try:
        return args.func(args)
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return EXIT_CONFIG
    except HeaderScanError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_FAILED
    except KeyboardInterrupt:
        print("\nAborted.", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
