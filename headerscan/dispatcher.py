from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Callable, Generic, Iterable, List, Optional, Sequence, Tuple, TypeVar

from .analyzer import HeaderAnalyzer
from .cache import ResponseCache
from .circuit_breaker import BreakerRegistry
from .exceptions import CircuitOpenError
from .metrics import CACHE_HIT, CIRCUIT_OPEN, FAILED, SCANNED, ScanMetrics
from .models import FetchResponse, ScanResult, ScanSummary, SkippedTarget, Target
from .progress import ProgressTracker
from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

T = TypeVar("T")

FetchFn = Callable[[str], FetchResponse]


class ResultCollector(Generic[T]):
    """Append-only list shared by worker threads."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: List[T] = []

    def append(self, item: T) -> None:
        with self._lock:
            self._items.append(item)

    def snapshot(self) -> List[T]:
        with self._lock:
            return list(self._items)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


@dataclass(frozen=True)
class DispatchReport:
    results: List[ScanResult]
    skipped: List[SkippedTarget]
    summary: ScanSummary


def targets_from_urls(urls: Iterable[str]) -> List[Target]:
    """Build targets from raw URL strings, dropping blanks and duplicates."""
    seen = set()
    targets: List[Target] = []
    for url in urls:
        if not url or not url.strip():
            continue
        target = Target.from_url(url)
        if target.url in seen:
            continue
        seen.add(target.url)
        targets.append(target)
    return targets


class ScanDispatcher:
    """Runs one scan task per target on a bounded thread pool.

    Each task: rate-limiter token -> the domain's circuit breaker ->
    (cache lookup, else fetch + analyze + cache write) inside the breaker ->
    collect the result. Every per-target failure is caught at the task
    boundary, so one bad target never aborts the batch. Completion order is
    unspecified.
    """

    def __init__(
        self,
        fetch: FetchFn,
        analyzer: HeaderAnalyzer,
        breakers: BreakerRegistry,
        rate_limiter: Optional[RateLimiter] = None,
        cache: Optional[ResponseCache] = None,
        max_workers: int = 10,
        metrics: Optional[ScanMetrics] = None,
        on_result: Optional[Callable[[ScanResult], None]] = None,
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self._fetch = fetch
        self._analyzer = analyzer
        self._breakers = breakers
        self._rate_limiter = rate_limiter
        self._cache = cache
        self._max_workers = max_workers
        self._metrics = metrics
        self._on_result = on_result

    @property
    def max_workers(self) -> int:
        return self._max_workers

    def run(self, targets: Sequence[Target], progress: Optional[ProgressTracker] = None) -> DispatchReport:
        metrics = self._metrics or ScanMetrics()
        results: ResultCollector[ScanResult] = ResultCollector()
        skipped: ResultCollector[SkippedTarget] = ResultCollector()

        executor = ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="scan")
        try:
            futures = [
                executor.submit(self._run_task, target, results, skipped, metrics, progress) for target in targets
            ]
            wait(futures)
        except KeyboardInterrupt:
            # In-flight results are discarded; nothing more is recorded.
            executor.shutdown(wait=False, cancel_futures=True)
            raise
        executor.shutdown(wait=True)

        return DispatchReport(results=results.snapshot(), skipped=skipped.snapshot(), summary=metrics.summary())

    def scan_one(self, target: Target) -> Tuple[ScanResult, bool]:
        """Cache lookup, else fetch + analyze + cache write. Returns (result, from_cache)."""
        if self._cache is not None:
            cached = self._cache.get(target.url)
            if cached is not None:
                try:
                    result = ScanResult.from_dict(cached)
                except (KeyError, TypeError, ValueError) as exc:
                    logger.warning("Ignoring malformed cached result for %s: %s", target.url, exc)
                    self._cache.delete(target.url)
                else:
                    logger.debug("Cache hit: %s", target.url)
                    return result, True

        response = self._fetch(target.url)
        result = self._analyzer.analyze(target.url, response.headers)
        if self._cache is not None:
            self._cache.set(target.url, result.to_dict())
        return result, False

    def _run_task(
        self,
        target: Target,
        results: ResultCollector[ScanResult],
        skipped: ResultCollector[SkippedTarget],
        metrics: ScanMetrics,
        progress: Optional[ProgressTracker],
    ) -> None:
        start = time.monotonic()
        try:
            if self._rate_limiter is not None:
                self._rate_limiter.acquire()
            breaker = self._breakers.get(target.domain)
            result, from_cache = breaker.execute(lambda: self.scan_one(target))
        except CircuitOpenError as exc:
            logger.warning("Circuit open for %s, skipping %s", target.domain, target.url)
            skipped.append(SkippedTarget(url=target.url, domain=target.domain, reason=CIRCUIT_OPEN, error=str(exc)))
            metrics.record(target.url, target.domain, CIRCUIT_OPEN, error_type=type(exc).__name__)
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to scan %s: %s", target.url, exc)
            skipped.append(SkippedTarget(url=target.url, domain=target.domain, reason=FAILED, error=str(exc)))
            metrics.record(
                target.url,
                target.domain,
                FAILED,
                latency_ms=int((time.monotonic() - start) * 1000),
                error_type=type(exc).__name__,
            )
        else:
            results.append(result)
            metrics.record(
                target.url,
                target.domain,
                CACHE_HIT if from_cache else SCANNED,
                latency_ms=int((time.monotonic() - start) * 1000),
            )
            if self._on_result is not None:
                try:
                    self._on_result(result)
                except Exception as exc:  # noqa: BLE001
                    logger.warning("Result callback failed for %s: %s", target.url, exc)
        finally:
            if progress is not None:
                progress.increment()
