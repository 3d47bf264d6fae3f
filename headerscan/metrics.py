from __future__ import annotations

from collections import Counter
from threading import Lock
from typing import Dict, List, Optional

from .models import ScanEvent, ScanSummary

SCANNED = "scanned"
CACHE_HIT = "cache_hit"
CIRCUIT_OPEN = "circuit_open"
FAILED = "failed"

OUTCOMES = (SCANNED, CACHE_HIT, CIRCUIT_OPEN, FAILED)


class ScanMetrics:
    """Thread-safe record of one outcome event per dispatched target.

    Feeds the terminal summary: how many targets were scanned, served from
    cache, or skipped, and why."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._events: List[ScanEvent] = []

    def record(
        self,
        url: str,
        domain: str,
        outcome: str,
        latency_ms: int = 0,
        error_type: Optional[str] = None,
    ) -> ScanEvent:
        if outcome not in OUTCOMES:
            raise ValueError(f"Unknown outcome: {outcome}")
        event = ScanEvent(url=url, domain=domain, outcome=outcome, latency_ms=latency_ms, error_type=error_type)
        with self._lock:
            self._events.append(event)
        return event

    def events(self) -> List[ScanEvent]:
        with self._lock:
            return list(self._events)

    def summary(self) -> ScanSummary:
        """Aggregate every recorded event."""
        events = self.events()
        counts = Counter(e.outcome for e in events)
        fetched = [e for e in events if e.outcome == SCANNED]
        avg_latency_ms = (sum(e.latency_ms for e in fetched) / len(fetched)) if fetched else 0.0
        failures: Dict[str, int] = dict(
            Counter(e.error_type or "Unknown" for e in events if e.outcome == FAILED)
        )
        return ScanSummary(
            total=len(events),
            scanned_count=counts[SCANNED],
            cache_hit_count=counts[CACHE_HIT],
            circuit_open_count=counts[CIRCUIT_OPEN],
            failed_count=counts[FAILED],
            avg_latency_ms=avg_latency_ms,
            failures_by_type=failures,
        )

