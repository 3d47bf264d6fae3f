from __future__ import annotations

import re
import threading
import time
from typing import Callable, Tuple

from .exceptions import ConfigError

_RATE_RE = re.compile(r"^(\d+)/([smh])$")
_PERIOD_SECONDS = {"s": 1.0, "m": 60.0, "h": 3600.0}


def parse_rate(rate: str) -> Tuple[int, float]:
    """Parse a rate string such as ``"10/s"`` into (requests, period_seconds)."""
    match = _RATE_RE.match(str(rate).strip())
    if not match:
        raise ConfigError(f"Invalid rate format: {rate!r} (expected N/s, N/m or N/h)")
    requests = int(match.group(1))
    if requests <= 0:
        raise ConfigError(f"Invalid rate format: {rate!r} (request count must be positive)")
    return requests, _PERIOD_SECONDS[match.group(2)]


class RateLimiter:
    """Thread-safe token-bucket rate limiter shared by every scan worker.

    The bucket starts full with ``capacity`` tokens and refills continuously
    from wall-clock deltas measured on each call. Calling acquire() blocks
    the current thread while the bucket is empty; it never rejects."""

    def __init__(
        self,
        rate: str,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._capacity, self._period = parse_rate(rate)
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._tokens = float(self._capacity)
        self._last_refill = clock()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def period_seconds(self) -> float:
        return self._period

    @property
    def tokens(self) -> float:
        with self._lock:
            return self._tokens

    def acquire(self) -> None:
        """Take one token, waiting ``period / capacity`` seconds if none is left."""
        with self._lock:
            self._refill()
            if self._tokens >= 1:
                self._tokens -= 1
                return

            # Fixed wait of one token interval, not the exact deficit.
            self._sleep(self._period / self._capacity)
            self._refill()
            self._tokens = max(0.0, self._tokens - 1)

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill)
        self._tokens = min(self._tokens + elapsed / self._period * self._capacity, float(self._capacity))
        self._last_refill = now
