from __future__ import annotations

import random
from typing import Optional


class BackoffStrategy:
    """Exponential retry delay used by fetchers between transport attempts.

    The n-th retry waits ``base * 2^(n-1)`` seconds, capped at
    ``max_seconds``, plus up to ``jitter`` of that value at random so that
    workers retrying the same host do not line up."""

    def __init__(self, base_seconds: float = 1.0, max_seconds: float = 10.0, jitter: float = 0.1) -> None:
        self._base = base_seconds
        self._max = max_seconds
        self._jitter = jitter

    def get_sleep(self, attempt: int, error_type: Optional[str] = None) -> float:
        """Seconds to wait before retry number ``attempt`` (1-based)."""
        delay = min(self._max, self._base * (2 ** max(attempt - 1, 0)))
        if self._jitter <= 0:
            return delay
        return delay + random.uniform(0, delay * self._jitter)
