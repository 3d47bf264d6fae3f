from __future__ import annotations

import sys
import threading
import time
from typing import Callable, Optional, TextIO

BAR_WIDTH = 40


class ProgressTracker:
    """Thread-safe completed-count tracker with a one-line bar and ETA.

    Purely observational: it never influences scheduling."""

    def __init__(
        self,
        total: int,
        quiet: bool = False,
        stream: Optional[TextIO] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._total = max(0, total)
        self._current = 0
        self._quiet = quiet
        self._stream = stream if stream is not None else sys.stderr
        self._clock = clock
        self._start = clock()
        self._lock = threading.Lock()

    @property
    def total(self) -> int:
        return self._total

    @property
    def current(self) -> int:
        with self._lock:
            return self._current

    def increment(self) -> None:
        with self._lock:
            self._current += 1
            if not self._quiet:
                self._stream.write("\r" + self.render_line(self._current))
                self._stream.flush()

    def eta_seconds(self, current: int) -> Optional[float]:
        elapsed = self._clock() - self._start
        if current <= 0 or elapsed <= 0:
            return None
        rate = current / elapsed
        return max(0, self._total - current) / rate

    def render_line(self, current: int) -> str:
        if self._total == 0:
            return "[" + "█" * BAR_WIDTH + "] 100.0% (0/0)"
        shown = min(current, self._total)
        percentage = round(shown / self._total * 100, 1)
        filled = round(BAR_WIDTH * shown / self._total)
        bar = "█" * filled + "░" * (BAR_WIDTH - filled)
        eta = self.eta_seconds(current)
        eta_text = f"{round(eta)}s" if eta is not None else "?"
        return f"[{bar}] {percentage}% ({shown}/{self._total}) ETA: {eta_text}"

    def finish(self) -> float:
        """Close the bar line and report elapsed seconds."""
        elapsed = self._clock() - self._start
        if not self._quiet:
            self._stream.write(f"\nCompleted {self._total} items in {elapsed:.2f}s\n")
            self._stream.flush()
        return elapsed
