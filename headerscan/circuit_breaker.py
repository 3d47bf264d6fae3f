from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import Callable, Dict, Optional, TypeVar

from .exceptions import CircuitOpenError

logger = logging.getLogger(__name__)

T = TypeVar("T")

FAILURE_THRESHOLD = 5
TIMEOUT_SECONDS = 60.0
HALF_OPEN_SUCCESSES = 3


class CircuitState(Enum):
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject calls
    HALF_OPEN = "half_open"  # Trial calls to detect recovery



class CircuitBreaker:
    """Failure-isolation state machine guarding the work for one domain.

    CLOSED -> OPEN after ``failure_threshold`` consecutive failures.
    OPEN -> HALF_OPEN on the first call after ``timeout`` seconds.
    HALF_OPEN -> CLOSED after ``half_open_successes`` successes in a row,
    HALF_OPEN -> OPEN on any failure.

    Concurrent callers are admitted only while the calls already in flight
    could not push the breaker past its threshold, so a domain that keeps
    failing sees exactly ``failure_threshold`` attempts before opening no
    matter how many workers reach it at once. Callers over that budget wait
    for an in-flight call to finish; a caller that finds the circuit open
    fails immediately with CircuitOpenError.

    As a consequence, at most ``failure_threshold - failure_count`` calls for
    one domain run concurrently (``half_open_successes`` while HALF_OPEN).
    Waiting callers hold their worker thread, so a batch dominated by one
    domain scans it at most ``failure_threshold`` wide whatever the pool size.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = FAILURE_THRESHOLD,
        timeout: float = TIMEOUT_SECONDS,
        half_open_successes: int = HALF_OPEN_SUCCESSES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if failure_threshold < 1 or half_open_successes < 1:
            raise ValueError("failure_threshold and half_open_successes must be >= 1")
        self.name = name
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.half_open_successes_required = half_open_successes
        self._clock = clock

        self._cv = threading.Condition()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None
        self._half_open_successes = 0
        self._in_flight = 0

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def last_failure_time(self) -> Optional[float]:
        return self._last_failure_time

    @property
    def half_open_successes(self) -> int:
        return self._half_open_successes

    def execute(self, work: Callable[[], T]) -> T:
        """Run ``work`` under the breaker and return its result.

        Raises CircuitOpenError without calling ``work`` while the circuit is
        open. Any exception raised by ``work`` is recorded and re-raised.
        """
        self._admit()
        try:
            result = work()
        except Exception:
            self._on_failure()
            raise
        self._on_success()
        return result

    def _admit(self) -> None:
        with self._cv:
            while True:
                if self._state is CircuitState.OPEN:
                    if not self._timeout_elapsed():
                        raise CircuitOpenError(self.name)
                    self._transition(CircuitState.HALF_OPEN)
                    self._half_open_successes = 0
                if self._has_capacity():
                    self._in_flight += 1
                    return
                self._cv.wait()

    def _has_capacity(self) -> bool:
        if self._state is CircuitState.HALF_OPEN:
            return self._half_open_successes + self._in_flight < self.half_open_successes_required
        return self._failure_count + self._in_flight < self.failure_threshold

    def _timeout_elapsed(self) -> bool:
        if self._last_failure_time is None:
            return True
        return (self._clock() - self._last_failure_time) >= self.timeout

    def _on_success(self) -> None:
        with self._cv:
            self._in_flight -= 1
            if self._state is CircuitState.HALF_OPEN:
                self._half_open_successes += 1
                if self._half_open_successes >= self.half_open_successes_required:
                    self._transition(CircuitState.CLOSED)
                    self._failure_count = 0
            elif self._state is CircuitState.CLOSED:
                self._failure_count = 0
            self._cv.notify_all()

    def _on_failure(self) -> None:
        with self._cv:
            self._in_flight -= 1
            self._failure_count += 1
            self._last_failure_time = self._clock()
            if self._state is CircuitState.HALF_OPEN:
                self._transition(CircuitState.OPEN, "failure during recovery")
            elif self._state is CircuitState.CLOSED and self._failure_count >= self.failure_threshold:
                self._transition(CircuitState.OPEN, "threshold reached")
            self._cv.notify_all()

    def _transition(self, new_state: CircuitState, reason: str = "") -> None:
        old_state = self._state
        self._state = new_state
        suffix = f" ({reason})" if reason else ""
        level = logging.WARNING if new_state is CircuitState.OPEN else logging.INFO
        logger.log(level, "Circuit %s: %s -> %s%s", self.name, old_state.name, new_state.name, suffix)


class BreakerRegistry:
    """Per-run map of domain -> CircuitBreaker, created lazily on first use."""

    def __init__(
        self,
        failure_threshold: int = FAILURE_THRESHOLD,
        timeout: float = TIMEOUT_SECONDS,
        half_open_successes: int = HALF_OPEN_SUCCESSES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._failure_threshold = failure_threshold
        self._timeout = timeout
        self._half_open_successes = half_open_successes
        self._clock = clock
        self._lock = threading.Lock()
        self._breakers: Dict[str, CircuitBreaker] = {}

    def get(self, domain: str) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(domain)
            if breaker is None:
                breaker = CircuitBreaker(
                    name=domain,
                    failure_threshold=self._failure_threshold,
                    timeout=self._timeout,
                    half_open_successes=self._half_open_successes,
                    clock=self._clock,
                )
                self._breakers[domain] = breaker
            return breaker

    def states(self) -> Dict[str, CircuitState]:
        with self._lock:
            return {name: cb.state for name, cb in self._breakers.items()}

    def __len__(self) -> int:
        with self._lock:
            return len(self._breakers)
