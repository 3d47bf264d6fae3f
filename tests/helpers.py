"""Shared test doubles."""

import threading

from headerscan.models import FetchResponse


class FakeClock:
    """Manually advanced clock usable as a ``clock`` or ``sleep`` callable."""

    def __init__(self, now: float = 1000.0) -> None:
        self.now = now
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class CountingFetch:
    """Stub fetch function recording every URL it is called with."""

    def __init__(self, headers=None, fail_for=(), error=ConnectionError):
        self.headers = headers if headers is not None else {}
        self.fail_for = set(fail_for)
        self.error = error
        self.calls = []
        self._lock = threading.Lock()

    def __call__(self, url: str) -> FetchResponse:
        with self._lock:
            self.calls.append(url)
        if "*" in self.fail_for or url in self.fail_for:
            raise self.error(f"cannot reach {url}")
        return FetchResponse(url=url, status_code=200, headers=dict(self.headers))
