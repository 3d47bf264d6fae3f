from __future__ import annotations

import logging
import time as _time
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple, Type

import requests
from curl_cffi import requests as curl_requests

from .backoff import BackoffStrategy
from .exceptions import NetworkError
from .models import FetchResponse

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "headerscan/0.1.0 Security Header Analyzer"


class BaseFetcher(ABC):
    """Fetches one URL and returns its status, headers and body.

    Transport errors are retried up to ``max_retries`` times with
    exponential backoff. A non-2xx final status or exhausted retries raise
    NetworkError, which the dispatcher's circuit breaker counts as a
    failure. Redirects are followed by the transport when enabled.
    """

    def __init__(
        self,
        timeout: float = 10.0,
        user_agent: Optional[str] = None,
        proxy: Optional[str] = None,
        follow_redirects: bool = True,
        max_retries: int = 3,
        backoff: Optional[BackoffStrategy] = None,
    ) -> None:
        self._timeout = timeout
        self._user_agent = user_agent or DEFAULT_USER_AGENT
        self._proxy = proxy
        self._follow_redirects = follow_redirects
        self._max_retries = max_retries
        self._backoff = backoff or BackoffStrategy()

    def fetch(self, url: str) -> FetchResponse:
        self.validate(url)
        attempt = 0
        while True:
            attempt += 1
            logger.debug("Fetching %s (attempt %d)", url, attempt)
            try:
                response = self._request(url)
                break
            except self.retryable_errors() as exc:
                if attempt > self._max_retries:
                    raise NetworkError(f"Failed after {self._max_retries} retries: {exc}") from exc
                sleep_s = self._backoff.get_sleep(attempt, type(exc).__name__)
                logger.info("Retry %d/%d for %s after %.1fs: %s", attempt, self._max_retries, url, sleep_s, exc)
                _time.sleep(sleep_s)

        if not response.success:
            raise NetworkError(f"HTTP {response.status_code} for {url}")
        return response

    def validate(self, url: str) -> None:
        if not url:
            raise ValueError("url is required")

    @property
    def headers(self) -> Dict[str, str]:
        return {"User-Agent": self._user_agent}

    @property
    def proxies(self) -> Optional[Dict[str, str]]:
        if not self._proxy:
            return None
        return {"http": self._proxy, "https": self._proxy}

    @abstractmethod
    def retryable_errors(self) -> Tuple[Type[BaseException], ...]:
        ...

    @abstractmethod
    def _request(self, url: str) -> FetchResponse:
        ...


class RequestsFetcher(BaseFetcher):
    def retryable_errors(self) -> Tuple[Type[BaseException], ...]:
        return (requests.exceptions.ConnectionError, requests.exceptions.Timeout)

    def _request(self, url: str) -> FetchResponse:
        resp = requests.get(
            url,
            headers=self.headers,
            timeout=self._timeout,
            allow_redirects=self._follow_redirects,
            proxies=self.proxies,
        )
        return FetchResponse(
            url=resp.url or url,
            status_code=int(resp.status_code),
            headers={k: v for k, v in resp.headers.items()},
            body=resp.content or b"",
        )


class CurlFetcher(BaseFetcher):
    """Fetcher that goes through curl_cffi with a browser TLS fingerprint.

    Useful for targets that reject non-browser clients at the TLS layer."""

    def __init__(self, *args, impersonate: str = "chrome120", **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._impersonate = impersonate

    def retryable_errors(self) -> Tuple[Type[BaseException], ...]:
        return (curl_requests.RequestsError,)

    def _request(self, url: str) -> FetchResponse:
        with curl_requests.Session() as session:
            resp = session.request(
                method="GET",
                url=url,
                headers=self.headers,
                timeout=self._timeout,
                allow_redirects=self._follow_redirects,
                proxies=self.proxies,
                impersonate=self._impersonate,
            )
        return FetchResponse(
            url=str(getattr(resp, "url", "") or url),
            status_code=int(resp.status_code),
            headers={k: v for k, v in resp.headers.items()},
            body=resp.content or b"",
        )
