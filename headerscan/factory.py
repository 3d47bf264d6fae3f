from __future__ import annotations

from typing import Dict, Optional

from .backoff import BackoffStrategy
from .fetchers import BaseFetcher, CurlFetcher, RequestsFetcher

TRANSPORTS = ("requests", "curl")


class FetcherFactory:
    """Builds the fetcher for a configured transport name.

    - "requests" fetchers hold no per-call state and are shared.
    - "curl" fetchers open a fresh curl_cffi session per request, so the
      instance itself is shared as well; sharing can be turned off.
    """

    def __init__(
        self,
        timeout: float = 10.0,
        user_agent: Optional[str] = None,
        proxy: Optional[str] = None,
        follow_redirects: bool = True,
        backoff: Optional[BackoffStrategy] = None,
        share_instances: bool = True,
    ) -> None:
        self._timeout = timeout
        self._user_agent = user_agent
        self._proxy = proxy
        self._follow_redirects = follow_redirects
        self._backoff = backoff or BackoffStrategy()
        self._share = share_instances
        self._cache: Dict[str, BaseFetcher] = {}

    def create_fetcher(self, transport: str = "requests") -> BaseFetcher:
        if self._share and transport in self._cache:
            return self._cache[transport]

        kwargs = dict(
            timeout=self._timeout,
            user_agent=self._user_agent,
            proxy=self._proxy,
            follow_redirects=self._follow_redirects,
            backoff=self._backoff,
        )
        if transport == "requests":
            fetcher: BaseFetcher = RequestsFetcher(**kwargs)
        elif transport == "curl":
            fetcher = CurlFetcher(**kwargs)
        else:
            raise ValueError(f"Unknown transport: {transport}")

        if self._share:
            self._cache[transport] = fetcher
        return fetcher
