"""Exception types raised by the scanner."""


class HeaderScanError(Exception):
    """Base class for every error raised by headerscan."""


class ConfigError(HeaderScanError):
    """Invalid configuration detected before any scanning starts."""


class NetworkError(HeaderScanError):
    """A target could not be fetched (retries exhausted or non-2xx status)."""


class CircuitOpenError(HeaderScanError):
    """The circuit for a domain is open; the wrapped work was not run."""

    def __init__(self, name: str) -> None:
        super().__init__(f"circuit breaker is open for {name}")
        self.name = name
