from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Mapping, Optional

import yaml

from .exceptions import ConfigError
from .factory import TRANSPORTS
from .fetchers import DEFAULT_USER_AGENT
from .rate_limiter import parse_rate

logger = logging.getLogger(__name__)

HOME_ENV_VAR = "HEADERSCAN_HOME"
OUTPUT_FORMATS = ("table", "json", "jsonl", "csv")


def config_home() -> str:
    return os.environ.get(HOME_ENV_VAR) or os.path.join(os.path.expanduser("~"), ".headerscan")


@dataclass(frozen=True)
class ScanConfig:
    timeout: float = 10.0
    concurrency: int = 10
    follow_redirects: bool = True
    user_agent: str = DEFAULT_USER_AGENT
    proxy: Optional[str] = None
    transport: str = "requests"
    rate: Optional[str] = None
    cache: bool = False
    cache_ttl: int = 3600
    cache_max_entries: int = 1000
    cache_evict_slack: int = 100
    breaker_threshold: int = 5
    breaker_timeout: float = 60.0
    breaker_half_open_successes: int = 3
    check_certificates: bool = True
    check_security_txt: bool = False
    builtin_checks: bool = True
    extended_checks: bool = False
    output_format: str = "table"
    home: str = field(default_factory=config_home)
    plugin_dir: str = ""
    rules_file: str = ""
    cache_dir: str = ""

    @property
    def resolved_plugin_dir(self) -> str:
        return self.plugin_dir or os.path.join(self.home, "plugins")

    @property
    def resolved_rules_file(self) -> str:
        return self.rules_file or os.path.join(self.home, "rules.yml")

    @property
    def resolved_cache_dir(self) -> str:
        return self.cache_dir or os.path.join(self.home, "cache")

    def merged(self, overrides: Mapping[str, Any]) -> "ScanConfig":
        """Return a copy with non-None overrides applied, then validated."""
        known = {f.name for f in fields(self)}
        updates = {k: v for k, v in overrides.items() if k in known and v is not None}
        return replace(self, **updates).validated()

    def validated(self) -> "ScanConfig":
        if self.concurrency < 1:
            raise ConfigError(f"concurrency must be >= 1, got {self.concurrency}")
        if self.timeout <= 0:
            raise ConfigError(f"timeout must be positive, got {self.timeout}")
        if self.transport not in TRANSPORTS:
            raise ConfigError(f"transport must be one of {TRANSPORTS}, got {self.transport!r}")
        if self.output_format not in OUTPUT_FORMATS:
            raise ConfigError(f"output format must be one of {OUTPUT_FORMATS}, got {self.output_format!r}")
        if self.cache_ttl < 0:
            raise ConfigError(f"cache_ttl must be >= 0, got {self.cache_ttl}")
        if self.cache_max_entries < 1:
            raise ConfigError(f"cache_max_entries must be >= 1, got {self.cache_max_entries}")
        if self.breaker_threshold < 1 or self.breaker_half_open_successes < 1:
            raise ConfigError("breaker_threshold and breaker_half_open_successes must be >= 1")
        if self.rate is not None:
            parse_rate(self.rate)
        return self


def load_config(path: Optional[str] = None) -> ScanConfig:
    """Load ``config.yml`` from the config home (or ``path``) over the defaults.

    A missing file yields the defaults. Unreadable or malformed YAML and
    invalid values raise ConfigError.
    """
    defaults = ScanConfig()
    path = path or os.path.join(defaults.home, "config.yml")
    if not os.path.exists(path):
        return defaults.validated()

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Failed to load config {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config {path} must be a mapping")

    known = {f.name for f in fields(ScanConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        logger.warning("Ignoring unknown config keys in %s: %s", path, ", ".join(unknown))

    values: Dict[str, Any] = {k: v for k, v in data.items() if k in known}
    try:
        return defaults.merged(values)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid value in {path}: {exc}") from exc
