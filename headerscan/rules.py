"""User-defined declarative header rules.

Rules live in a YAML document::

    rules:
      - type: missing
        header: X-Custom-Security
        message: Custom security header is missing
        severity: warning
        fix: Add X-Custom-Security
      - type: pattern
        header: Server
        pattern: "Apache/2\\.2"
        message: Outdated Apache version disclosed
        severity: critical
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Pattern, Sequence, Union

import yaml

from .exceptions import ConfigError
from .models import Finding, Severity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MissingHeaderRule:
    header: str
    message: str
    severity: Severity
    fix: Optional[str] = None


@dataclass(frozen=True)
class PatternMatchRule:
    header: str
    pattern: Pattern[str]
    message: str
    severity: Severity
    fix: Optional[str] = None


Rule = Union[MissingHeaderRule, PatternMatchRule]


def parse_rule(raw: Mapping[str, Any]) -> Rule:
    if not isinstance(raw, Mapping):
        raise ConfigError(f"Rule must be a mapping, got {type(raw).__name__}")
    try:
        rule_type = str(raw["type"]).lower()
        header = str(raw["header"]).strip().lower()
        message = str(raw["message"])
        severity = Severity.parse(raw["severity"])
    except KeyError as exc:
        raise ConfigError(f"Rule is missing required field {exc.args[0]!r}: {dict(raw)}") from exc
    except ValueError as exc:
        raise ConfigError(f"Rule has invalid severity: {raw.get('severity')!r}") from exc
    fix = raw.get("fix")

    if rule_type == "missing":
        return MissingHeaderRule(header=header, message=message, severity=severity, fix=fix)
    if rule_type == "pattern":
        if not raw.get("pattern"):
            raise ConfigError(f"Pattern rule for {header!r} has no pattern")
        try:
            pattern = re.compile(str(raw["pattern"]))
        except re.error as exc:
            raise ConfigError(f"Invalid pattern for {header!r}: {exc}") from exc
        return PatternMatchRule(header=header, pattern=pattern, message=message, severity=severity, fix=fix)
    raise ConfigError(f"Unknown rule type {rule_type!r} (expected 'missing' or 'pattern')")


def load_rules(path: str) -> List[Rule]:
    """Load rules from a YAML file. A missing file yields no rules."""
    if not os.path.exists(path):
        return []
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Failed to load rules from {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Rules file {path} must contain a mapping with a 'rules' list")
    raw_rules = data.get("rules") or []
    if not isinstance(raw_rules, list):
        raise ConfigError(f"'rules' in {path} must be a list")
    rules = [parse_rule(r) for r in raw_rules]
    logger.info("Loaded %d custom rules from %s", len(rules), path)
    return rules


def evaluate_rule(rule: Rule, headers: Mapping[str, str]) -> Optional[Finding]:
    if isinstance(rule, MissingHeaderRule):
        if rule.header in headers:
            return None
    else:
        value = headers.get(rule.header)
        if value is None or not rule.pattern.search(value):
            return None
    return Finding(header=rule.header, issue=rule.message, severity=rule.severity, recommended_fix=rule.fix)


def evaluate_rules(rules: Sequence[Rule], headers: Mapping[str, str]) -> List[Finding]:
    findings = []
    for rule in rules:
        finding = evaluate_rule(rule, headers)
        if finding is not None:
            findings.append(finding)
    return findings
