"""Side-by-side comparison of two scan results."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List

from .models import Finding, ScanResult


@dataclass(frozen=True)
class Comparison:
    first: ScanResult
    second: ScanResult
    only_in_first: List[str]
    only_in_second: List[str]
    common: List[str]
    new_findings: List[Finding]
    resolved_findings: List[Finding]

    @property
    def score_change(self) -> int:
        return self.second.score - self.first.score

    def to_dict(self) -> Dict[str, Any]:
        return {
            "first": {"url": self.first.url, "score": self.first.score},
            "second": {"url": self.second.url, "score": self.second.score},
            "score_change": self.score_change,
            "only_in_first": list(self.only_in_first),
            "only_in_second": list(self.only_in_second),
            "common": list(self.common),
            "new_findings": [f.to_dict() for f in self.new_findings],
            "resolved_findings": [f.to_dict() for f in self.resolved_findings],
        }


def compare_results(first: ScanResult, second: ScanResult) -> Comparison:
    """Compare header names (case-insensitively) and findings of two results.

    ``new_findings`` are present in ``second`` but not ``first``;
    ``resolved_findings`` the other way round. Header lists keep the order
    the headers appeared in.
    """
    names1 = _header_names(first)
    names2 = _header_names(second)
    seen2 = set(names2)
    seen1 = set(names1)
    return Comparison(
        first=first,
        second=second,
        only_in_first=[h for h in names1 if h not in seen2],
        only_in_second=[h for h in names2 if h not in seen1],
        common=[h for h in names1 if h in seen2],
        new_findings=[f for f in second.findings if f not in first.findings],
        resolved_findings=[f for f in first.findings if f not in second.findings],
    )


def _header_names(result: ScanResult) -> List[str]:
    names: List[str] = []
    for name in result.headers:
        lowered = name.lower()
        if lowered not in names:
            names.append(lowered)
    return names
