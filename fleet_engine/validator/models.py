"""Validation report models."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class Verdict(Enum):
    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"


@dataclass
class CheckResult:
    """One check outcome; produced fresh on every run, never persisted."""

    category: str
    verdict: Verdict
    message: str
    node_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "node": self.node_id,
            "verdict": self.verdict.value,
            "message": self.message,
        }


@dataclass
class ValidationReport:
    results: List[CheckResult] = field(default_factory=list)
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def count(self, verdict: Verdict) -> int:
        return sum(1 for r in self.results if r.verdict == verdict)

    @property
    def passed(self) -> int:
        return self.count(Verdict.PASS)

    @property
    def warnings(self) -> int:
        return self.count(Verdict.WARN)

    @property
    def failures(self) -> int:
        return self.count(Verdict.FAIL)

    @property
    def verdict(self) -> Verdict:
        if self.failures:
            return Verdict.FAIL
        if self.warnings:
            return Verdict.WARN
        return Verdict.PASS

    @property
    def exit_code(self) -> int:
        return 1 if self.verdict == Verdict.FAIL else 0

    def for_node(self, node_id: str) -> List[CheckResult]:
        return [r for r in self.results if r.node_id == node_id]

    def find(self, category: str, node_id: Optional[str] = None) -> List[CheckResult]:
        return [
            r for r in self.results
            if r.category == category and (node_id is None or r.node_id == node_id)
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "generated_at": self.generated_at.isoformat(),
            "verdict": self.verdict.value,
            "counts": {
                "pass": self.passed,
                "warn": self.warnings,
                "fail": self.failures,
            },
            "results": [r.to_dict() for r in self.results],
        }
