"""Data models for doctor checks."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from enum import Enum


class CheckStatus(str, Enum):
    """Outcome of a single doctor check."""

    OK = "ok"
    FAIL = "fail"

    @property
    def is_failure(self) -> bool:
        """Return ``True`` when the status represents a failure."""
        return self is CheckStatus.FAIL


@dataclass(slots=True, frozen=True)
class CheckDefinition:
    """Name + boolean probe + the hint shown when the probe fails."""

    name: str
    probe: Callable[[], bool]
    remediation: str


@dataclass(slots=True, frozen=True)
class CheckResult:
    """Outcome of running a check; ``remediation`` is set only on failure."""

    name: str
    status: CheckStatus
    remediation: str | None = None

    @property
    def is_failure(self) -> bool:
        """Return ``True`` when the check failed."""
        return self.status.is_failure


@dataclass(slots=True, frozen=True)
class DoctorReport:
    """Complete report for a doctor run."""

    checks: Sequence[CheckResult]
    passed: bool
    errors: int


def build_report(results: Iterable[CheckResult]) -> DoctorReport:
    """Aggregate *results*: ``passed`` only when nothing failed."""
    checks = tuple(results)
    errors = sum(1 for result in checks if result.is_failure)
    return DoctorReport(checks=checks, passed=errors == 0, errors=errors)
