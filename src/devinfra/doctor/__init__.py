"""Doctor subsystem: environment and per-project health checks."""
from __future__ import annotations

from .checks import collect_checks, collect_project_checks
from .engine import DoctorEngine, run_check, run_checks
from .models import CheckDefinition, CheckResult, CheckStatus, DoctorReport, build_report
from .utils import serialize_report

__all__ = [
    "CheckDefinition",
    "CheckResult",
    "CheckStatus",
    "DoctorEngine",
    "DoctorReport",
    "build_report",
    "collect_checks",
    "collect_project_checks",
    "run_check",
    "run_checks",
    "serialize_report",
]
