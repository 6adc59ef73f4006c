"""Utility helpers for serialising doctor reports."""
from __future__ import annotations

from .models import DoctorReport


def serialize_report(report: DoctorReport) -> dict[str, object]:
    """Convert a doctor report into a JSON-serialisable mapping."""
    return {
        "passed": report.passed,
        "checks": [
            {
                "name": result.name,
                "status": result.status.value,
                "remediation": result.remediation,
            }
            for result in report.checks
        ],
        "errors": report.errors,
    }
