"""Check execution harness for the doctor command."""

from __future__ import annotations

import concurrent.futures
import logging
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from ..errors import DevinfraError
from ..state.registry import Registry
from .models import CheckDefinition, CheckResult, CheckStatus, DoctorReport, build_report

LOGGER = logging.getLogger(__name__)


def run_check(definition: CheckDefinition) -> CheckResult:
    """Run one probe; an exception counts as a failure."""
    try:
        healthy = bool(definition.probe())
    except Exception as exc:  # noqa: BLE001 - probe errors are check failures
        LOGGER.debug("check %r raised %r", definition.name, exc)
        healthy = False
    if healthy:
        return CheckResult(name=definition.name, status=CheckStatus.OK)
    return CheckResult(
        name=definition.name,
        status=CheckStatus.FAIL,
        remediation=definition.remediation,
    )


@dataclass(slots=True)
class _ResultSink:
    """Collect results from worker threads under one lock."""

    _lock: threading.Lock = field(default_factory=threading.Lock)
    _entries: list[tuple[int, CheckResult]] = field(default_factory=list)

    def add(self, index: int, result: CheckResult) -> None:
        with self._lock:
            self._entries.append((index, result))

    def ordered(self) -> list[CheckResult]:
        with self._lock:
            return [result for _, result in sorted(self._entries, key=lambda item: item[0])]


def run_checks(
    definitions: Sequence[CheckDefinition],
    *,
    max_concurrency: int = 8,
) -> list[CheckResult]:
    """Execute *definitions* with bounded concurrency, in definition order."""
    if not definitions:
        return []
    max_workers = max(1, max_concurrency)
    if max_workers == 1:
        return [run_check(definition) for definition in definitions]

    sink = _ResultSink()
    with concurrent.futures.ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = [
            executor.submit(lambda i=index, d=definition: sink.add(i, run_check(d)))
            for index, definition in enumerate(definitions)
        ]
        for future in concurrent.futures.as_completed(futures):
            future.result()
    return sink.ordered()


class DoctorEngine:
    """Run the concurrent battery, then per-project checks sequentially."""

    def __init__(
        self,
        definitions: Sequence[CheckDefinition],
        load_registry: Callable[[], Registry],
        project_checks: Callable[[Registry], Sequence[CheckDefinition]],
        *,
        max_concurrency: int = 8,
    ) -> None:
        """Store the battery and how to derive per-project checks."""
        self._definitions = tuple(definitions)
        self._load_registry = load_registry
        self._project_checks = project_checks
        self.max_concurrency = max_concurrency

    def run(self) -> DoctorReport:
        """Run every check and aggregate the report."""
        start = time.perf_counter()
        results = run_checks(self._definitions, max_concurrency=self.max_concurrency)
        try:
            registry = self._load_registry()
        except DevinfraError as exc:
            results.append(
                CheckResult(
                    name="Registry",
                    status=CheckStatus.FAIL,
                    remediation=f"Fix or remove the project registry: {exc}",
                )
            )
        else:
            results.extend(run_check(check) for check in self._project_checks(registry))
        LOGGER.debug(
            "doctor ran %d checks in %dms",
            len(results),
            int((time.perf_counter() - start) * 1000),
        )
        return build_report(results)
