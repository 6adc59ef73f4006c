"""Structured operation logging for devinfra.

Every CLI command runs inside :meth:`StructuredLogger.operation`, which
appends one JSON object to ``<logs_dir>/operations.jsonl`` when the command
finishes, and a one-line summary to ``<logs_dir>/devinfra.log``. A record
looks like::

    {"op_id": "...", "ts": "...", "command": "new", "args": {...},
     "target": {...}, "context": {"devinfra_version": "..."},
     "steps": [{"name": "directory", "status": "success", "detail": "..."}],
     "result": {"status": "success", "message": "...", "changed": 4, ...},
     "duration_ms": 12}

Logging must never break a command. When the directory cannot be created or
a write fails the logger disables itself and later operations are no-ops.
"""
from __future__ import annotations

import json
import logging
import time
import uuid
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from . import __version__

LOGGER = logging.getLogger(__name__)

OPERATIONS_LOG_NAME = "operations.jsonl"
HUMAN_LOG_NAME = "devinfra.log"


def _sanitize(value: object) -> object:
    """Return a JSON-safe representation of *value*."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Mapping):
        return {str(key): _sanitize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sanitize(item) for item in value]
    return str(value)


@dataclass
class OperationScope:
    """Mutable record for one in-flight operation."""

    command: str
    args: dict[str, object] = field(default_factory=dict)
    target: dict[str, object] = field(default_factory=dict)
    op_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    started_at: float = field(default_factory=time.monotonic)
    steps: list[dict[str, object]] = field(default_factory=list)
    result: dict[str, object] | None = None

    def add_step(self, name: str, *, status: str = "success", detail: str | None = None) -> None:
        """Record a completed (or skipped/failed) step."""
        step: dict[str, object] = {"name": name, "status": status}
        if detail is not None:
            step["detail"] = detail
        self.steps.append(step)

    def success(
        self,
        message: str,
        *,
        changed: int = 0,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation successful."""
        self._set_result("success", message, changed=changed, context=context)

    def warning(
        self,
        message: str,
        *,
        warnings: Iterable[str] = (),
        errors: Iterable[str] = (),
        changed: int = 0,
        backups: Iterable[str] = (),
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation complete with warnings."""
        self._set_result(
            "warning",
            message,
            changed=changed,
            warnings=list(warnings),
            errors=list(errors),
            backups=list(backups),
            context=context,
        )

    def error(
        self,
        message: str,
        *,
        errors: Iterable[str] | None = None,
        rc: int = 1,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation failed."""
        self._set_result(
            "error",
            message,
            errors=list(errors) if errors is not None else [message],
            rc=rc,
            context=context,
        )

    def _set_result(
        self,
        status: str,
        message: str,
        *,
        context: Mapping[str, object] | None = None,
        **extra: object,
    ) -> None:
        result: dict[str, object] = {"status": status, "message": message}
        for key, value in extra.items():
            result[key] = _sanitize(value)
        if context:
            result["context"] = _sanitize(dict(context))
        self.result = result

    def to_record(self) -> dict[str, object]:
        """Return the JSON record written for this operation."""
        duration_ms = int((time.monotonic() - self.started_at) * 1000)
        return {
            "op_id": self.op_id,
            "ts": datetime.now(UTC).isoformat(timespec="seconds"),
            "command": self.command,
            "args": _sanitize(self.args),
            "target": _sanitize(self.target),
            "context": {"devinfra_version": __version__},
            "steps": list(self.steps),
            "result": self.result or {"status": "success", "message": "", "changed": 0},
            "duration_ms": duration_ms,
        }


class StructuredLogger:
    """Append-only JSON-lines operation log."""

    def __init__(self, log_dir: Path) -> None:
        self._log_dir = Path(log_dir)
        self._operations_log_path = self._log_dir / OPERATIONS_LOG_NAME
        self._human_log_path = self._log_dir / HUMAN_LOG_NAME
        self._enabled = True
        try:
            self._log_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        except OSError as exc:
            LOGGER.debug("operation log disabled: cannot create %s: %s", self._log_dir, exc)
            self._enabled = False

    @property
    def operations_log_path(self) -> Path:
        """Return the JSON-lines file operations are appended to."""
        return self._operations_log_path

    @contextmanager
    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Yield a scope for *command* and write its record on exit."""
        scope = OperationScope(
            command=command,
            args=dict(args or {}),
            target=dict(target or {}),
        )
        try:
            yield scope
        except BaseException as exc:
            if scope.result is None:
                message = str(exc) or exc.__class__.__name__
                rc = getattr(exc, "exit_code", None)
                scope.error(message, rc=int(rc) if rc is not None else 1)
            raise
        finally:
            self._write(scope)

    def _write(self, scope: OperationScope) -> None:
        if not self._enabled:
            return
        record = scope.to_record()
        result = record["result"]
        status = result.get("status") if isinstance(result, dict) else "unknown"
        summary = f"{record['ts']} {scope.command} status={status} op_id={scope.op_id}\n"
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=True) + "\n")
            with self._human_log_path.open("a", encoding="utf-8") as handle:
                handle.write(summary)
        except OSError as exc:
            LOGGER.debug("operation log disabled after write failure: %s", exc)
            self._enabled = False


__all__ = ["OperationScope", "StructuredLogger"]
