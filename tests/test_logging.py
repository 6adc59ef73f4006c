"""Tests for the structured operation log."""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from devinfra import __version__
from devinfra.errors import ConflictError
from devinfra.logging import StructuredLogger


def _records(logger: StructuredLogger) -> list[dict[str, object]]:
    text = logger.operations_log_path.read_text(encoding="utf-8")
    return [json.loads(line) for line in text.splitlines()]


def test_operation_writes_json_line_and_summary(tmp_path: Path) -> None:
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation("new", args={"name": "blog"}, target={"kind": "project"}) as op:
        op.add_step("directory", detail="/home/me/blog")
        op.success("created", changed=3)

    (record,) = _records(logger)
    assert record["command"] == "new"
    assert record["args"] == {"name": "blog"}
    assert record["target"] == {"kind": "project"}
    assert record["context"] == {"devinfra_version": __version__}
    assert record["steps"] == [
        {"name": "directory", "status": "success", "detail": "/home/me/blog"}
    ]
    assert record["result"] == {"status": "success", "message": "created", "changed": 3}
    summary = (tmp_path / "logs" / "devinfra.log").read_text()
    assert "new status=success" in summary


def test_exception_is_recorded_with_exit_code(tmp_path: Path) -> None:
    logger = StructuredLogger(tmp_path / "logs")

    with pytest.raises(ConflictError):
        with logger.operation("new"):
            raise ConflictError("project 'blog' already exists")

    (record,) = _records(logger)
    assert record["result"]["status"] == "error"
    assert record["result"]["rc"] == 2
    assert record["result"]["errors"] == ["project 'blog' already exists"]


def test_explicit_error_result_is_kept_on_exception(tmp_path: Path) -> None:
    logger = StructuredLogger(tmp_path / "logs")

    with pytest.raises(RuntimeError):
        with logger.operation("up") as op:
            op.error("docker compose up failed", rc=4)
            raise RuntimeError("exit")

    (record,) = _records(logger)
    assert record["result"]["message"] == "docker compose up failed"
    assert record["result"]["rc"] == 4


def test_operation_scope_warning_sanitises_context(tmp_path: Path) -> None:
    """Warnings should be recorded with JSON-safe context values."""
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation("remove", args={"path": Path("foo")}) as op:
        op.warning(
            "removed with warnings",
            warnings=("could not stop containers",),
            changed=1,
            context={"path": Path("/srv/blog"), "ports": (3000, 8080)},
        )

    (record,) = _records(logger)
    assert record["args"] == {"path": "foo"}
    result = record["result"]
    assert result["status"] == "warning"
    assert result["warnings"] == ["could not stop containers"]
    assert result["context"] == {"path": "/srv/blog", "ports": [3000, 8080]}


def test_structured_logger_disables_when_directory_unavailable(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Logger gracefully disables itself when log directory cannot be created."""
    log_dir = tmp_path / "logs"
    original_mkdir = Path.mkdir

    def fail_mkdir(self: Path, *args: object, **kwargs: object) -> None:
        if self == log_dir:
            raise PermissionError("no access")
        original_mkdir(self, *args, **kwargs)

    monkeypatch.setattr(Path, "mkdir", fail_mkdir)

    logger = StructuredLogger(log_dir)
    assert logger._enabled is False  # type: ignore[attr-defined]

    with logger.operation("status") as op:
        op.success("done")
    assert not log_dir.exists()


def test_structured_logger_disables_after_write_failure(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Write failures mark the logger disabled so later writes are skipped."""
    logger = StructuredLogger(tmp_path / "logs")
    original_open = Path.open

    def fail_open(self: Path, *args: object, **kwargs: object):  # type: ignore[no-untyped-def]
        if self == logger.operations_log_path:
            raise OSError("disk full")
        return original_open(self, *args, **kwargs)  # type: ignore[arg-type]

    monkeypatch.setattr(Path, "open", fail_open)

    with logger.operation("status") as op:
        op.success("done")

    assert logger._enabled is False  # type: ignore[attr-defined]
