"""Single entry point for spawning external tools.

Every collaborator (docker, mkcert, git, dig ...) goes through
:class:`ProcessRunner`. A command runs in one of two modes:

``captured``
    stdout/stderr are collected and returned; stdin is closed.
``attached``
    the child inherits the terminal (used for ``logs -f`` and progress
    output from ``compose up``).

Both modes honour an optional ``timeout`` (seconds) and an optional
``cancel`` event. When either fires the child is terminated, then killed
after a grace period, so no orphan is left behind.
"""
from __future__ import annotations

import logging
import os
import shutil
import subprocess
import threading
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from ..errors import ExternalToolError, ToolTimeoutError

LOGGER = logging.getLogger(__name__)


class OutputMode(str, Enum):
    """How the child process' standard streams are wired."""

    CAPTURED = "captured"
    ATTACHED = "attached"


@dataclass(slots=True)
class ProcessResult:
    """Outcome of a finished command."""

    args: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """Return the most useful diagnostic text (stderr first)."""
        return self.stderr.strip() or self.stdout.strip()


@dataclass(slots=True)
class ProcessRunner:
    """Run external commands with timeout and cancellation support."""

    env: Mapping[str, str] = field(default_factory=dict)
    poll_interval: float = 0.1
    kill_grace: float = 5.0

    def which(self, binary: str) -> str | None:
        """Return the resolved path of *binary* or ``None``."""
        return shutil.which(binary)

    def run(
        self,
        args: Sequence[str],
        *,
        cwd: Path | None = None,
        mode: OutputMode = OutputMode.CAPTURED,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        error_prefix: str | None = None,
    ) -> ProcessResult:
        """Run *args* and wait for it to finish.

        Raises :class:`ExternalToolError` when the binary is missing, when the
        command exits non-zero (with ``check``) or when *cancel* is set, and
        :class:`ToolTimeoutError` when *timeout* elapses.
        """
        command = [str(arg) for arg in args]
        prefix = error_prefix or " ".join(command[:2])
        merged_env = {**os.environ, **self.env, **(env or {})}
        captured = mode is OutputMode.CAPTURED

        LOGGER.debug("running %s (cwd=%s, mode=%s)", command, cwd, mode.value)
        try:
            proc = subprocess.Popen(  # noqa: S603
                command,
                cwd=str(cwd) if cwd is not None else None,
                env=merged_env,
                stdin=subprocess.DEVNULL if captured else None,
                stdout=subprocess.PIPE if captured else None,
                stderr=subprocess.PIPE if captured else None,
                text=True,
            )
        except FileNotFoundError as exc:
            raise ExternalToolError(f"{command[0]} not found: {exc}") from exc
        except OSError as exc:
            raise ExternalToolError(f"{prefix} could not start: {exc}") from exc

        deadline = time.monotonic() + timeout if timeout is not None else None
        while True:
            try:
                stdout, stderr = proc.communicate(timeout=self.poll_interval)
                break
            except subprocess.TimeoutExpired:
                if cancel is not None and cancel.is_set():
                    self._terminate(proc)
                    raise ExternalToolError(f"{prefix} cancelled") from None
                if deadline is not None and time.monotonic() >= deadline:
                    self._terminate(proc)
                    raise ToolTimeoutError(
                        f"{prefix} timed out after {timeout:g}s", timeout=timeout
                    ) from None

        result = ProcessResult(
            args=command,
            returncode=proc.returncode,
            stdout=stdout or "",
            stderr=stderr or "",
        )
        if check and not result.ok:
            raise ExternalToolError(
                f"{prefix} failed (exit {result.returncode})",
                output=result.output,
            )
        return result

    def succeeds(
        self,
        args: Sequence[str],
        *,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> bool:
        """Return ``True`` when *args* runs and exits zero."""
        try:
            result = self.run(args, timeout=timeout, cancel=cancel, check=False)
        except (ExternalToolError, ToolTimeoutError):
            return False
        return result.ok

    def _terminate(self, proc: subprocess.Popen[str]) -> None:
        proc.terminate()
        try:
            proc.communicate(timeout=self.kill_grace)
        except subprocess.TimeoutExpired:
            LOGGER.debug("process %s ignored SIGTERM; killing", proc.pid)
            proc.kill()
            proc.communicate()


__all__ = ["OutputMode", "ProcessResult", "ProcessRunner"]
