"""Error taxonomy shared by every devinfra component.

Each error carries the exit code the CLI should use when it surfaces the
failure, so commands can translate any :class:`DevinfraError` into a single
``[FAIL]`` line without inspecting its type.
"""
from __future__ import annotations

from .exit_codes import ExitCode


class DevinfraError(RuntimeError):
    """Base class for all expected devinfra failures."""

    exit_code: int = ExitCode.FAILURE


class ValidationError(DevinfraError):
    """Raised when caller input (name, port, service, flavor) is invalid."""

    exit_code = ExitCode.VALIDATION


class ConflictError(DevinfraError):
    """Raised when a name, directory, or port is already registered."""

    exit_code = ExitCode.VALIDATION


class NotFoundError(DevinfraError):
    """Raised when an operation targets a project missing from the registry."""

    exit_code = ExitCode.VALIDATION


class ExternalToolError(DevinfraError):
    """Raised when a collaborator process fails or is absent."""

    exit_code = ExitCode.PROVIDER

    def __init__(self, message: str, *, output: str = "") -> None:
        """Store the tool's own diagnostic *output* alongside the message."""
        self.output = output.strip()
        if self.output:
            message = f"{message}: {self.output}"
        super().__init__(message)


class ToolTimeoutError(DevinfraError, TimeoutError):
    """Raised when a bounded external operation exceeds its deadline."""

    exit_code = ExitCode.PROVIDER

    def __init__(self, message: str, *, timeout: float | None = None) -> None:
        """Record the *timeout* (seconds) that was exceeded."""
        self.timeout = timeout
        super().__init__(message)


class PersistenceError(DevinfraError):
    """Raised when reading or atomically writing the registry fails."""

    exit_code = ExitCode.ENVIRONMENT


class CorruptRegistryError(DevinfraError):
    """Raised when the registry file exists but cannot be parsed."""

    exit_code = ExitCode.ENVIRONMENT


class ConfigError(DevinfraError):
    """Raised when configuration parsing fails."""

    exit_code = ExitCode.VALIDATION


__all__ = [
    "ConfigError",
    "ConflictError",
    "CorruptRegistryError",
    "DevinfraError",
    "ExternalToolError",
    "NotFoundError",
    "PersistenceError",
    "ToolTimeoutError",
    "ValidationError",
]
