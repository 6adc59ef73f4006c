"""Filesystem path helpers.

``canonicalize`` gives every directory a single comparable spelling so the
registry can detect the same checkout reached through ``~``, a relative
path from another working directory, or a symlink.
"""
from __future__ import annotations

import os
from pathlib import Path

from .errors import ConflictError, ValidationError

SENSITIVE_DIRS: tuple[str, ...] = ("/etc", "/usr", "/var", "/tmp", "/bin", "/sbin")


def canonicalize(path: str | os.PathLike[str]) -> Path:
    """Return the canonical form of *path*.

    Existing paths are fully symlink-resolved. Paths that do not exist yet
    (a clone destination, a directory about to be created) fall back to an
    absolute, lexically cleaned form. Never raises for either case.
    """
    expanded = os.path.expanduser(os.fspath(path))
    absolute = os.path.abspath(expanded)
    try:
        return Path(absolute).resolve(strict=True)
    except (OSError, RuntimeError):
        return Path(os.path.normpath(absolute))


def expand_dir(raw: str | os.PathLike[str]) -> Path:
    """Expand ``~`` and make *raw* absolute without resolving symlinks."""
    return Path(os.path.abspath(os.path.expanduser(os.fspath(raw))))


def is_empty_dir(path: Path) -> bool:
    """Return ``True`` when *path* is missing or an empty directory."""
    if not path.exists():
        return True
    if not path.is_dir():
        return False
    return not any(path.iterdir())


def validate_project_dir(path: Path, *, home: Path | None = None) -> list[str]:
    """Check that *path* is a sensible place for a new project.

    Returns warnings the caller should surface; raises
    :class:`ValidationError` for directories that must never be used and
    :class:`ConflictError` for a directory that already has content.
    """
    text = str(path)
    for sensitive in SENSITIVE_DIRS:
        if text == sensitive or text.startswith(sensitive + os.sep):
            raise ValidationError(f"refusing to create project in system directory: {path}")
    if path.exists() and not path.is_dir():
        raise ValidationError(f"path {str(path)!r} exists and is not a directory")
    if not is_empty_dir(path):
        raise ConflictError(f"directory {str(path)!r} already exists and is not empty")

    warnings: list[str] = []
    if home is not None:
        try:
            path.relative_to(home)
        except ValueError:
            warnings.append(f"Directory {path} is outside $HOME")
    return warnings


__all__ = ["SENSITIVE_DIRS", "canonicalize", "expand_dir", "is_empty_dir", "validate_project_dir"]
