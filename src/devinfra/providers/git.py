"""Git provider used when importing a project from a remote URL."""
from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from ..errors import ValidationError
from .process import OutputMode, ProcessRunner

LOGGER = logging.getLogger(__name__)

CLONE_TIMEOUT_CAP = 300.0
GIT_URL_PREFIXES: tuple[str, ...] = ("git@", "git://", "https://", "http://", "ssh://")


class SourceKind(str, Enum):
    """What ``add`` was pointed at."""

    GIT_URL = "git"
    LOCAL_PATH = "path"


def classify_source(source: str) -> SourceKind:
    """Return whether *source* looks like a git URL or a local path."""
    if source.startswith(GIT_URL_PREFIXES):
        return SourceKind.GIT_URL
    return SourceKind.LOCAL_PATH


def validate_url(url: str) -> str:
    """Reject transports that can run commands or bypass the path checks."""
    if url.startswith("ext::"):
        raise ValidationError("git ext:: transport is not allowed (security risk)")
    if url.startswith("file://"):
        raise ValidationError("file:// URLs are not supported; use a local path instead")
    if url.startswith("ssh://-"):
        raise ValidationError("invalid SSH URL")
    return url


def repo_name_from_url(url: str) -> str:
    """Derive a project name: ``https://host/user/myapp.git`` -> ``myapp``."""
    tail = url.rstrip("/")
    if tail.startswith("git@"):
        if "/" in tail:
            tail = tail.rsplit("/", 1)[1]
        elif ":" in tail:
            tail = tail.rsplit(":", 1)[1]
    else:
        tail = tail.rsplit("/", 1)[-1]
    tail = tail.removesuffix(".git")
    return tail.lower()


@dataclass(slots=True)
class GitProvider:
    """Clone repositories with prompts disabled and a bounded runtime."""

    runner: ProcessRunner
    git_bin: str = "git"
    timeout: float = CLONE_TIMEOUT_CAP

    def clone(
        self,
        url: str,
        destination: Path,
        *,
        cancel: threading.Event | None = None,
    ) -> Path:
        """Clone *url* into *destination*.

        The clone never runs longer than five minutes, whatever timeout the
        provider was configured with.
        """
        validate_url(url)
        limit = min(self.timeout, CLONE_TIMEOUT_CAP)
        LOGGER.debug("cloning %s into %s (timeout %ss)", url, destination, limit)
        self.runner.run(
            [self.git_bin, "clone", "--", url, os.fspath(destination)],
            mode=OutputMode.ATTACHED,
            timeout=limit,
            cancel=cancel,
            env={"GIT_TERMINAL_PROMPT": "0"},
            error_prefix="git clone",
        )
        return destination


__all__ = [
    "GitProvider",
    "SourceKind",
    "classify_source",
    "repo_name_from_url",
    "validate_url",
]
