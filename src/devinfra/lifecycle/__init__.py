"""Project lifecycle operations."""
from __future__ import annotations

from .engine import CreateRequest, ImportRequest, ProjectLifecycle, RemoveResult, random_password
from .rollback import RollbackAction, RollbackLedger

__all__ = [
    "CreateRequest",
    "ImportRequest",
    "ProjectLifecycle",
    "RemoveResult",
    "RollbackAction",
    "RollbackLedger",
    "random_password",
]
