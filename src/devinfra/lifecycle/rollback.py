"""Compensating-action ledger for multi-step lifecycle operations."""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RollbackAction:
    """One labelled undo step."""

    label: str
    undo: Callable[[], object]


@dataclass(slots=True)
class RollbackLedger:
    """Ordered list of undo steps, executed newest first.

    A step is appended only after the side effect it compensates has been
    staged. On success the caller disarms the ledger; on failure it calls
    :meth:`execute`, which runs every step even when earlier ones fail and
    returns their failures as warning strings.
    """

    actions: list[RollbackAction] = field(default_factory=list)

    def add(self, label: str, undo: Callable[[], object]) -> None:
        """Record *undo* under *label*; it runs before anything added earlier."""
        self.actions.append(RollbackAction(label=label, undo=undo))

    @property
    def labels(self) -> list[str]:
        """Return the registered labels in registration order."""
        return [action.label for action in self.actions]

    def disarm(self) -> None:
        """Forget every registered step."""
        self.actions.clear()

    def execute(self) -> list[str]:
        """Run every step in reverse order and return cleanup warnings."""
        warnings: list[str] = []
        while self.actions:
            action = self.actions.pop()
            try:
                action.undo()
            except Exception as exc:  # noqa: BLE001 - a failed undo must not stop the rest
                message = f"cleanup warning ({action.label}): {exc}"
                LOGGER.warning(message)
                warnings.append(message)
            else:
                LOGGER.debug("rolled back %s", action.label)
        return warnings


__all__ = ["RollbackAction", "RollbackLedger"]
