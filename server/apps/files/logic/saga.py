"""Compensation stack for multi-step operations spanning two systems.

After each effectful step succeeds, the caller pushes the action that
undoes it. On a later failure the stack is unwound in reverse order.
A failing compensation is logged and the remaining ones still run, so
the original error is never masked.
"""

import logging
from collections.abc import Callable
from typing import final

logger = logging.getLogger(__name__)


@final
class CompensationStack:
    """Ordered record of undo actions for the steps that succeeded."""

    def __init__(self) -> None:
        """Initialize an empty stack."""
        self._actions: list[tuple[str, Callable[[], object]]] = []

    def __len__(self) -> int:
        """Number of pending compensations."""
        return len(self._actions)

    def push(self, description: str, action: Callable[[], object]) -> None:
        """Register the compensation for a step that just succeeded.

        Args:
            description: What the compensation undoes, for logs.
            action: Callable performing the undo.
        """
        self._actions.append((description, action))

    def unwind(self) -> int:
        """Run all compensations, most recent first, and clear the stack.

        Returns:
            Number of compensations that failed.
        """
        failed = 0
        while self._actions:
            description, action = self._actions.pop()
            try:
                logger.warning('Running compensation: %s', description)
                action()
            except Exception:
                # Keep going: the remaining steps still need undoing
                logger.exception('Compensation failed: %s', description)
                failed += 1
        return failed
