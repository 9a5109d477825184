"""Compensating rollback of side effects already applied by a transition."""

from __future__ import annotations

import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union

from siteforge.errors import RollbackFailedError
from siteforge.utils.logging import get_logger

logger = get_logger("lifecycle.compensation")

Undo = Callable[[], Union[Awaitable[Any], Any]]


@dataclass
class Compensation:
    """Inverse of one applied side effect."""

    name: str
    undo: Undo


class CompensationStack:
    """
    LIFO stack of inverse operations.

    Every side effect pushes its inverse before (or right after) it runs;
    unwinding runs them newest first. A failing compensation does not stop
    the unwind, but the whole rollback is then reported as failed.
    """

    def __init__(self) -> None:
        self._entries: list[Compensation] = []
        self.completed: list[str] = []

    def push(self, name: str, undo: Undo) -> None:
        self._entries.append(Compensation(name, undo))

    def clear(self) -> None:
        """Forget all entries; called once the transition has committed."""
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def names(self) -> list[str]:
        return [entry.name for entry in self._entries]

    async def unwind(self, original: Optional[BaseException] = None) -> list[str]:
        """
        Run all compensations in reverse order.

        Args:
            original: Error that triggered the rollback

        Returns:
            Names of the compensations that ran successfully

        Raises:
            RollbackFailedError: If any compensation raised
        """
        failures: list[tuple[str, BaseException]] = []

        while self._entries:
            entry = self._entries.pop()
            try:
                outcome = entry.undo()
                if inspect.isawaitable(outcome):
                    await outcome
                self.completed.append(entry.name)
                logger.info("compensation_applied", compensation=entry.name)
            except Exception as e:
                logger.error(
                    "compensation_failed",
                    compensation=entry.name,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                failures.append((entry.name, e))

        if failures:
            raise RollbackFailedError(original, failures)

        return list(self.completed)
