"""Per-project mutual exclusion."""

from __future__ import annotations


class ProjectLocks:
    """
    At most one holder per project id; contenders are rejected, not queued.

    Acquisition never awaits, so on a single event loop the check-and-set
    cannot interleave with another coroutine.
    """

    def __init__(self) -> None:
        self._held: set[str] = set()

    def try_acquire(self, project_id: str) -> bool:
        if project_id in self._held:
            return False
        self._held.add(project_id)
        return True

    def release(self, project_id: str) -> None:
        self._held.discard(project_id)
