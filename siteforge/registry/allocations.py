"""Ownership ledger for host and runtime resources.

Every port, container, network and volume a deployment uses is recorded
here against exactly one project. Claims by a second project are rejected
before anything is committed.
"""

from __future__ import annotations

import json
import threading
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional

from siteforge.errors import PersistenceError, ResourceConflictError
from siteforge.utils.atomic import AtomicWriteError, atomic_write_json
from siteforge.utils.logging import get_logger

logger = get_logger("registry.allocations")


class ResourceKind(str, Enum):
    PORT = "port"
    CONTAINER = "container"
    NETWORK = "network"
    VOLUME = "volume"


class AllocationLedger:
    """
    Tracks which project owns which resource.

    The ledger is optionally backed by a JSON file so ownership survives a
    restart of the orchestrator process.
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        """
        Initialize the ledger.

        Args:
            path: JSON file to persist to (in-memory only when None)
        """
        self.path = Path(path) if path else None
        self._owners: dict[ResourceKind, dict[str, str]] = {kind: {} for kind in ResourceKind}
        self._lock = threading.Lock()
        self._load()

    def _load(self) -> None:
        if self.path is None or not self.path.exists():
            return

        try:
            data = json.loads(self.path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(f"Cannot read allocation ledger {self.path}: {e}") from e

        for kind in ResourceKind:
            self._owners[kind] = {
                str(name): owner for name, owner in data.get(kind.value, {}).items()
            }

        logger.debug(
            "ledger_loaded",
            path=str(self.path),
            entries=sum(len(v) for v in self._owners.values()),
        )

    def _save(self) -> None:
        if self.path is None:
            return
        data = {kind.value: dict(sorted(owners.items())) for kind, owners in self._owners.items()}
        try:
            atomic_write_json(self.path, data)
        except AtomicWriteError as e:
            raise PersistenceError(str(e)) from e

    def owner(self, kind: ResourceKind, name: object) -> Optional[str]:
        return self._owners[kind].get(str(name))

    def check(self, project_id: str, kind: ResourceKind, names: Iterable[object]) -> None:
        """
        Reject names owned by another project.

        Raises:
            ResourceConflictError: On the first name owned by someone else
        """
        for name in names:
            owner = self.owner(kind, name)
            if owner is not None and owner != project_id:
                raise ResourceConflictError(kind.value, str(name), owner, project_id=project_id)

    def claim(self, project_id: str, kind: ResourceKind, name: object) -> bool:
        """
        Record ``project_id`` as owner of a resource.

        Returns:
            True if newly claimed, False if the project already owned it

        Raises:
            ResourceConflictError: If another project owns the resource
        """
        key = str(name)
        with self._lock:
            owner = self._owners[kind].get(key)
            if owner == project_id:
                return False
            if owner is not None:
                raise ResourceConflictError(kind.value, key, owner, project_id=project_id)
            self._owners[kind][key] = project_id
            self._save()

        logger.debug("resource_claimed", project_id=project_id, kind=kind.value, name=key)
        return True

    def release(self, project_id: str, kind: ResourceKind, name: object) -> bool:
        """
        Drop ownership of a resource held by ``project_id``.

        Returns:
            True if an entry was removed
        """
        key = str(name)
        with self._lock:
            if self._owners[kind].get(key) != project_id:
                return False
            del self._owners[kind][key]
            self._save()

        logger.debug("resource_released", project_id=project_id, kind=kind.value, name=key)
        return True

    def release_all(self, project_id: str, kind: Optional[ResourceKind] = None) -> list[str]:
        """Release everything ``project_id`` owns, optionally of one kind."""
        kinds = [kind] if kind else list(ResourceKind)
        released: list[str] = []
        with self._lock:
            for k in kinds:
                names = [n for n, owner in self._owners[k].items() if owner == project_id]
                for name in names:
                    del self._owners[k][name]
                released.extend(names)
            if released:
                self._save()
        return released

    def owned_by(self, project_id: str, kind: ResourceKind) -> list[str]:
        return sorted(n for n, owner in self._owners[kind].items() if owner == project_id)

    def snapshot(self, project_id: Optional[str] = None) -> dict[str, dict[str, str]]:
        """Copy of the ledger, optionally filtered to one project."""
        return {
            kind.value: {
                name: owner
                for name, owner in owners.items()
                if project_id is None or owner == project_id
            }
            for kind, owners in self._owners.items()
        }
