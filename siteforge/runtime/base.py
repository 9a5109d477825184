"""Abstract container runtime adapter."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Optional, Sequence

import httpx

from siteforge.models.runtime import RuntimeStatus, ServiceSpec
from siteforge.registry.allocations import AllocationLedger, ResourceKind
from siteforge.utils.logging import get_logger

logger = get_logger("runtime.base")


class ContainerRuntimeAdapter(ABC):
    """
    Boundary to the container engine.

    Inputs are declarative specs; outputs are booleans, names and status
    objects. Every operation is idempotent: rollback and retry paths call
    them repeatedly, and repeating a call never changes the end result
    beyond the first success.

    Implementations record ownership of containers, networks and volumes
    in the allocation ledger through ``_claim`` and ``_release``.
    """

    def __init__(self, ledger: Optional[AllocationLedger] = None) -> None:
        self.ledger = ledger or AllocationLedger()

    def _claim(self, project_id: str, kind: ResourceKind, name: str) -> None:
        self.ledger.claim(project_id, kind, name)

    def _release(self, project_id: str, kind: ResourceKind, name: str) -> None:
        self.ledger.release(project_id, kind, name)

    @abstractmethod
    async def ensure_network(self, project_id: str, name: str) -> bool:
        """Create the network if missing. Returns True if it was created."""
        pass

    @abstractmethod
    async def ensure_volume(self, project_id: str, name: str) -> bool:
        """Create the volume if missing. Returns True if it was created."""
        pass

    @abstractmethod
    async def ensure_image(self, image: str) -> bool:
        """Make the image available locally. Returns True if it was pulled."""
        pass

    @abstractmethod
    async def create_containers(
        self,
        project_id: str,
        services: Sequence[ServiceSpec],
        network: str,
        volume: str,
    ) -> list[str]:
        """
        Create (but do not start) containers matching ``services``.

        Containers that exist with a different spec are replaced.
        Returns the container names.
        """
        pass

    @abstractmethod
    async def run_containers(
        self,
        project_id: str,
        services: Sequence[ServiceSpec],
        network: str,
        volume: str,
    ) -> list[str]:
        """Create containers as needed and make sure they are running."""
        pass

    @abstractmethod
    async def stop_containers(
        self,
        project_id: str,
        names: Optional[Sequence[str]] = None,
    ) -> list[str]:
        """Stop containers (all of the project's when names is None)."""
        pass

    @abstractmethod
    async def remove_containers(self, project_id: str, names: Sequence[str]) -> list[str]:
        """Remove containers. Missing containers are not an error."""
        pass

    @abstractmethod
    async def remove_network(self, project_id: str, name: str) -> bool:
        pass

    @abstractmethod
    async def remove_volume(self, project_id: str, name: str) -> bool:
        pass

    @abstractmethod
    async def remove_all(self, project_id: str) -> dict[str, list[str]]:
        """Remove every container, network and volume of a project."""
        pass

    @abstractmethod
    async def status(self, project_id: str) -> RuntimeStatus:
        pass

    async def check_health(
        self,
        urls: Sequence[str],
        timeout: float = 60.0,
        interval: float = 2.0,
    ) -> bool:
        """
        Poll HTTP endpoints until all answer or the timeout expires.

        Any response below 500 counts as healthy.

        Args:
            urls: Endpoints to poll
            timeout: Overall budget in seconds
            interval: Pause between polling rounds

        Returns:
            True if every endpoint answered in time
        """
        pending = list(urls)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        async with httpx.AsyncClient() as client:
            while pending:
                for url in list(pending):
                    try:
                        response = await client.get(url, timeout=5.0)
                    except httpx.HTTPError as e:
                        logger.debug("health_probe_failed", url=url, error=str(e))
                        continue
                    if response.status_code < 500:
                        logger.debug("endpoint_healthy", url=url, status=response.status_code)
                        pending.remove(url)

                if not pending:
                    break
                if loop.time() >= deadline:
                    logger.warning("health_check_timeout", pending=pending, timeout=timeout)
                    return False
                await asyncio.sleep(interval)

        return True

    async def close(self) -> None:
        """Release client resources."""
        pass
