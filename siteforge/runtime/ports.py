"""Host port allocation."""

from __future__ import annotations

import socket
from typing import Callable, Iterable, Optional, Sequence

from siteforge.errors import AllocationError
from siteforge.models.runtime import PortAllocation
from siteforge.registry.allocations import AllocationLedger, ResourceKind
from siteforge.utils.logging import get_logger

logger = get_logger("runtime.ports")

# (host, port) -> True when the port can be bound right now
PortProbe = Callable[[str, int], bool]


def socket_probe(host: str, port: int) -> bool:
    """Check if a port is free by binding it briefly."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            s.bind((host, port))
        except OSError:
            return False
    return True


class PortAllocator:
    """
    Hands out host ports from a configured range.

    Ownership lives in the allocation ledger. Whether a port is actually
    free is probed, but the probe can race with other processes on the
    host, so callers re-verify right before binding.
    """

    def __init__(
        self,
        ledger: AllocationLedger,
        host: str = "127.0.0.1",
        range_start: int = 3001,
        range_end: int = 3999,
        probe: Optional[PortProbe] = None,
    ) -> None:
        """
        Initialize the allocator.

        Args:
            ledger: Ownership ledger shared with the runtime adapter
            host: Interface ports are probed on
            range_start: First port of the default range
            range_end: Last port of the default range (inclusive)
            probe: Free-port check (defaults to a socket bind)
        """
        self.ledger = ledger
        self.host = host
        self.range_start = range_start
        self.range_end = range_end
        self.probe = probe or socket_probe

    def _is_free(self, port: int) -> bool:
        try:
            return self.probe(self.host, port)
        except OSError as e:
            logger.debug("port_probe_error", port=port, error=str(e))
            return False

    def _usable(self, project_id: str, port: int) -> bool:
        owner = self.ledger.owner(ResourceKind.PORT, port)
        if owner is not None and owner != project_id:
            return False
        return self._is_free(port)

    def _candidates(
        self,
        range_hint: Optional[tuple[int, int]],
        preferred: Sequence[int],
    ) -> Iterable[int]:
        start, end = range_hint or (self.range_start, self.range_end)
        seen: set[int] = set()
        for port in list(preferred) + list(range(start, end + 1)):
            if port in seen:
                continue
            seen.add(port)
            yield port

    def allocate(
        self,
        project_id: str,
        count: int,
        range_hint: Optional[tuple[int, int]] = None,
        preferred: Sequence[int] = (),
    ) -> PortAllocation:
        """
        Reserve ``count`` ports for a project.

        Preferred ports are tried first (ports the project already owns are
        reused), then the range in ascending order.

        Args:
            project_id: Owning project
            count: Number of ports needed
            range_hint: Inclusive (start, end) range overriding the default
            preferred: Ports to try before scanning the range

        Returns:
            PortAllocation with the reserved ports

        Raises:
            AllocationError: If not enough ports are available
        """
        if count < 0:
            raise ValueError(f"count must not be negative, got {count}")

        chosen: list[int] = []
        newly_claimed: list[int] = []

        for port in self._candidates(range_hint, preferred):
            if len(chosen) == count:
                break
            if not self._usable(project_id, port):
                continue
            if self.ledger.claim(project_id, ResourceKind.PORT, port):
                newly_claimed.append(port)
            chosen.append(port)

        if len(chosen) < count:
            for port in newly_claimed:
                self.ledger.release(project_id, ResourceKind.PORT, port)
            logger.warning(
                "port_allocation_failed",
                project_id=project_id,
                requested=count,
                available=len(chosen),
            )
            raise AllocationError(
                f"Only {len(chosen)} of {count} ports available",
                project_id=project_id,
            )

        logger.info("ports_allocated", project_id=project_id, ports=chosen)
        return PortAllocation(ports=chosen, reserved=True, newly_claimed=newly_claimed)

    def reserve(self, project_id: str, ports: Sequence[int]) -> list[int]:
        """
        Claim specific ports without probing.

        Used to restore a reservation during rollback.

        Raises:
            ResourceConflictError: If another project took one meanwhile
        """
        self.ledger.check(project_id, ResourceKind.PORT, ports)
        return [p for p in ports if self.ledger.claim(project_id, ResourceKind.PORT, p)]

    def release(self, project_id: str, ports: Optional[Sequence[int]] = None) -> list[int]:
        """
        Release ports held by a project (all of them when ``ports`` is None).

        Returns:
            Ports that were actually released
        """
        if ports is None:
            released = [int(p) for p in self.ledger.release_all(project_id, ResourceKind.PORT)]
        else:
            released = [p for p in ports if self.ledger.release(project_id, ResourceKind.PORT, p)]

        if released:
            logger.info("ports_released", project_id=project_id, ports=released)
        return released

    def verify(self, project_id: str, ports: Sequence[int]) -> list[int]:
        """
        Re-check ports immediately before binding.

        Returns:
            Ports that are no longer usable by the project
        """
        unusable = [p for p in ports if not self._usable(project_id, p)]
        if unusable:
            logger.warning("ports_unusable", project_id=project_id, ports=unusable)
        return unusable

    def owned(self, project_id: str) -> list[int]:
        return sorted(int(p) for p in self.ledger.owned_by(project_id, ResourceKind.PORT))
