"""
Pytest fixtures for siteforge tests.
"""

import asyncio
import io
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

import pytest
import pytest_asyncio

from siteforge.config.settings import OrchestratorSettings
from siteforge.lifecycle.coordinator import WorkflowCoordinator
from siteforge.models.runtime import ContainerStatus, RuntimeStatus, ServiceSpec
from siteforge.notifications import EventChannel, EventSink, LifecycleEvent
from siteforge.registry.allocations import AllocationLedger, ResourceKind
from siteforge.registry.projects import ProjectRegistry
from siteforge.runtime.base import ContainerRuntimeAdapter
from siteforge.runtime.ports import PortAllocator
from siteforge.utils.logging import configure_logging

PORT_RANGE = (4100, 4104)


class FakeRuntimeAdapter(ContainerRuntimeAdapter):
    """
    In-memory container runtime.

    Supports failure injection per operation and gates that hold an
    operation until the test releases it.
    """

    def __init__(self, ledger: Optional[AllocationLedger] = None) -> None:
        super().__init__(ledger)
        self.networks: dict[str, str] = {}
        self.volumes: dict[str, str] = {}
        self.images: set[str] = set()
        self.containers: dict[str, dict] = {}
        self.calls: list[str] = []
        self.failures: dict[str, list[BaseException]] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.entered: dict[str, asyncio.Event] = {}
        self.healthy = True
        self.health_urls: list[str] = []
        self.closed = False

    def fail(self, operation: str, error: BaseException, times: int = 1) -> None:
        self.failures.setdefault(operation, []).extend([error] * times)

    def block(self, operation: str) -> tuple[asyncio.Event, asyncio.Event]:
        """Hold ``operation``; returns (entered, release) events."""
        self.entered[operation] = asyncio.Event()
        self.gates[operation] = asyncio.Event()
        return self.entered[operation], self.gates[operation]

    async def _enter(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self.gates:
            self.entered[operation].set()
            await self.gates[operation].wait()
        pending = self.failures.get(operation)
        if pending:
            raise pending.pop(0)

    def resources(self, project_id: str) -> dict[str, list[str]]:
        return {
            "networks": sorted(n for n, p in self.networks.items() if p == project_id),
            "volumes": sorted(v for v, p in self.volumes.items() if p == project_id),
            "containers": sorted(
                name for name, c in self.containers.items() if c["project"] == project_id
            ),
        }

    def running(self, project_id: str) -> list[str]:
        return sorted(
            name
            for name, c in self.containers.items()
            if c["project"] == project_id and c["running"]
        )

    async def ensure_network(self, project_id: str, name: str) -> bool:
        await self._enter("ensure_network")
        self.ledger.check(project_id, ResourceKind.NETWORK, [name])
        created = name not in self.networks
        self.networks[name] = project_id
        self._claim(project_id, ResourceKind.NETWORK, name)
        return created

    async def ensure_volume(self, project_id: str, name: str) -> bool:
        await self._enter("ensure_volume")
        self.ledger.check(project_id, ResourceKind.VOLUME, [name])
        created = name not in self.volumes
        self.volumes[name] = project_id
        self._claim(project_id, ResourceKind.VOLUME, name)
        return created

    async def ensure_image(self, image: str) -> bool:
        await self._enter("ensure_image")
        pulled = image not in self.images
        self.images.add(image)
        return pulled

    def _place(self, project_id: str, services: Sequence[ServiceSpec], start: bool) -> list[str]:
        self.ledger.check(project_id, ResourceKind.CONTAINER, [s.container_name for s in services])
        names = []
        for service in services:
            existing = self.containers.get(service.container_name)
            if existing is None or existing["spec"] != service:
                existing = {"project": project_id, "spec": service, "running": False}
                self.containers[service.container_name] = existing
            if start:
                existing["running"] = True
            self._claim(project_id, ResourceKind.CONTAINER, service.container_name)
            names.append(service.container_name)
        return names

    async def create_containers(self, project_id, services, network, volume) -> list[str]:
        await self._enter("create_containers")
        return self._place(project_id, services, start=False)

    async def run_containers(self, project_id, services, network, volume) -> list[str]:
        await self._enter("run_containers")
        return self._place(project_id, services, start=True)

    async def stop_containers(self, project_id, names=None) -> list[str]:
        await self._enter("stop_containers")
        stopped = []
        for name, container in self.containers.items():
            if container["project"] != project_id:
                continue
            if names is not None and name not in names:
                continue
            container["running"] = False
            stopped.append(name)
        return stopped

    def _foreign(self, project_id, kind, name, holder) -> bool:
        owner = holder or self.ledger.owner(kind, name)
        return owner is not None and owner != project_id

    async def remove_containers(self, project_id, names) -> list[str]:
        await self._enter("remove_containers")
        removed = []
        for name in names:
            existing = self.containers.get(name)
            if self._foreign(project_id, ResourceKind.CONTAINER, name, existing and existing["project"]):
                continue
            if self.containers.pop(name, None) is not None:
                removed.append(name)
            self._release(project_id, ResourceKind.CONTAINER, name)
        return removed

    async def remove_network(self, project_id, name) -> bool:
        await self._enter("remove_network")
        if self._foreign(project_id, ResourceKind.NETWORK, name, self.networks.get(name)):
            return False
        self._release(project_id, ResourceKind.NETWORK, name)
        return self.networks.pop(name, None) is not None

    async def remove_volume(self, project_id, name) -> bool:
        await self._enter("remove_volume")
        if self._foreign(project_id, ResourceKind.VOLUME, name, self.volumes.get(name)):
            return False
        self._release(project_id, ResourceKind.VOLUME, name)
        return self.volumes.pop(name, None) is not None

    async def remove_all(self, project_id) -> dict[str, list[str]]:
        await self._enter("remove_all")
        owned = self.resources(project_id)
        for name in owned["containers"]:
            del self.containers[name]
        for name in owned["networks"]:
            del self.networks[name]
        for name in owned["volumes"]:
            del self.volumes[name]
        for kind in (ResourceKind.CONTAINER, ResourceKind.NETWORK, ResourceKind.VOLUME):
            self.ledger.release_all(project_id, kind)
        return owned

    async def status(self, project_id) -> RuntimeStatus:
        owned = self.resources(project_id)
        return RuntimeStatus(
            project_id=project_id,
            network_exists=bool(owned["networks"]),
            volume_exists=bool(owned["volumes"]),
            containers=[
                ContainerStatus(
                    name=name,
                    exists=True,
                    running=self.containers[name]["running"],
                    image=self.containers[name]["spec"].image,
                    host_ports=[
                        p for p in [self.containers[name]["spec"].host_port] if p is not None
                    ],
                )
                for name in owned["containers"]
            ],
        )

    async def check_health(self, urls, timeout=60.0, interval=2.0) -> bool:
        await self._enter("check_health")
        self.health_urls.extend(urls)
        return self.healthy

    async def close(self) -> None:
        self.closed = True


class FakeProbe:
    """Port probe with a configurable set of busy ports."""

    def __init__(self) -> None:
        self.busy: set[int] = set()

    def __call__(self, host: str, port: int) -> bool:
        return port not in self.busy


class TickingClock:
    """Deterministic clock that advances one second per reading."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


class CollectingSink(EventSink):
    """Keeps every delivered event in memory."""

    name = "collect"

    def __init__(self) -> None:
        self.events: list[LifecycleEvent] = []

    @property
    def types(self) -> list[str]:
        return [event.type.value for event in self.events]

    async def deliver(self, event: LifecycleEvent) -> None:
        self.events.append(event)


@pytest.fixture(autouse=True)
def quiet_logging():
    """Route logs to a buffer so runner-owned streams are never captured."""
    buffer = io.StringIO()
    configure_logging(level="debug", format_type="json", stream=buffer)
    yield buffer


@pytest.fixture
def settings(tmp_path) -> OrchestratorSettings:
    """Settings pointing at a temp data dir, with instant retries."""
    return OrchestratorSettings.from_dict({
        "paths": {"data_dir": str(tmp_path / "data")},
        "ports": {"range_start": PORT_RANGE[0], "range_end": PORT_RANGE[1]},
        "timeouts": {"stage": 5, "health_check": 1, "health_interval": 0.01},
        "retries": {"max_attempts": 3, "base_delay": 0},
        "notifications": {"log_events": False},
    }).unwrap()


@pytest.fixture
def ledger(settings) -> AllocationLedger:
    return AllocationLedger(settings.paths.data_dir / "allocations.json")


@pytest.fixture
def registry(settings) -> ProjectRegistry:
    return ProjectRegistry(settings.paths.data_dir)


@pytest.fixture
def probe() -> FakeProbe:
    return FakeProbe()


@pytest.fixture
def ports(settings, ledger, probe) -> PortAllocator:
    return PortAllocator(
        ledger,
        host=settings.ports.host,
        range_start=settings.ports.range_start,
        range_end=settings.ports.range_end,
        probe=probe,
    )


@pytest.fixture
def runtime(ledger) -> FakeRuntimeAdapter:
    return FakeRuntimeAdapter(ledger)


@pytest.fixture
def sink() -> CollectingSink:
    return CollectingSink()


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest_asyncio.fixture
async def coordinator(registry, runtime, ports, settings, sink, clock) -> WorkflowCoordinator:
    """Coordinator wired to the in-memory runtime."""
    return WorkflowCoordinator(
        registry,
        runtime,
        ports,
        settings=settings,
        events=EventChannel([sink]),
        clock=clock,
    )
