"""Declarative runtime specs exchanged with the container runtime adapter."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Optional, Sequence

PROJECT_LABEL = "siteforge.project"
SERVICE_LABEL = "siteforge.service"


@dataclass(frozen=True)
class ResourceNames:
    """Naming scheme for the runtime resources of one project."""

    prefix: str
    project_id: str

    @property
    def network(self) -> str:
        return f"{self.prefix}-{self.project_id}-net"

    @property
    def volume(self) -> str:
        return f"{self.prefix}-{self.project_id}-data"

    def container(self, service: str) -> str:
        return f"{self.prefix}-{self.project_id}-{service}"


@dataclass(frozen=True)
class ServiceSpec:
    """One container the project runs."""

    name: str
    container_name: str
    image: str
    container_port: int
    host_port: Optional[int] = None
    environment: dict[str, str] = field(default_factory=dict)
    labels: dict[str, str] = field(default_factory=dict)

    def with_host_port(self, port: Optional[int]) -> "ServiceSpec":
        return replace(self, host_port=port)

    def with_image(self, image: str) -> "ServiceSpec":
        return replace(self, image=image)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "container_name": self.container_name,
            "image": self.image,
            "container_port": self.container_port,
            "host_port": self.host_port,
            "environment": dict(self.environment),
            "labels": dict(self.labels),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ServiceSpec":
        return cls(
            name=data["name"],
            container_name=data["container_name"],
            image=data["image"],
            container_port=int(data["container_port"]),
            host_port=int(data["host_port"]) if data.get("host_port") is not None else None,
            environment=dict(data.get("environment", {})),
            labels=dict(data.get("labels", {})),
        )


@dataclass(frozen=True)
class DeploymentSpec:
    """Everything the runtime needs to host a project."""

    project_id: str
    network: str
    volume: str
    services: tuple[ServiceSpec, ...]

    @property
    def images(self) -> list[str]:
        return sorted({service.image for service in self.services})

    @property
    def container_names(self) -> list[str]:
        return [service.container_name for service in self.services]

    @property
    def host_ports(self) -> list[int]:
        return [s.host_port for s in self.services if s.host_port is not None]

    def bind_ports(self, ports: Sequence[int]) -> "DeploymentSpec":
        """Assign host ports to services in declaration order."""
        if len(ports) != len(self.services):
            raise ValueError(
                f"Expected {len(self.services)} ports, got {len(ports)}"
            )
        services = tuple(
            service.with_host_port(port) for service, port in zip(self.services, ports)
        )
        return replace(self, services=services)

    def to_dict(self) -> dict[str, Any]:
        return {
            "project_id": self.project_id,
            "network": self.network,
            "volume": self.volume,
            "images": self.images,
            "services": [service.to_dict() for service in self.services],
        }


@dataclass(frozen=True)
class PortAllocation:
    """Ports handed out to a project by the allocator."""

    ports: list[int]
    reserved: bool = True
    newly_claimed: list[int] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ports": list(self.ports),
            "reserved": self.reserved,
            "newly_claimed": list(self.newly_claimed),
        }


@dataclass
class ContainerStatus:
    """Observed state of one container."""

    name: str
    exists: bool = False
    running: bool = False
    image: Optional[str] = None
    host_ports: list[int] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "exists": self.exists,
            "running": self.running,
            "image": self.image,
            "host_ports": list(self.host_ports),
        }


@dataclass
class RuntimeStatus:
    """Observed runtime resources of one project."""

    project_id: str
    network_exists: bool = False
    volume_exists: bool = False
    volume_size: Optional[int] = None
    containers: list[ContainerStatus] = field(default_factory=list)

    @property
    def running(self) -> bool:
        return bool(self.containers) and all(c.running for c in self.containers)

    @property
    def empty(self) -> bool:
        """True when nothing attributable to the project exists."""
        return not (self.network_exists or self.volume_exists or self.containers)

    def to_dict(self) -> dict[str, Any]:
        return {
            "project_id": self.project_id,
            "network_exists": self.network_exists,
            "volume_exists": self.volume_exists,
            "volume_size": self.volume_size,
            "running": self.running,
            "containers": [c.to_dict() for c in self.containers],
        }
