"""Docker implementation of the container runtime adapter."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional, Sequence, TypeVar

import docker
from docker.errors import APIError, DockerException, ImageNotFound, NotFound

from siteforge.errors import ResourceConflictError, RuntimeAdapterError, SiteForgeError
from siteforge.models.runtime import (
    PROJECT_LABEL,
    SERVICE_LABEL,
    ContainerStatus,
    RuntimeStatus,
    ServiceSpec,
)
from siteforge.registry.allocations import AllocationLedger, ResourceKind
from siteforge.runtime.base import ContainerRuntimeAdapter
from siteforge.utils.logging import get_logger

logger = get_logger("runtime.docker")

T = TypeVar("T")


def _label_filter(project_id: str) -> dict[str, str]:
    return {"label": f"{PROJECT_LABEL}={project_id}"}


class DockerRuntimeAdapter(ContainerRuntimeAdapter):
    """
    Runs project containers on the local Docker daemon.

    The docker SDK is blocking, so every call is pushed to a worker thread.
    All resources carry a ``siteforge.project`` label, which is how the
    adapter finds them again for status and teardown.
    """

    def __init__(
        self,
        ledger: Optional[AllocationLedger] = None,
        client: Optional[Any] = None,
        bind_host: str = "127.0.0.1",
        memory_limit: Optional[str] = "512m",
        content_mount: str = "/app/content",
        stop_timeout: int = 10,
    ) -> None:
        """
        Initialize the adapter.

        Args:
            ledger: Ownership ledger shared with the port allocator
            client: Docker client (created from the environment when None)
            bind_host: Host interface published ports bind to
            memory_limit: Per-container memory limit
            content_mount: Mount point of the project volume inside containers
            stop_timeout: Seconds to wait for a graceful stop
        """
        super().__init__(ledger)
        self._docker_client = client
        self.bind_host = bind_host
        self.memory_limit = memory_limit
        self.content_mount = content_mount
        self.stop_timeout = stop_timeout

    def _get_client(self) -> Any:
        """Get or create Docker client."""
        if self._docker_client is None:
            self._docker_client = docker.from_env()
        return self._docker_client

    async def _call(self, operation: str, fn: Callable[..., T], *args: Any) -> T:
        try:
            return await asyncio.to_thread(fn, *args)
        except SiteForgeError:
            raise
        except DockerException as e:
            logger.error("docker_operation_failed", operation=operation, error=str(e))
            raise RuntimeAdapterError(f"{operation} failed: {e}") from e

    # Networks and volumes

    async def ensure_network(self, project_id: str, name: str) -> bool:
        return await self._call("ensure_network", self._ensure_network, project_id, name)

    def _ensure_network(self, project_id: str, name: str) -> bool:
        self.ledger.check(project_id, ResourceKind.NETWORK, [name])
        client = self._get_client()
        try:
            network = client.networks.get(name)
        except NotFound:
            client.networks.create(name, driver="bridge", labels={PROJECT_LABEL: project_id})
            logger.info("network_created", project_id=project_id, network=name)
            created = True
        else:
            self._check_label_owner("network", name, network.attrs.get("Labels"), project_id)
            created = False

        self._claim(project_id, ResourceKind.NETWORK, name)
        return created

    async def ensure_volume(self, project_id: str, name: str) -> bool:
        return await self._call("ensure_volume", self._ensure_volume, project_id, name)

    def _ensure_volume(self, project_id: str, name: str) -> bool:
        self.ledger.check(project_id, ResourceKind.VOLUME, [name])
        client = self._get_client()
        try:
            volume = client.volumes.get(name)
        except NotFound:
            client.volumes.create(name=name, labels={PROJECT_LABEL: project_id})
            logger.info("volume_created", project_id=project_id, volume=name)
            created = True
        else:
            self._check_label_owner("volume", name, volume.attrs.get("Labels"), project_id)
            created = False

        self._claim(project_id, ResourceKind.VOLUME, name)
        return created

    async def remove_network(self, project_id: str, name: str) -> bool:
        return await self._call("remove_network", self._remove_network, project_id, name)

    def _remove_network(self, project_id: str, name: str) -> bool:
        client = self._get_client()
        removed = False
        try:
            network = client.networks.get(name)
        except NotFound:
            pass
        else:
            if self._skip_foreign(ResourceKind.NETWORK, name, network.attrs.get("Labels"), project_id):
                return False
            network.remove()
            logger.info("network_removed", project_id=project_id, network=name)
            removed = True

        self._release(project_id, ResourceKind.NETWORK, name)
        return removed

    async def remove_volume(self, project_id: str, name: str) -> bool:
        return await self._call("remove_volume", self._remove_volume, project_id, name)

    def _remove_volume(self, project_id: str, name: str) -> bool:
        client = self._get_client()
        removed = False
        try:
            volume = client.volumes.get(name)
        except NotFound:
            pass
        else:
            if self._skip_foreign(ResourceKind.VOLUME, name, volume.attrs.get("Labels"), project_id):
                return False
            volume.remove(force=True)
            logger.info("volume_removed", project_id=project_id, volume=name)
            removed = True

        self._release(project_id, ResourceKind.VOLUME, name)
        return removed

    # Images

    async def ensure_image(self, image: str) -> bool:
        return await self._call("ensure_image", self._ensure_image, image)

    def _ensure_image(self, image: str) -> bool:
        client = self._get_client()
        try:
            client.images.get(image)
            return False
        except ImageNotFound:
            logger.info("pulling_image", image=image)
            client.images.pull(image)
            return True

    # Containers

    async def create_containers(
        self,
        project_id: str,
        services: Sequence[ServiceSpec],
        network: str,
        volume: str,
    ) -> list[str]:
        return await self._call(
            "create_containers",
            self._create_containers,
            project_id,
            list(services),
            network,
            volume,
            False,
        )

    async def run_containers(
        self,
        project_id: str,
        services: Sequence[ServiceSpec],
        network: str,
        volume: str,
    ) -> list[str]:
        return await self._call(
            "run_containers",
            self._create_containers,
            project_id,
            list(services),
            network,
            volume,
            True,
        )

    def _create_containers(
        self,
        project_id: str,
        services: list[ServiceSpec],
        network: str,
        volume: str,
        start: bool,
    ) -> list[str]:
        self.ledger.check(
            project_id, ResourceKind.CONTAINER, [s.container_name for s in services]
        )
        names = []
        for service in services:
            container = self._create_one(project_id, service, network, volume)
            if start:
                container.reload()
                if container.status != "running":
                    container.start()
                    logger.info(
                        "container_started",
                        project_id=project_id,
                        name=service.container_name,
                        port=service.host_port,
                    )
            names.append(service.container_name)
        return names

    def _create_one(
        self,
        project_id: str,
        service: ServiceSpec,
        network: str,
        volume: str,
    ) -> Any:
        client = self._get_client()
        try:
            existing = client.containers.get(service.container_name)
        except NotFound:
            existing = None

        if existing is not None:
            self._check_label_owner(
                "container", service.container_name, existing.labels, project_id
            )
            if self._matches(existing, service):
                self._claim(project_id, ResourceKind.CONTAINER, service.container_name)
                return existing
            logger.info(
                "container_replaced",
                project_id=project_id,
                name=service.container_name,
                image=service.image,
                port=service.host_port,
            )
            existing.remove(force=True)

        port_key = f"{service.container_port}/tcp"
        binding = (self.bind_host, service.host_port) if service.host_port else None
        container = client.containers.create(
            service.image,
            name=service.container_name,
            detach=True,
            labels={**service.labels, PROJECT_LABEL: project_id, SERVICE_LABEL: service.name},
            environment=dict(service.environment),
            ports={port_key: binding},
            network=network,
            volumes={volume: {"bind": self.content_mount, "mode": "rw"}},
            mem_limit=self.memory_limit,
        )
        self._claim(project_id, ResourceKind.CONTAINER, service.container_name)
        logger.info(
            "container_created",
            project_id=project_id,
            name=service.container_name,
            image=service.image,
        )
        return container

    @staticmethod
    def _matches(container: Any, service: ServiceSpec) -> bool:
        """Check whether an existing container was created from this spec."""
        attrs = container.attrs or {}
        if attrs.get("Config", {}).get("Image") != service.image:
            return False

        bindings = attrs.get("HostConfig", {}).get("PortBindings") or {}
        entries = bindings.get(f"{service.container_port}/tcp") or []
        bound = entries[0].get("HostPort") if entries else ""
        wanted = str(service.host_port) if service.host_port else ""
        return (bound or "") == wanted

    async def stop_containers(
        self,
        project_id: str,
        names: Optional[Sequence[str]] = None,
    ) -> list[str]:
        return await self._call(
            "stop_containers",
            self._stop_containers,
            project_id,
            list(names) if names is not None else None,
        )

    def _stop_containers(self, project_id: str, names: Optional[list[str]]) -> list[str]:
        client = self._get_client()
        stopped = []
        for container in client.containers.list(all=True, filters=_label_filter(project_id)):
            if names is not None and container.name not in names:
                continue
            if container.status == "running":
                container.stop(timeout=self.stop_timeout)
                logger.info("container_stopped", project_id=project_id, name=container.name)
            stopped.append(container.name)
        return stopped

    async def remove_containers(self, project_id: str, names: Sequence[str]) -> list[str]:
        return await self._call(
            "remove_containers", self._remove_containers, project_id, list(names)
        )

    def _remove_containers(self, project_id: str, names: list[str]) -> list[str]:
        client = self._get_client()
        removed = []
        for name in names:
            try:
                container = client.containers.get(name)
            except NotFound:
                self._release(project_id, ResourceKind.CONTAINER, name)
                continue
            if self._skip_foreign(ResourceKind.CONTAINER, name, container.labels, project_id):
                continue
            container.remove(force=True)
            self._release(project_id, ResourceKind.CONTAINER, name)
            logger.info("container_removed", project_id=project_id, name=name)
            removed.append(name)
        return removed

    async def remove_all(self, project_id: str) -> dict[str, list[str]]:
        return await self._call("remove_all", self._remove_all, project_id)

    def _remove_all(self, project_id: str) -> dict[str, list[str]]:
        client = self._get_client()
        filters = _label_filter(project_id)

        containers = {c.name for c in client.containers.list(all=True, filters=filters)}
        containers.update(self.ledger.owned_by(project_id, ResourceKind.CONTAINER))
        networks = {n.name for n in client.networks.list(filters=filters)}
        networks.update(self.ledger.owned_by(project_id, ResourceKind.NETWORK))
        volumes = {v.name for v in client.volumes.list(filters=filters)}
        volumes.update(self.ledger.owned_by(project_id, ResourceKind.VOLUME))

        # Containers first: networks and volumes in use cannot be removed
        removed = {
            "containers": self._remove_containers(project_id, sorted(containers)),
            "networks": [n for n in sorted(networks) if self._remove_network(project_id, n)],
            "volumes": [v for v in sorted(volumes) if self._remove_volume(project_id, v)],
        }
        logger.info("project_resources_removed", project_id=project_id, **removed)
        return removed

    # Status

    async def status(self, project_id: str) -> RuntimeStatus:
        return await self._call("status", self._status, project_id)

    def _status(self, project_id: str) -> RuntimeStatus:
        client = self._get_client()
        filters = _label_filter(project_id)

        containers = []
        for container in client.containers.list(all=True, filters=filters):
            attrs = container.attrs or {}
            ports = (attrs.get("NetworkSettings") or {}).get("Ports") or {}
            host_ports = sorted(
                int(entry["HostPort"])
                for entries in ports.values()
                if entries
                for entry in entries
                if entry.get("HostPort")
            )
            containers.append(ContainerStatus(
                name=container.name,
                exists=True,
                running=container.status == "running",
                image=attrs.get("Config", {}).get("Image"),
                host_ports=sorted(set(host_ports)),
            ))

        volumes = client.volumes.list(filters=filters)
        return RuntimeStatus(
            project_id=project_id,
            network_exists=bool(client.networks.list(filters=filters)),
            volume_exists=bool(volumes),
            volume_size=self._volume_size(client, volumes[0].name) if volumes else None,
            containers=sorted(containers, key=lambda c: c.name),
        )

    @staticmethod
    def _volume_size(client: Any, name: str) -> Optional[int]:
        try:
            usage = client.df().get("Volumes") or []
        except APIError as e:
            logger.warning("volume_usage_unavailable", volume=name, error=str(e))
            return None
        for entry in usage:
            if entry.get("Name") == name:
                return (entry.get("UsageData") or {}).get("Size")
        return None

    @staticmethod
    def _check_label_owner(
        kind: str,
        name: str,
        labels: Optional[dict[str, str]],
        project_id: str,
    ) -> None:
        owner = (labels or {}).get(PROJECT_LABEL)
        if owner and owner != project_id:
            raise ResourceConflictError(kind, name, owner, project_id=project_id)

    def _skip_foreign(
        self,
        kind: ResourceKind,
        name: str,
        labels: Optional[dict[str, str]],
        project_id: str,
    ) -> bool:
        """
        Check whether a removal must leave ``name`` alone.

        Objects labelled for, or recorded in the ledger as owned by, another
        project are never removed on behalf of ``project_id``.
        """
        owner = (labels or {}).get(PROJECT_LABEL) or self.ledger.owner(kind, name)
        if owner and owner != project_id:
            logger.warning(
                "foreign_resource_skipped",
                project_id=project_id,
                kind=kind.value,
                name=name,
                owner=owner,
            )
            return True
        return False

    async def close(self) -> None:
        if self._docker_client is not None:
            self._docker_client.close()
            self._docker_client = None
