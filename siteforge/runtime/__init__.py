"""Container runtime adapters and host port allocation."""

from siteforge.runtime.base import ContainerRuntimeAdapter
from siteforge.runtime.docker import DockerRuntimeAdapter
from siteforge.runtime.ports import PortAllocator, PortProbe, socket_probe

__all__ = [
    "ContainerRuntimeAdapter",
    "DockerRuntimeAdapter",
    "PortAllocator",
    "PortProbe",
    "socket_probe",
]
