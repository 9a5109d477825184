"""Validation of deployment specs and resource ownership."""

from __future__ import annotations

import re
from collections import Counter
from typing import Optional

from siteforge.models.runtime import DeploymentSpec
from siteforge.registry.allocations import AllocationLedger, ResourceKind
from siteforge.validation.schema import ValidationReport

# Docker object names
NAME_PATTERN = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_.-]*$")
IMAGE_PATTERN = re.compile(
    r"^(?:[a-z0-9.-]+(?::\d+)?/)?"  # registry
    r"[a-z0-9][a-z0-9._/-]*"  # repository
    r"(?::[A-Za-z0-9_][A-Za-z0-9_.-]{0,127})?"  # tag
    r"(?:@sha256:[a-f0-9]{64})?$"
)


def _valid_port(port: object) -> bool:
    return isinstance(port, int) and 1 <= port <= 65535


class DeploymentValidator:
    """Checks a deployment spec before anything is created from it."""

    def __init__(self, ledger: Optional[AllocationLedger] = None) -> None:
        self.ledger = ledger

    def validate(self, spec: DeploymentSpec) -> ValidationReport:
        errors: list[str] = []

        for label, name in (("network", spec.network), ("volume", spec.volume)):
            if not name or not NAME_PATTERN.match(name):
                errors.append(f"Deployment.{label} \"{name}\" is not a valid resource name")

        if not spec.services:
            errors.append("Deployment must define at least one service")

        for index, service in enumerate(spec.services):
            path = f"services[{index}]"
            if not NAME_PATTERN.match(service.container_name or ""):
                errors.append(f"{path}.container_name \"{service.container_name}\" is not valid")
            if not IMAGE_PATTERN.match(service.image or ""):
                errors.append(f"{path}.image \"{service.image}\" is not a valid image reference")
            if not _valid_port(service.container_port):
                errors.append(f"{path}.container_port {service.container_port} is out of range")
            if service.host_port is not None and not _valid_port(service.host_port):
                errors.append(f"{path}.host_port {service.host_port} is out of range")

        for name, count in Counter(spec.container_names).items():
            if count > 1:
                errors.append(f"Container name \"{name}\" is used by {count} services")
        for port, count in Counter(spec.host_ports).items():
            if count > 1:
                errors.append(f"Host port {port} is bound by {count} services")

        return ValidationReport(valid=not errors, errors=errors)

    def check_collisions(self, project_id: str, spec: DeploymentSpec) -> None:
        """
        Reject resources another project already owns.

        Raises:
            ResourceConflictError: On the first collision found
        """
        if self.ledger is None:
            return
        self.ledger.check(project_id, ResourceKind.NETWORK, [spec.network])
        self.ledger.check(project_id, ResourceKind.VOLUME, [spec.volume])
        self.ledger.check(project_id, ResourceKind.CONTAINER, spec.container_names)
        self.ledger.check(project_id, ResourceKind.PORT, spec.host_ports)
