"""Artifacts produced by the generation stage of a transition."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from siteforge.lifecycle.states import Action
from siteforge.models.project import DeploymentRecord, Project
from siteforge.models.runtime import DeploymentSpec

UPDATE_STRATEGIES = ("rolling", "recreate", "blue-green")


def spec_from_record(project_id: str, record: DeploymentRecord) -> DeploymentSpec:
    """Rebuild the runtime spec a deployment record describes."""
    return DeploymentSpec(
        project_id=project_id,
        network=record.network,
        volume=record.volume,
        services=tuple(record.services),
    )


@dataclass
class Artifact:
    """Base artifact: the candidate project document for the transition."""

    action: Action
    project: Project

    @property
    def project_id(self) -> str:
        return self.project.id

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action.name,
            "project_id": self.project.id,
        }


@dataclass
class ProjectArtifact(Artifact):
    """Document-only artifact for CREATE, EDIT, BUILD and REVERT."""

    changes: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["changes"] = list(self.changes)
        if self.project.build is not None:
            data["build"] = self.project.build.to_dict()
        return data


@dataclass
class DeploymentArtifact(Artifact):
    """Runtime topology for DEPLOY plus its rendered compose document."""

    spec: DeploymentSpec
    compose: str
    compose_source: str
    compose_variables: dict[str, Any] = field(default_factory=dict)

    @property
    def port_count(self) -> int:
        return len(self.spec.services)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["deployment"] = self.spec.to_dict()
        data["compose"] = self.compose
        return data


@dataclass
class StartPlan(Artifact):
    """Containers to run and the ports they should get."""

    spec: DeploymentSpec
    preferred_ports: list[int] = field(default_factory=list)
    health_path: str = "/"

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["deployment"] = self.spec.to_dict()
        data["preferred_ports"] = list(self.preferred_ports)
        return data


@dataclass
class StopPlan(Artifact):
    """Containers to stop and ports to hand back."""

    spec: DeploymentSpec
    ports: list[int] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["containers"] = self.spec.container_names
        data["ports"] = list(self.ports)
        return data


@dataclass
class UpdatePlan(Artifact):
    """Replacement of the running service set."""

    strategy: str
    previous_version: str
    next_version: str
    previous: DeploymentSpec
    spec: DeploymentSpec
    restart: bool = False

    @property
    def images(self) -> list[str]:
        return self.spec.images

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(
            {
                "strategy": self.strategy,
                "previous_version": self.previous_version,
                "next_version": self.next_version,
                "restart": self.restart,
                "deployment": self.spec.to_dict(),
            }
        )
        return data


@dataclass
class DeletePlan(Artifact):
    """Everything to tear down before the record is removed."""

    spec: Optional[DeploymentSpec] = None
    ports: list[int] = field(default_factory=list)
    was_running: bool = False

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["deployment"] = self.spec.to_dict() if self.spec else None
        data["ports"] = list(self.ports)
        return data
