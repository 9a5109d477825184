"""Data models for siteforge."""

from siteforge.models.artifacts import (
    UPDATE_STRATEGIES,
    Artifact,
    DeletePlan,
    DeploymentArtifact,
    ProjectArtifact,
    StartPlan,
    StopPlan,
    UpdatePlan,
    spec_from_record,
)
from siteforge.models.project import (
    CONTAINER_TYPES,
    PROJECT_ID_PATTERN,
    BuildInfo,
    Component,
    Container,
    DeploymentRecord,
    Page,
    Project,
    Section,
    TemplateRef,
    default_home_page,
    is_valid_project_id,
)
from siteforge.models.runtime import (
    PROJECT_LABEL,
    ContainerStatus,
    DeploymentSpec,
    PortAllocation,
    ResourceNames,
    RuntimeStatus,
    ServiceSpec,
)
from siteforge.models.transitions import (
    StepRecord,
    StepStatus,
    TransitionOutcome,
    TransitionRecord,
    TransitionResult,
)

__all__ = [
    # Project tree
    "Project",
    "Page",
    "Section",
    "Container",
    "Component",
    "TemplateRef",
    "BuildInfo",
    "DeploymentRecord",
    "CONTAINER_TYPES",
    "PROJECT_ID_PATTERN",
    "default_home_page",
    "is_valid_project_id",
    # Runtime
    "PROJECT_LABEL",
    "ResourceNames",
    "ServiceSpec",
    "DeploymentSpec",
    "PortAllocation",
    "ContainerStatus",
    "RuntimeStatus",
    # Artifacts
    "Artifact",
    "ProjectArtifact",
    "DeploymentArtifact",
    "StartPlan",
    "StopPlan",
    "UpdatePlan",
    "DeletePlan",
    "UPDATE_STRATEGIES",
    "spec_from_record",
    # Transitions
    "StepRecord",
    "StepStatus",
    "TransitionOutcome",
    "TransitionRecord",
    "TransitionResult",
]
