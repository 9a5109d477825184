"""Validation stage of the transition pipeline."""

from __future__ import annotations

from typing import Optional

from siteforge.errors import ValidationError
from siteforge.models.artifacts import (
    Artifact,
    DeletePlan,
    DeploymentArtifact,
    StartPlan,
    UpdatePlan,
)
from siteforge.utils.logging import get_logger
from siteforge.validation.runtime import DeploymentValidator
from siteforge.validation.schema import SchemaValidator, ValidationReport
from siteforge.validation.template import TemplateValidator

logger = get_logger("validation.artifact")

COMPOSE_REQUIRED_VARS = ("project_id", "services", "network", "volume")


class ArtifactValidator:
    """Runs the checks that apply to an artifact of a given action."""

    def __init__(
        self,
        schema: Optional[SchemaValidator] = None,
        templates: Optional[TemplateValidator] = None,
        deployment: Optional[DeploymentValidator] = None,
    ) -> None:
        self.schema = schema or SchemaValidator()
        self.templates = templates or TemplateValidator()
        self.deployment = deployment or DeploymentValidator()

    def validate(self, artifact: Artifact) -> ValidationReport:
        """
        Validate an artifact.

        Returns:
            Combined report (warnings only, when valid)

        Raises:
            ValidationError: If any check reports an error
            ResourceConflictError: If the runtime spec collides with
                resources owned by another project
        """
        report = ValidationReport()

        # A project must stay deletable even if its document is broken
        if not isinstance(artifact, DeletePlan):
            report = report.merge(self.schema.validate(artifact.project))

        spec = None
        if isinstance(artifact, DeploymentArtifact):
            compose = self.templates.validate(
                artifact.compose_source,
                artifact.compose_variables,
                required_vars=COMPOSE_REQUIRED_VARS,
                name="docker-compose.yml.j2",
            )
            report = report.merge(
                ValidationReport(
                    valid=compose.valid,
                    errors=compose.errors,
                    warnings=compose.warnings,
                )
            )
            spec = artifact.spec
        elif isinstance(artifact, (StartPlan, UpdatePlan)):
            spec = artifact.spec

        if spec is not None:
            report = report.merge(self.deployment.validate(spec))

        if not report.valid:
            logger.warning(
                "artifact_invalid",
                project_id=artifact.project_id,
                action=artifact.action.name,
                errors=report.errors,
            )
            raise ValidationError(
                f"{artifact.action.name} artifact failed validation "
                f"with {len(report.errors)} error(s)",
                errors=report.errors,
                warnings=report.warnings,
            )

        if spec is not None:
            self.deployment.check_collisions(artifact.project_id, spec)

        if report.warnings:
            logger.info(
                "artifact_warnings",
                project_id=artifact.project_id,
                warnings=report.warnings,
            )
        return report
