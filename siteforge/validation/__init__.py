"""Validation of project documents, templates and runtime specs."""

from siteforge.validation.artifact import ArtifactValidator
from siteforge.validation.runtime import DeploymentValidator
from siteforge.validation.schema import SchemaValidator, ValidationReport
from siteforge.validation.template import TemplateReport, TemplateValidator, make_environment

__all__ = [
    "ArtifactValidator",
    "DeploymentValidator",
    "SchemaValidator",
    "TemplateReport",
    "TemplateValidator",
    "ValidationReport",
    "make_environment",
]
