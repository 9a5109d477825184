"""Transition pipeline stages: resource loading and artifact generation."""

from siteforge.pipeline.generators import ArtifactGenerator, bump_version, title_from_id
from siteforge.pipeline.loaders import LoadedContext, ResourceLoader
from siteforge.pipeline.templates import (
    DEFAULT_TEMPLATE,
    FALLBACK_TEMPLATE,
    TemplateStore,
)

__all__ = [
    "ArtifactGenerator",
    "LoadedContext",
    "ResourceLoader",
    "TemplateStore",
    "DEFAULT_TEMPLATE",
    "FALLBACK_TEMPLATE",
    "bump_version",
    "title_from_id",
]
