"""Persistent registries: project documents and resource ownership."""

from siteforge.registry.allocations import AllocationLedger, ResourceKind
from siteforge.registry.projects import ProjectRegistry

__all__ = [
    "AllocationLedger",
    "ProjectRegistry",
    "ResourceKind",
]
