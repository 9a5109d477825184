"""Project document model.

A project is a strictly owned tree: Project -> Pages -> Sections ->
Containers -> Components. Children are held inline by their parent, never
by reference. Keys the model does not know about are kept in ``attributes``
so that reading and re-writing a document never loses data.
"""

from __future__ import annotations

import copy
import re
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Optional

from siteforge.lifecycle.states import ProjectState
from siteforge.models.runtime import ServiceSpec

PROJECT_ID_PATTERN = re.compile(r"^[a-z0-9-]+$")

CONTAINER_TYPES = ("div", "list", "form")

# Section keys holding containers, keyed by container type
CONTAINER_KEYS = {"div": "divs", "list": "lists", "form": "forms"}


def is_valid_project_id(value: Any) -> bool:
    return isinstance(value, str) and bool(PROJECT_ID_PATTERN.match(value))


def _parse_time(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _format_time(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class Component:
    """Leaf element such as a heading, button or image."""

    id: str
    type: str
    properties: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "type": self.type, **self.properties}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Component":
        properties = {k: v for k, v in data.items() if k not in ("id", "type")}
        return cls(id=data.get("id", ""), type=data.get("type", ""), properties=properties)


@dataclass
class Container:
    """A div, list or form holding components and nested containers."""

    id: str
    type: str
    components: list[Component] = field(default_factory=list)
    containers: list["Container"] = field(default_factory=list)
    attributes: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id, "type": self.type, **self.attributes}
        data["components"] = [c.to_dict() for c in self.components]
        if self.containers:
            data["containers"] = [c.to_dict() for c in self.containers]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any], default_type: str = "div") -> "Container":
        known = ("id", "type", "components", "containers")
        return cls(
            id=data.get("id", ""),
            type=data.get("type", default_type),
            components=[Component.from_dict(c) for c in data.get("components", [])],
            containers=[Container.from_dict(c) for c in data.get("containers", [])],
            attributes={k: v for k, v in data.items() if k not in known},
        )


@dataclass
class Section:
    """A horizontal band of a page."""

    id: str
    containers: list[Container] = field(default_factory=list)
    attributes: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id, **self.attributes}
        for container_type, key in CONTAINER_KEYS.items():
            data[key] = [c.to_dict() for c in self.containers if c.type == container_type]
        other = [c.to_dict() for c in self.containers if c.type not in CONTAINER_KEYS]
        if other:
            data["containers"] = other
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Section":
        containers: list[Container] = []
        for container_type, key in CONTAINER_KEYS.items():
            containers.extend(
                Container.from_dict(c, default_type=container_type) for c in data.get(key, [])
            )
        containers.extend(Container.from_dict(c) for c in data.get("containers", []))
        known = ("id", "containers", *CONTAINER_KEYS.values())
        return cls(
            id=data.get("id", ""),
            containers=containers,
            attributes={k: v for k, v in data.items() if k not in known},
        )


@dataclass
class Page:
    """A routable page of the site."""

    id: str
    name: str
    sections: list[Section] = field(default_factory=list)
    attributes: dict[str, Any] = field(default_factory=dict)
    layout_attributes: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id, "name": self.name, **self.attributes}
        data["layout"] = {
            **self.layout_attributes,
            "sections": [s.to_dict() for s in self.sections],
        }
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Page":
        layout = data.get("layout") or {}
        return cls(
            id=data.get("id", ""),
            name=data.get("name", ""),
            sections=[Section.from_dict(s) for s in layout.get("sections", [])],
            attributes={k: v for k, v in data.items() if k not in ("id", "name", "layout")},
            layout_attributes={k: v for k, v in layout.items() if k != "sections"},
        )


@dataclass
class TemplateRef:
    """Template a project was created from."""

    id: str = "empty"
    name: str = "Empty Project"
    version: str = "1.0.0"
    fallback: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "version": self.version,
            "fallback": self.fallback,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TemplateRef":
        return cls(
            id=data.get("id", "empty"),
            name=data.get("name", "Empty Project"),
            version=data.get("version", "1.0.0"),
            fallback=bool(data.get("fallback", False)),
        )


@dataclass
class BuildInfo:
    """Manifest written by BUILD."""

    build_id: str
    built_at: datetime
    targets: list[str] = field(default_factory=lambda: ["app-visitor"])
    production: bool = True
    minify: bool = True
    used_components: list[str] = field(default_factory=list)
    used_containers: list[str] = field(default_factory=list)
    element_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "buildId": self.build_id,
            "builtAt": _format_time(self.built_at),
            "targets": list(self.targets),
            "production": self.production,
            "minify": self.minify,
            "usedComponents": list(self.used_components),
            "usedContainers": list(self.used_containers),
            "elementCount": self.element_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BuildInfo":
        return cls(
            build_id=data["buildId"],
            built_at=_parse_time(data.get("builtAt")),
            targets=list(data.get("targets", ["app-visitor"])),
            production=bool(data.get("production", True)),
            minify=bool(data.get("minify", True)),
            used_components=list(data.get("usedComponents", [])),
            used_containers=list(data.get("usedContainers", [])),
            element_count=int(data.get("elementCount", 0)),
        )


@dataclass
class DeploymentRecord:
    """Runtime topology recorded by DEPLOY and maintained by START/UPDATE."""

    network: str
    volume: str
    services: list[ServiceSpec] = field(default_factory=list)
    deployed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    strategy: Optional[str] = None

    @property
    def ports(self) -> list[int]:
        return [s.host_port for s in self.services if s.host_port is not None]

    @property
    def container_names(self) -> list[str]:
        return [s.container_name for s in self.services]

    def to_dict(self) -> dict[str, Any]:
        return {
            "network": self.network,
            "volume": self.volume,
            "services": [s.to_dict() for s in self.services],
            "deployedAt": _format_time(self.deployed_at),
            "updatedAt": _format_time(self.updated_at),
            "strategy": self.strategy,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DeploymentRecord":
        return cls(
            network=data["network"],
            volume=data["volume"],
            services=[ServiceSpec.from_dict(s) for s in data.get("services", [])],
            deployed_at=_parse_time(data.get("deployedAt")),
            updated_at=_parse_time(data.get("updatedAt")),
            strategy=data.get("strategy"),
        )


@dataclass
class Project:
    """A site project and its lifecycle state."""

    id: str
    name: str
    state: ProjectState = ProjectState.VOID
    version: str = "1.0.0"
    description: str = ""
    pages: list[Page] = field(default_factory=list)
    created: Optional[datetime] = None
    last_modified: Optional[datetime] = None
    template: TemplateRef = field(default_factory=TemplateRef)
    metadata: dict[str, Any] = field(default_factory=dict)
    build: Optional[BuildInfo] = None
    deployment: Optional[DeploymentRecord] = None

    def evolve(self, **changes: Any) -> "Project":
        """Return a deep copy with the given fields replaced."""
        return replace(copy.deepcopy(self), **changes)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the persisted JSON document layout."""
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "state": self.state.name,
            "version": self.version,
            "created": _format_time(self.created),
            "lastModified": _format_time(self.last_modified),
            "template": self.template.to_dict(),
            "metadata": copy.deepcopy(self.metadata),
            "pages": [p.to_dict() for p in self.pages],
        }
        if self.build is not None:
            data["build"] = self.build.to_dict()
        if self.deployment is not None:
            data["deployment"] = self.deployment.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Project":
        """Create from a persisted JSON document."""
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            state=ProjectState.parse(data.get("state", "DRAFT")),
            version=data.get("version", "1.0.0"),
            description=data.get("description", ""),
            pages=[Page.from_dict(p) for p in data.get("pages", [])],
            created=_parse_time(data.get("created")),
            last_modified=_parse_time(data.get("lastModified")),
            template=TemplateRef.from_dict(data.get("template") or {}),
            metadata=dict(data.get("metadata") or {}),
            build=BuildInfo.from_dict(data["build"]) if data.get("build") else None,
            deployment=(
                DeploymentRecord.from_dict(data["deployment"])
                if data.get("deployment")
                else None
            ),
        )


def default_home_page() -> Page:
    """Page used when a template contributes none."""
    return Page(id="home", name="Home", attributes={"path": "/"})
