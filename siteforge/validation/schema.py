"""Structural validation of project documents."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from siteforge.lifecycle.states import ProjectState
from siteforge.models.project import CONTAINER_KEYS, PROJECT_ID_PATTERN, Project
from siteforge.utils.logging import get_logger

logger = get_logger("validation.schema")

SEMVER_PATTERN = re.compile(r"^\d+\.\d+\.\d+(?:[-+][0-9A-Za-z.-]+)?$")

KNOWN_COMPONENT_TYPES = ("button", "a", "p", "h", "image", "video")
HEADING_TAGS = ("h1", "h2", "h3", "h4", "h5", "h6")
LINK_TARGETS = ("_self", "_blank", "_parent", "_top")

DEFAULT_MAX_DEPTH = 10


@dataclass
class ValidationReport:
    """Outcome of a validation pass."""

    valid: bool = True
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def merge(self, other: "ValidationReport") -> "ValidationReport":
        return ValidationReport(
            valid=self.valid and other.valid,
            errors=self.errors + other.errors,
            warnings=self.warnings + other.warnings,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }


class SchemaValidator:
    """
    Validates the Project -> Page -> Section -> Container -> Component tree.

    Works on the raw JSON document so it can describe malformed input the
    typed model could not even load. Unknown component types are warnings,
    not errors, to let newer editors add types older orchestrators do not
    know yet. Container nesting deeper than ``max_depth`` is reported as a
    warning and not descended into.
    """

    def __init__(self, max_depth: int = DEFAULT_MAX_DEPTH, strict: bool = False) -> None:
        self.max_depth = max_depth
        self.strict = strict

    def validate(
        self,
        document: Union[Project, dict[str, Any]],
        max_depth: Optional[int] = None,
        strict: Optional[bool] = None,
    ) -> ValidationReport:
        """
        Validate a project document.

        Args:
            document: Project or its JSON document
            max_depth: Override of the container nesting limit
            strict: Treat warnings as failures

        Returns:
            ValidationReport
        """
        max_depth = self.max_depth if max_depth is None else max_depth
        strict = self.strict if strict is None else strict

        if isinstance(document, Project):
            document = document.to_dict()

        run = _SchemaRun(max_depth)
        if not isinstance(document, dict):
            run.errors.append("Project must be an object")
        else:
            run.project(document)

        valid = not run.errors and not (strict and run.warnings)
        logger.debug(
            "schema_validated",
            valid=valid,
            errors=len(run.errors),
            warnings=len(run.warnings),
        )
        return ValidationReport(valid=valid, errors=run.errors, warnings=run.warnings)


class _SchemaRun:
    """State of one validation pass."""

    def __init__(self, max_depth: int) -> None:
        self.max_depth = max_depth
        self.errors: list[str] = []
        self.warnings: list[str] = []
        self.seen_ids: dict[str, str] = {}

    def _require_strings(self, node: dict, path: str, fields: tuple[str, ...]) -> None:
        for name in fields:
            value = node.get(name)
            if not isinstance(value, str) or not value:
                self.errors.append(f"{path}.{name} is required and must be a string")

    def _register_id(self, node: dict, path: str) -> None:
        node_id = node.get("id")
        if not isinstance(node_id, str) or not node_id:
            return
        if node_id in self.seen_ids:
            self.errors.append(
                f"{path}.id \"{node_id}\" duplicates the id of {self.seen_ids[node_id]}"
            )
        else:
            self.seen_ids[node_id] = path

    def _array(self, node: dict, key: str, path: str, required: bool = False) -> list:
        value = node.get(key)
        if value is None and not required:
            return []
        if not isinstance(value, list):
            self.errors.append(f"{path}.{key} must be an array")
            return []
        return value

    def project(self, project: dict) -> None:
        self._require_strings(project, "Project", ("id", "name"))

        project_id = project.get("id")
        if isinstance(project_id, str) and project_id and not PROJECT_ID_PATTERN.match(project_id):
            self.errors.append(
                f"Project.id \"{project_id}\" must contain only lowercase letters, "
                "numbers and hyphens"
            )

        name = project.get("name")
        if isinstance(name, str) and name and len(name.strip()) < 2:
            self.errors.append("Project.name must be at least 2 characters long")

        version = project.get("version")
        if version is not None and not (isinstance(version, str) and SEMVER_PATTERN.match(version)):
            self.warnings.append(
                f"Project.version \"{version}\" should follow semver format (x.y.z)"
            )

        state = project.get("state")
        if state is not None and state not in ProjectState.__members__:
            self.warnings.append(
                f"Project.state \"{state}\" is not a standard state. "
                f"Valid: {', '.join(ProjectState.__members__)}"
            )

        pages = self._array(project, "pages", "Project", required=True)
        if "pages" in project and isinstance(pages, list) and not pages:
            self.errors.append("Project.pages must contain at least one page")
        for index, page in enumerate(pages):
            self.page(page, f"pages[{index}]")

    def page(self, page: Any, path: str) -> None:
        if not isinstance(page, dict):
            self.errors.append(f"{path} must be an object")
            return
        self._require_strings(page, path, ("id", "name"))
        self._register_id(page, path)

        layout = page.get("layout")
        if layout is None:
            self.warnings.append(f"{path} has no layout defined")
            return
        if not isinstance(layout, dict):
            self.errors.append(f"{path}.layout must be an object")
            return

        for index, section in enumerate(self._array(layout, "sections", f"{path}.layout", True)):
            self.section(section, f"{path}.layout.sections[{index}]")

    def section(self, section: Any, path: str) -> None:
        if not isinstance(section, dict):
            self.errors.append(f"{path} must be an object")
            return
        self._require_strings(section, path, ("id",))
        self._register_id(section, path)

        for container_type, key in CONTAINER_KEYS.items():
            for index, container in enumerate(self._array(section, key, path)):
                self.container(container, f"{path}.{key}[{index}]", container_type, 1)

        for index, container in enumerate(self._array(section, "containers", path)):
            declared = container.get("type", "div") if isinstance(container, dict) else "div"
            self.container(container, f"{path}.containers[{index}]", declared, 1)

    def container(self, container: Any, path: str, container_type: str, depth: int) -> None:
        if depth > self.max_depth:
            self.warnings.append(f"{path}: Maximum validation depth reached")
            return
        if not isinstance(container, dict):
            self.errors.append(f"{path} must be an object")
            return
        self._require_strings(container, path, ("id",))
        self._register_id(container, path)

        declared = container.get("type", container_type)
        if declared not in CONTAINER_KEYS:
            self.warnings.append(
                f"{path}.type \"{declared}\" is not a known container type. "
                f"Known: {', '.join(CONTAINER_KEYS)}"
            )

        if declared == "list" and "items" in container and not isinstance(container["items"], list):
            self.errors.append(f"{path}.items must be an array for list containers")
        if declared == "form":
            for key in ("inputs", "buttons"):
                if key in container and not isinstance(container[key], list):
                    self.errors.append(f"{path}.{key} must be an array for form containers")

        for index, component in enumerate(self._array(container, "components", path)):
            self.component(component, f"{path}.components[{index}]")

        for index, child in enumerate(self._array(container, "containers", path)):
            child_type = child.get("type", "div") if isinstance(child, dict) else "div"
            self.container(child, f"{path}.containers[{index}]", child_type, depth + 1)

    def component(self, component: Any, path: str) -> None:
        if not isinstance(component, dict):
            self.errors.append(f"{path} must be an object")
            return
        self._require_strings(component, path, ("id", "type"))
        self._register_id(component, path)

        component_type = component.get("type")
        if isinstance(component_type, str) and component_type not in KNOWN_COMPONENT_TYPES:
            self.warnings.append(
                f"{path}.type \"{component_type}\" is not a known component type. "
                f"Known: {', '.join(KNOWN_COMPONENT_TYPES)}"
            )

        if component_type == "h" and "tag" in component and component["tag"] not in HEADING_TAGS:
            self.errors.append(f"{path}.tag must be one of: {', '.join(HEADING_TAGS)}")

        if component_type == "a" and "target" in component and component["target"] not in LINK_TARGETS:
            self.warnings.append(
                f"{path}.target \"{component['target']}\" is not standard. "
                f"Valid: {', '.join(LINK_TARGETS)}"
            )
