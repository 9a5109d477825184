"""Visitors over the project tree."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Iterator, Optional, Union

from siteforge.models.project import Component, Container, Page, Project, Section

Node = Union[Page, Section, Container, Component]


@dataclass(frozen=True)
class Element:
    """A node together with where it sits in the tree."""

    node: Node
    kind: str
    path: tuple[str, ...]

    @property
    def id(self) -> str:
        return self.node.id

    @property
    def depth(self) -> int:
        return len(self.path)


class TreeVisitor:
    """
    Depth-first walk over Project -> Page -> Section -> Container -> Component.

    Subclasses override the ``visit_*`` hooks. The walk itself never
    recurses past ``max_depth`` container levels.
    """

    def __init__(self, max_depth: int = 32) -> None:
        self.max_depth = max_depth

    def walk(self, project: Project) -> None:
        for page in project.pages:
            path = (page.id,)
            self.visit_page(page, path)
            for section in page.sections:
                section_path = path + (section.id,)
                self.visit_section(section, section_path)
                for container in section.containers:
                    self._walk_container(container, section_path, 1)

    def _walk_container(self, container: Container, parent: tuple[str, ...], level: int) -> None:
        if level > self.max_depth:
            self.visit_depth_exceeded(container, parent)
            return
        path = parent + (container.id,)
        self.visit_container(container, path)
        for component in container.components:
            self.visit_component(component, path + (component.id,))
        for child in container.containers:
            self._walk_container(child, path, level + 1)

    def visit_page(self, page: Page, path: tuple[str, ...]) -> None:
        pass

    def visit_section(self, section: Section, path: tuple[str, ...]) -> None:
        pass

    def visit_container(self, container: Container, path: tuple[str, ...]) -> None:
        pass

    def visit_component(self, component: Component, path: tuple[str, ...]) -> None:
        pass

    def visit_depth_exceeded(self, container: Container, path: tuple[str, ...]) -> None:
        pass


class ElementCollector(TreeVisitor):
    """Collects every node of the tree in document order."""

    def __init__(self, max_depth: int = 32) -> None:
        super().__init__(max_depth)
        self.elements: list[Element] = []

    def visit_page(self, page: Page, path: tuple[str, ...]) -> None:
        self.elements.append(Element(page, "page", path))

    def visit_section(self, section: Section, path: tuple[str, ...]) -> None:
        self.elements.append(Element(section, "section", path))

    def visit_container(self, container: Container, path: tuple[str, ...]) -> None:
        self.elements.append(Element(container, "container", path))

    def visit_component(self, component: Component, path: tuple[str, ...]) -> None:
        self.elements.append(Element(component, "component", path))


@dataclass
class UsageSummary:
    """Element types a project uses, as recorded in the build manifest."""

    components: list[str] = field(default_factory=list)
    containers: list[str] = field(default_factory=list)
    element_count: int = 0


def iter_elements(project: Project) -> Iterator[Element]:
    collector = ElementCollector()
    collector.walk(project)
    return iter(collector.elements)


def find_element(project: Project, element_id: str) -> Optional[Element]:
    """Find the first node with the given id."""
    for element in iter_elements(project):
        if element.id == element_id:
            return element
    return None


def duplicate_ids(project: Project) -> list[str]:
    counts = Counter(element.id for element in iter_elements(project))
    return sorted(element_id for element_id, n in counts.items() if n > 1)


def summarize_usage(project: Project) -> UsageSummary:
    """Collect the component and container types a project uses."""
    components: set[str] = set()
    containers: set[str] = set()
    count = 0
    for element in iter_elements(project):
        if element.kind == "component":
            components.add(element.node.type)
            count += 1
        elif element.kind == "container":
            containers.add(element.node.type)
            count += 1
    return UsageSummary(
        components=sorted(components),
        containers=sorted(containers),
        element_count=count,
    )
