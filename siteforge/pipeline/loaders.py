"""Resource loading: the read-only first stage of every transition."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from siteforge.lifecycle.machine import utc_now
from siteforge.lifecycle.states import Action, ProjectState
from siteforge.models.project import Project
from siteforge.models.runtime import RuntimeStatus
from siteforge.pipeline.templates import DEFAULT_TEMPLATE, FALLBACK_TEMPLATE, TemplateStore
from siteforge.runtime.base import ContainerRuntimeAdapter
from siteforge.runtime.ports import PortAllocator
from siteforge.utils.logging import get_logger

logger = get_logger("pipeline.loaders")


@dataclass
class LoadedContext:
    """Everything a generator may read. Nothing in here is mutated later."""

    action: Action
    project_id: str
    now: datetime
    project: Optional[Project] = None
    template_id: Optional[str] = None
    requested_template: Optional[str] = None
    template_document: Optional[dict[str, Any]] = None
    fallback_used: bool = False
    compose_source: Optional[str] = None
    runtime_status: Optional[RuntimeStatus] = None
    owned_ports: list[int] = field(default_factory=list)

    @property
    def state(self) -> ProjectState:
        return self.project.state if self.project else ProjectState.VOID


class ResourceLoader:
    """Gathers the inputs each action needs from storage and the runtime."""

    def __init__(
        self,
        templates: TemplateStore,
        runtime: Optional[ContainerRuntimeAdapter] = None,
        ports: Optional[PortAllocator] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.templates = templates
        self.runtime = runtime
        self.ports = ports
        self.clock = clock

    async def load(
        self,
        action: Action,
        project_id: str,
        config: Optional[dict[str, Any]] = None,
        project: Optional[Project] = None,
    ) -> LoadedContext:
        """
        Load the context for one transition.

        Args:
            action: Action being executed
            project_id: Target project
            config: Caller-supplied options
            project: Current project (None when it does not exist yet)

        Returns:
            LoadedContext
        """
        config = config or {}
        now = (self.clock or utc_now)()
        context = LoadedContext(action=action, project_id=project_id, now=now, project=project)

        if action is Action.CREATE:
            self._load_template(context, config.get("template"))

        if action is Action.DEPLOY:
            context.compose_source = self.templates.compose_source()

        needs_runtime = action is Action.DEPLOY or (
            project is not None and project.state.is_deployed()
        )
        if needs_runtime and self.runtime is not None:
            context.runtime_status = await self.runtime.status(project_id)
        if needs_runtime and self.ports is not None:
            context.owned_ports = self.ports.owned(project_id)

        logger.debug(
            "resources_loaded",
            project_id=project_id,
            action=action.name,
            template=context.template_id,
            runtime_checked=context.runtime_status is not None,
        )
        return context

    def _load_template(self, context: LoadedContext, requested: Optional[str]) -> None:
        template_id = (requested or DEFAULT_TEMPLATE).strip()
        context.requested_template = template_id

        document = self.templates.read_project_template(template_id)
        if document is None:
            logger.info(
                "template_fallback",
                project_id=context.project_id,
                requested=template_id,
                fallback=FALLBACK_TEMPLATE,
            )
            context.template_id = FALLBACK_TEMPLATE
            context.template_document = self.templates.empty_template()
            context.fallback_used = template_id != FALLBACK_TEMPLATE
        else:
            context.template_id = template_id
            context.template_document = document
