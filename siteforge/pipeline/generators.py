"""Artifact generation.

Each action has a generator: a deterministic function of the loaded context
and the caller's config. Generators never touch storage or the runtime, so
everything here is testable without mocks.
"""

from __future__ import annotations

import copy
import re
from dataclasses import replace
from typing import Any, Callable, Optional

from jinja2 import TemplateError

from siteforge.config.settings import RuntimeConfig
from siteforge.errors import ValidationError
from siteforge.lifecycle.states import Action, ProjectState
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
    BuildInfo,
    DeploymentRecord,
    Page,
    Project,
    TemplateRef,
    default_home_page,
    is_valid_project_id,
)
from siteforge.models.runtime import PROJECT_LABEL, DeploymentSpec, ResourceNames, ServiceSpec
from siteforge.models.tree import summarize_usage
from siteforge.pipeline.loaders import LoadedContext
from siteforge.pipeline.templates import TemplateStore
from siteforge.utils.logging import get_logger

logger = get_logger("pipeline.generators")

SEMVER = re.compile(r"^(\d+)\.(\d+)\.(\d+)(.*)$")


def title_from_id(project_id: str) -> str:
    """``my-site`` -> ``My Site``."""
    return " ".join(part.capitalize() for part in project_id.split("-") if part) or project_id


def bump_version(version: str) -> str:
    """Increment the patch component of a semver string."""
    match = SEMVER.match(version or "")
    if not match:
        raise ValidationError(
            f"Cannot derive next version from \"{version}\"",
            errors=["version must follow semver format (x.y.z)"],
        )
    major, minor, patch, _ = match.groups()
    return f"{major}.{minor}.{int(patch) + 1}"


def port_variable(service_name: str) -> str:
    """Environment variable compose uses for a service's host port."""
    return "SITEFORGE_" + re.sub(r"[^A-Z0-9]", "_", service_name.upper()) + "_PORT"


def _require_deployment(project: Project) -> DeploymentRecord:
    if project.deployment is None:
        raise ValidationError(
            f"Project '{project.id}' has no deployment record",
            errors=["deployment is required in state " + project.state.name],
        )
    return project.deployment


def _owned_ports_only(spec: DeploymentSpec, owned: list[int]) -> DeploymentSpec:
    """Drop host ports the project no longer holds; they are only preferences now."""
    services = tuple(
        s if s.host_port is None or s.host_port in owned else s.with_host_port(None)
        for s in spec.services
    )
    return replace(spec, services=services)


class ArtifactGenerator:
    """Builds the artifact for each action."""

    def __init__(self, runtime: Optional[RuntimeConfig] = None, templates: Optional[TemplateStore] = None) -> None:
        self.runtime = runtime or RuntimeConfig()
        self.templates = templates or TemplateStore()
        self._generators: dict[Action, Callable[[LoadedContext, dict[str, Any]], Artifact]] = {
            Action.CREATE: self._create,
            Action.EDIT: self._edit,
            Action.BUILD: self._build,
            Action.REVERT: self._revert,
            Action.DEPLOY: self._deploy,
            Action.START: self._start,
            Action.STOP: self._stop,
            Action.UPDATE: self._update,
            Action.DELETE: self._delete,
        }

    def generate(
        self,
        action: Action,
        context: LoadedContext,
        config: Optional[dict[str, Any]] = None,
    ) -> Artifact:
        """
        Generate the artifact for ``action``.

        Args:
            action: Action being executed
            context: Output of the loader
            config: Caller-supplied options

        Returns:
            Artifact whose ``project`` is the candidate document

        Raises:
            ValidationError: If the inputs cannot produce a valid artifact
        """
        artifact = self._generators[action](context, dict(config or {}))
        logger.debug("artifact_generated", project_id=context.project_id, action=action.name)
        return artifact

    def _current(self, context: LoadedContext) -> Project:
        if context.project is None:
            raise ValidationError(f"Project '{context.project_id}' is not loaded")
        return context.project.evolve()

    def _create(self, context: LoadedContext, config: dict[str, Any]) -> ProjectArtifact:
        if not is_valid_project_id(context.project_id):
            raise ValidationError(
                f"Invalid project id: {context.project_id!r}",
                errors=[f"Project.id \"{context.project_id}\" must match ^[a-z0-9-]+$"],
            )

        document = copy.deepcopy(context.template_document or {})
        name = str(config.get("name") or "").strip() or title_from_id(context.project_id)
        pages = [Page.from_dict(page) for page in document.get("pages") or []]

        metadata = dict(document.get("metadata") or {})
        metadata.update(config.get("metadata") or {})
        if context.fallback_used:
            metadata["requestedTemplate"] = context.requested_template

        project = Project(
            id=context.project_id,
            name=name,
            state=ProjectState.VOID,
            version="1.0.0",
            description=str(config.get("description", document.get("description", ""))),
            pages=pages or [default_home_page()],
            created=context.now,
            last_modified=None,
            template=TemplateRef(
                id=context.template_id or "empty",
                name=document.get("name", context.template_id or "Empty Project"),
                version=document.get("version", "1.0.0"),
                fallback=context.fallback_used,
            ),
            metadata=metadata,
        )
        return ProjectArtifact(action=Action.CREATE, project=project, changes=["created"])

    def _edit(self, context: LoadedContext, config: dict[str, Any]) -> ProjectArtifact:
        project = self._current(context)
        changes = []

        if "name" in config:
            project.name = str(config["name"]).strip()
            changes.append("name")
        if "description" in config:
            project.description = str(config["description"])
            changes.append("description")
        if "metadata" in config:
            project.metadata.update(config["metadata"] or {})
            changes.append("metadata")
        if "pages" in config:
            pages = config["pages"]
            if not isinstance(pages, list):
                raise ValidationError("EDIT pages must be a list", errors=["pages must be an array"])
            project.pages = [Page.from_dict(page) for page in pages]
            changes.append("pages")

        return ProjectArtifact(action=Action.EDIT, project=project, changes=changes)

    def _build(self, context: LoadedContext, config: dict[str, Any]) -> ProjectArtifact:
        project = self._current(context)
        usage = summarize_usage(project)
        production = bool(config.get("production", True))

        project.build = BuildInfo(
            build_id=config.get("build_id") or f"{project.id}-{context.now:%Y%m%d%H%M%S}",
            built_at=context.now,
            targets=list(config.get("targets") or self.runtime.targets),
            production=production,
            minify=bool(config.get("minify", production)),
            used_components=usage.components,
            used_containers=usage.containers,
            element_count=usage.element_count,
        )
        return ProjectArtifact(action=Action.BUILD, project=project, changes=["build"])

    def _revert(self, context: LoadedContext, config: dict[str, Any]) -> ProjectArtifact:
        project = self._current(context)
        if project.build is not None:
            project.metadata["lastRevertedBuild"] = project.build.build_id
        project.build = None
        return ProjectArtifact(action=Action.REVERT, project=project, changes=["build"])

    def _deploy(self, context: LoadedContext, config: dict[str, Any]) -> DeploymentArtifact:
        project = self._current(context)
        if project.build is None:
            raise ValidationError(
                f"Project '{project.id}' has no build manifest",
                errors=["build is required to deploy"],
            )

        names = ResourceNames(self.runtime.name_prefix, project.id)
        image = config.get("image") or self.runtime.image
        node_env = "production" if project.build.production else "development"

        services = tuple(
            ServiceSpec(
                name=target,
                container_name=names.container(target),
                image=image,
                container_port=self.runtime.container_port,
                environment={
                    "NODE_ENV": node_env,
                    "SITEFORGE_BUILD": project.build.build_id,
                    "SITEFORGE_PROJECT": project.id,
                    "SITEFORGE_TARGET": target,
                },
                labels={PROJECT_LABEL: project.id},
            )
            for target in project.build.targets
        )
        spec = DeploymentSpec(
            project_id=project.id,
            network=names.network,
            volume=names.volume,
            services=services,
        )

        variables = {
            "project_id": project.id,
            "project_name": project.name,
            "build_id": project.build.build_id,
            "network": spec.network,
            "volume": spec.volume,
            "mount_path": self.runtime.content_mount,
            "services": [
                {**service.to_dict(), "host_port_expr": "${" + port_variable(service.name) + "}"}
                for service in services
            ],
        }
        source = context.compose_source or self.templates.compose_source()
        try:
            compose = self.templates.render_string(source, variables)
        except TemplateError as e:
            raise ValidationError(
                f"Compose template could not be rendered: {e}",
                errors=[str(e)],
            ) from e

        project.deployment = DeploymentRecord(
            network=spec.network,
            volume=spec.volume,
            services=list(services),
            deployed_at=context.now,
        )
        return DeploymentArtifact(
            action=Action.DEPLOY,
            project=project,
            spec=spec,
            compose=compose,
            compose_source=source,
            compose_variables=variables,
        )

    def _start(self, context: LoadedContext, config: dict[str, Any]) -> StartPlan:
        project = self._current(context)
        record = _require_deployment(project)
        return StartPlan(
            action=Action.START,
            project=project,
            spec=_owned_ports_only(spec_from_record(project.id, record), context.owned_ports),
            preferred_ports=record.ports,
            health_path=config.get("health_path") or self.runtime.health_path,
        )

    def _stop(self, context: LoadedContext, config: dict[str, Any]) -> StopPlan:
        project = self._current(context)
        record = _require_deployment(project)
        ports = sorted(set(record.ports) | set(context.owned_ports))
        return StopPlan(
            action=Action.STOP,
            project=project,
            spec=spec_from_record(project.id, record),
            ports=ports,
        )

    def _update(self, context: LoadedContext, config: dict[str, Any]) -> UpdatePlan:
        project = self._current(context)
        record = _require_deployment(project)

        strategy = config.get("strategy") or "rolling"
        if strategy not in UPDATE_STRATEGIES:
            raise ValidationError(
                f"Unknown update strategy: {strategy}",
                errors=[f"strategy must be one of: {', '.join(UPDATE_STRATEGIES)}"],
            )

        previous = _owned_ports_only(spec_from_record(project.id, record), context.owned_ports)
        image = config.get("image")
        services = tuple(s.with_image(image) if image else s for s in previous.services)
        next_version = config.get("version") or bump_version(project.version)
        previous_version = project.version

        project.version = next_version
        project.deployment = DeploymentRecord(
            network=record.network,
            volume=record.volume,
            services=list(services),
            deployed_at=record.deployed_at,
            updated_at=context.now,
            strategy=strategy,
        )
        return UpdatePlan(
            action=Action.UPDATE,
            project=project,
            strategy=strategy,
            previous_version=previous_version,
            next_version=next_version,
            previous=previous,
            spec=DeploymentSpec(
                project_id=project.id,
                network=record.network,
                volume=record.volume,
                services=services,
            ),
            restart=context.state is ProjectState.ONLINE,
        )

    def _delete(self, context: LoadedContext, config: dict[str, Any]) -> DeletePlan:
        project = self._current(context)
        spec = spec_from_record(project.id, project.deployment) if project.deployment else None
        was_running = context.state is ProjectState.ONLINE or bool(
            context.runtime_status and context.runtime_status.running
        )
        return DeletePlan(
            action=Action.DELETE,
            project=project,
            spec=spec,
            ports=sorted(set(context.owned_ports) | set(spec.host_ports if spec else [])),
            was_running=was_running,
        )
