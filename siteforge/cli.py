"""CLI entry point for siteforge."""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Optional

import click

from siteforge import __version__
from siteforge.config.settings import OrchestratorSettings, load_settings
from siteforge.errors import (
    AllocationError,
    ConcurrentTransitionError,
    IllegalTransitionError,
    PersistenceError,
    ProjectNotFoundError,
    RollbackFailedError,
    RuntimeAdapterError,
    SiteForgeError,
    StageTimeoutError,
    TransitionCancelledError,
    ValidationError,
)
from siteforge.lifecycle.coordinator import WorkflowCoordinator
from siteforge.lifecycle.guards import run_guards
from siteforge.lifecycle.machine import StateMachine
from siteforge.lifecycle.states import RUNTIME_ACTIONS, Action, ProjectState
from siteforge.models.artifacts import UPDATE_STRATEGIES
from siteforge.models.transitions import TransitionResult
from siteforge.pipeline.templates import TemplateStore
from siteforge.registry.allocations import AllocationLedger
from siteforge.registry.projects import ProjectRegistry
from siteforge.runtime.base import ContainerRuntimeAdapter
from siteforge.runtime.docker import DockerRuntimeAdapter
from siteforge.runtime.ports import PortAllocator
from siteforge.utils.logging import configure_logging, get_logger
from siteforge.utils.result import ExitCode

# Default paths
DEFAULT_CONFIG = "./config"
LEDGER_FILE = "allocations.json"

# Most specific first: ResourceConflictError is an AllocationError
EXIT_CODES: list[tuple[type[SiteForgeError], int]] = [
    (IllegalTransitionError, ExitCode.ILLEGAL_TRANSITION),
    (ConcurrentTransitionError, ExitCode.CONCURRENT_TRANSITION),
    (ValidationError, ExitCode.VALIDATION_FAILED),
    (AllocationError, ExitCode.ALLOCATION_FAILED),
    (RuntimeAdapterError, ExitCode.RUNTIME_FAILED),
    (StageTimeoutError, ExitCode.STAGE_TIMEOUT),
    (TransitionCancelledError, ExitCode.CANCELLED),
    (ProjectNotFoundError, ExitCode.PROJECT_NOT_FOUND),
    (PersistenceError, ExitCode.PERSISTENCE_FAILED),
    (RollbackFailedError, ExitCode.ROLLBACK_FAILED),
]


def exit_code_for(error: Optional[BaseException]) -> int:
    for error_type, code in EXIT_CODES:
        if isinstance(error, error_type):
            return code
    return ExitCode.GENERAL_ERROR


def create_runtime(settings: OrchestratorSettings, ledger: AllocationLedger) -> ContainerRuntimeAdapter:
    """Build the container runtime adapter for the configured host."""
    return DockerRuntimeAdapter(
        ledger,
        bind_host=settings.ports.host,
        memory_limit=settings.runtime.memory_limit,
        content_mount=settings.runtime.content_mount,
        stop_timeout=settings.timeouts.container_stop,
    )


def create_port_allocator(settings: OrchestratorSettings, ledger: AllocationLedger) -> PortAllocator:
    """Build the port allocator over the configured range."""
    return PortAllocator(
        ledger,
        host=settings.ports.host,
        range_start=settings.ports.range_start,
        range_end=settings.ports.range_end,
    )


class Context:
    """CLI context for sharing state between commands."""

    def __init__(
        self,
        settings: OrchestratorSettings,
        log_level: str,
        log_format: str,
        dry_run: bool,
        timeout: Optional[float],
    ) -> None:
        self.settings = settings
        self.log_level = log_level
        self.log_format = log_format
        self.dry_run = dry_run
        self.timeout = timeout
        self.logger = get_logger("cli")

    @property
    def data_dir(self) -> Path:
        return self.settings.paths.data_dir

    def registry(self) -> ProjectRegistry:
        return ProjectRegistry(self.data_dir)

    def build_coordinator(self) -> WorkflowCoordinator:
        ledger = AllocationLedger(self.data_dir / LEDGER_FILE)
        return WorkflowCoordinator(
            self.registry(),
            create_runtime(self.settings, ledger),
            create_port_allocator(self.settings, ledger),
            settings=self.settings,
        )


pass_context = click.make_pass_decorator(Context)


def output_json(data: dict) -> None:
    """Output JSON to stdout."""
    click.echo(json.dumps(data, indent=2, default=str))


def fail(data: dict, code: int) -> None:
    """Output an error document and exit."""
    output_json({"status": "error", **data})
    sys.exit(code)


async def _execute(
    ctx: Context,
    project_id: str,
    action: Action,
    config: dict[str, Any],
) -> TransitionResult:
    async with ctx.build_coordinator() as coordinator:
        return await coordinator.execute(project_id, action, config, timeout=ctx.timeout)


def run_action(
    ctx: Context,
    action: Action,
    project_id: str,
    config: Optional[dict[str, Any]] = None,
    skip_guards: bool = False,
) -> None:
    """Run one lifecycle action and report the result."""
    config = {k: v for k, v in (config or {}).items() if v is not None}
    ctx.logger.info("command_started", action=action.name, project_id=project_id)

    if ctx.dry_run:
        try:
            project = ctx.registry().get(project_id)
        except SiteForgeError as e:
            fail({"error": e.error_type, "message": e.message}, exit_code_for(e))
        state = project.state if project else ProjectState.VOID
        decision = StateMachine().can_transition(state, action)
        output_json({
            "status": "dry_run",
            "project_id": project_id,
            "config": config,
            **decision.to_dict(),
        })
        return

    if action in RUNTIME_ACTIONS and not skip_guards:
        guard_result = run_guards(ctx.settings)
        if guard_result.is_err():
            error = guard_result.unwrap_err()
            fail({"error": "guard_failed", **error.to_dict()}, error.code)

    result = asyncio.run(_execute(ctx, project_id, action, config))

    if not result.success:
        fail(result.to_dict(), exit_code_for(result.error))

    output_json({"status": "success", **result.to_dict()})


def _parse_metadata(pairs: tuple[str, ...]) -> Optional[dict[str, str]]:
    if not pairs:
        return None
    metadata = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got {pair!r}", param_hint="--meta")
        metadata[key.strip()] = value
    return metadata


skip_guards_option = click.option(
    "--skip-guards",
    is_flag=True,
    default=False,
    help="Don't run pre-flight checks (docker daemon, data directory)",
)


@click.group()
@click.option(
    "--config",
    type=click.Path(exists=False, path_type=Path),
    default=DEFAULT_CONFIG,
    help="Path to config directory",
)
@click.option(
    "--data-dir",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Override the data directory",
)
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warn", "error"], case_sensitive=False),
    default=None,
    help="Logging level (defaults to the configured level)",
)
@click.option(
    "--log-format",
    type=click.Choice(["json", "text"], case_sensitive=False),
    default=None,
    help="Log format (defaults to the configured format)",
)
@click.option(
    "--dry-run",
    is_flag=True,
    default=False,
    help="Check transition legality without executing",
)
@click.option(
    "--timeout",
    type=float,
    default=None,
    help="Per-stage timeout in seconds",
)
@click.version_option(version=__version__)
@click.pass_context
def cli(
    ctx: click.Context,
    config: Path,
    data_dir: Optional[Path],
    log_level: Optional[str],
    log_format: Optional[str],
    dry_run: bool,
    timeout: Optional[float],
) -> None:
    """
    SiteForge - project lifecycle orchestrator.

    Moves website projects through DRAFT, BUILT, OFFLINE and ONLINE,
    provisioning containers, networks, volumes and ports on the way.
    """
    result = load_settings(config)
    if result.is_err():
        configure_logging()
        error = result.unwrap_err()
        fail({"error": "config_invalid", **error.to_dict()}, ExitCode.CONFIG_INVALID)
    settings = result.unwrap()

    if data_dir is not None:
        settings = settings.with_data_dir(data_dir)

    log_level = log_level or settings.logging.level
    log_format = log_format or settings.logging.format
    configure_logging(level=log_level, format_type=log_format)

    ctx.obj = Context(
        settings=settings,
        log_level=log_level,
        log_format=log_format,
        dry_run=dry_run,
        timeout=timeout,
    )


@cli.command()
@click.argument("project_id")
@click.option("--name", default=None, help="Display name (derived from the id if omitted)")
@click.option("--template", default=None, help="Project template id")
@click.option("--description", default=None, help="Project description")
@click.option("--meta", "meta", multiple=True, help="Metadata KEY=VALUE (can be repeated)")
@pass_context
def create(
    ctx: Context,
    project_id: str,
    name: Optional[str],
    template: Optional[str],
    description: Optional[str],
    meta: tuple[str, ...],
) -> None:
    """Create a project from a template."""
    run_action(ctx, Action.CREATE, project_id, {
        "name": name,
        "template": template,
        "description": description,
        "metadata": _parse_metadata(meta),
    })


@cli.command()
@click.argument("project_id")
@click.option("--name", default=None, help="New display name")
@click.option("--description", default=None, help="New description")
@click.option(
    "--pages",
    "pages_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="JSON file holding the new pages array",
)
@click.option("--meta", "meta", multiple=True, help="Metadata KEY=VALUE (can be repeated)")
@pass_context
def edit(
    ctx: Context,
    project_id: str,
    name: Optional[str],
    description: Optional[str],
    pages_file: Optional[Path],
    meta: tuple[str, ...],
) -> None:
    """Edit a draft project."""
    pages = None
    if pages_file is not None:
        try:
            pages = json.loads(pages_file.read_text())
        except json.JSONDecodeError as e:
            raise click.BadParameter(f"invalid JSON: {e}", param_hint="--pages")

    run_action(ctx, Action.EDIT, project_id, {
        "name": name,
        "description": description,
        "pages": pages,
        "metadata": _parse_metadata(meta),
    })


@cli.command()
@click.argument("project_id")
@click.option("--target", "targets", multiple=True, help="Build target (can be repeated)")
@click.option("--development", is_flag=True, default=False, help="Non-production build")
@pass_context
def build(ctx: Context, project_id: str, targets: tuple[str, ...], development: bool) -> None:
    """Produce the build manifest of a draft."""
    run_action(ctx, Action.BUILD, project_id, {
        "targets": list(targets) or None,
        "production": not development,
    })


@cli.command()
@click.argument("project_id")
@pass_context
def revert(ctx: Context, project_id: str) -> None:
    """Discard the build and return to DRAFT."""
    run_action(ctx, Action.REVERT, project_id)


@cli.command()
@click.argument("project_id")
@click.option("--image", default=None, help="Container image (defaults to runtime.image)")
@skip_guards_option
@pass_context
def deploy(ctx: Context, project_id: str, image: Optional[str], skip_guards: bool) -> None:
    """Provision network, volume, ports and containers."""
    run_action(ctx, Action.DEPLOY, project_id, {"image": image}, skip_guards)


@cli.command()
@click.argument("project_id")
@click.option("--health-path", default=None, help="HTTP path polled after start")
@skip_guards_option
@pass_context
def start(ctx: Context, project_id: str, health_path: Optional[str], skip_guards: bool) -> None:
    """Start the containers of a deployed project."""
    run_action(ctx, Action.START, project_id, {"health_path": health_path}, skip_guards)


@cli.command()
@click.argument("project_id")
@skip_guards_option
@pass_context
def stop(ctx: Context, project_id: str, skip_guards: bool) -> None:
    """Stop the containers of a running project."""
    run_action(ctx, Action.STOP, project_id, skip_guards=skip_guards)


@cli.command()
@click.argument("project_id")
@click.option(
    "--strategy",
    type=click.Choice(UPDATE_STRATEGIES),
    default="rolling",
    help="Container replacement strategy",
)
@click.option("--image", default=None, help="New container image")
@click.option("--version", "version", default=None, help="New version (patch bump if omitted)")
@skip_guards_option
@pass_context
def update(
    ctx: Context,
    project_id: str,
    strategy: str,
    image: Optional[str],
    version: Optional[str],
    skip_guards: bool,
) -> None:
    """Replace the deployed containers with a new version."""
    run_action(ctx, Action.UPDATE, project_id, {
        "strategy": strategy,
        "image": image,
        "version": version,
    }, skip_guards)


@cli.command()
@click.argument("project_id")
@click.confirmation_option(prompt="Delete the project and all of its runtime resources?")
@skip_guards_option
@pass_context
def delete(ctx: Context, project_id: str, skip_guards: bool) -> None:
    """Tear down runtime resources and remove the project."""
    run_action(ctx, Action.DELETE, project_id, skip_guards=skip_guards)


@cli.command()
@click.argument("project_id")
@pass_context
def status(ctx: Context, project_id: str) -> None:
    """Show a project, its runtime status and the actions available."""

    async def describe() -> dict[str, Any]:
        async with ctx.build_coordinator() as coordinator:
            return await coordinator.describe(project_id)

    try:
        data = asyncio.run(describe())
    except SiteForgeError as e:
        fail({"error": e.error_type, **e.to_dict()}, exit_code_for(e))

    output_json({"status": "success", **data})


@cli.command(name="list")
@pass_context
def list_projects(ctx: Context) -> None:
    """List projects and their states."""
    registry = ctx.registry()
    projects = []
    for project_id in registry.list_ids():
        project = registry.get(project_id)
        if project is None:
            continue
        projects.append({
            "id": project.id,
            "name": project.name,
            "state": project.state.name,
            "version": project.version,
        })

    output_json({"status": "success", "count": len(projects), "projects": projects})


@cli.command()
@click.argument("project_id", required=False)
@click.option("--state", default=None, help="Show actions for a state instead of a project")
@pass_context
def actions(ctx: Context, project_id: Optional[str], state: Optional[str]) -> None:
    """Show the actions available to a project (or from a state)."""
    if state is not None:
        try:
            current = ProjectState.parse(state)
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint="--state")
    elif project_id is not None:
        try:
            project = ctx.registry().get(project_id)
        except SiteForgeError as e:
            fail({"error": e.error_type, "message": e.message}, exit_code_for(e))
        current = project.state if project else ProjectState.VOID
    else:
        raise click.UsageError("Give a PROJECT_ID or --state")

    output_json({
        "status": "success",
        "project_id": project_id,
        "state": current.name,
        "actions": [a.name for a in StateMachine().available_actions(current)],
    })


@cli.command()
@pass_context
def templates(ctx: Context) -> None:
    """List available project templates."""
    store = TemplateStore(ctx.settings.paths.templates_dir)
    output_json({"status": "success", "templates": store.list_templates()})


def main() -> None:
    """Main entry point."""
    try:
        cli()
    except Exception as e:
        logger = get_logger("cli")
        logger.error("cli_error", error=str(e))
        sys.exit(2)


if __name__ == "__main__":
    main()
