"""Pre-flight guards - precondition checks that fail fast on critical issues.

Guards run before a runtime action is handed to the coordinator. If one
fails, the command exits immediately with a clear message and exit code
instead of failing halfway through a transition.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

import docker
from docker.errors import DockerException

from siteforge.config.settings import OrchestratorSettings
from siteforge.pipeline.templates import COMPOSE_TEMPLATE
from siteforge.utils.logging import get_logger
from siteforge.utils.result import Err, ExitCode, GuardError, Ok, Result

logger = get_logger("lifecycle.guards")


@dataclass
class GuardContext:
    """Context for guard checks."""

    settings: OrchestratorSettings
    require_docker: bool = True
    require_templates: bool = True


class PreflightGuards:
    """
    Precondition checks for lifecycle commands.

    Each guard returns a Result - Ok(None) if the check passes,
    Err(GuardError) if it fails.
    """

    def __init__(
        self,
        context: GuardContext,
        docker_factory: Optional[Callable[[], Any]] = None,
    ) -> None:
        """
        Initialize guards with context.

        Args:
            context: Guard context with settings and requirements
            docker_factory: Builds a docker client (defaults to docker.from_env)
        """
        self.context = context
        self.docker_factory = docker_factory or docker.from_env

    def check_all(self) -> Result[None, GuardError]:
        """
        Run all precondition checks.

        Returns:
            Result indicating success or first failure
        """
        logger.info("running_guards")

        result = self.check_data_dir_writable(self.context.settings.paths.data_dir)
        if result.is_err():
            return result

        templates_dir = self.context.settings.paths.templates_dir
        if self.context.require_templates and templates_dir:
            result = self.check_templates_dir(templates_dir)
            if result.is_err():
                return result

        if self.context.require_docker:
            result = self.check_docker_available()
            if result.is_err():
                return result

        logger.info("guards_passed")
        return Ok(None)

    def check_docker_available(self) -> Result[None, GuardError]:
        """
        Check that the Docker daemon answers.

        Returns:
            Ok(None) if Docker is available, Err(GuardError) otherwise
        """
        try:
            client = self.docker_factory()
            try:
                client.ping()
            finally:
                client.close()
        except DockerException as e:
            error = GuardError(
                code=ExitCode.GUARD_DOCKER,
                message="Cannot connect to Docker daemon",
                details=(
                    f"Docker daemon is not running or not accessible: {e}. "
                    "Start Docker and try again."
                ),
            )
            logger.error("guard_failed", guard="docker", code=error.code, error=str(e))
            return Err(error)

        logger.debug("guard_passed", guard="docker")
        return Ok(None)

    def check_templates_dir(self, path: Path) -> Result[Path, GuardError]:
        """
        Check that a custom templates directory has what the pipeline reads.

        Args:
            path: Path to templates directory

        Returns:
            Ok(Path) with resolved path if valid, Err(GuardError) otherwise
        """
        path = Path(path)

        if not path.is_dir():
            error = GuardError(
                code=ExitCode.GUARD_TEMPLATES_DIR,
                message=f"Templates directory not found: {path}",
                details="Point paths.templates_dir at a directory or remove the setting.",
            )
            logger.error("guard_failed", guard="templates_dir", code=error.code, path=str(path))
            return Err(error)

        compose = path / COMPOSE_TEMPLATE
        if not compose.exists():
            error = GuardError(
                code=ExitCode.GUARD_TEMPLATES_DIR,
                message=f"Required template not found: {compose}",
                details="The templates directory must contain the compose template.",
            )
            logger.error("guard_failed", guard="templates_dir", code=error.code, path=str(path))
            return Err(error)

        logger.debug("guard_passed", guard="templates_dir", path=str(path))
        return Ok(path.resolve())

    def check_data_dir_writable(self, path: Path) -> Result[None, GuardError]:
        """
        Check that the data directory is writable.

        Args:
            path: Path to the data directory

        Returns:
            Ok(None) if directory is writable, Err(GuardError) otherwise
        """
        path = Path(path)

        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            error = GuardError(
                code=ExitCode.GUARD_DATA_DIR,
                message=f"Cannot create data directory: {path}",
                details=str(e),
            )
            logger.error("guard_failed", guard="data_dir", code=error.code, path=str(path))
            return Err(error)

        probe = path / ".write_test"
        try:
            probe.write_text("test")
            probe.unlink()
        except OSError as e:
            error = GuardError(
                code=ExitCode.GUARD_DATA_DIR,
                message=f"Data directory is not writable: {path}",
                details=str(e),
            )
            logger.error("guard_failed", guard="data_dir", code=error.code, path=str(path))
            return Err(error)

        logger.debug("guard_passed", guard="data_dir", path=str(path))
        return Ok(None)


def run_guards(
    settings: OrchestratorSettings,
    require_docker: bool = True,
    require_templates: bool = True,
    docker_factory: Optional[Callable[[], Any]] = None,
) -> Result[None, GuardError]:
    """
    Convenience function to run all guards.

    Args:
        settings: Orchestrator settings
        require_docker: Whether the Docker daemon must be reachable
        require_templates: Whether a configured templates directory is checked
        docker_factory: Builds a docker client (defaults to docker.from_env)

    Returns:
        Result indicating success or first guard failure
    """
    context = GuardContext(
        settings=settings,
        require_docker=require_docker,
        require_templates=require_templates,
    )
    return PreflightGuards(context, docker_factory=docker_factory).check_all()
