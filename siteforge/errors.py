"""Error taxonomy for lifecycle transitions.

Every error raised inside a transition pipeline derives from SiteForgeError
and carries the project id, the action and the pipeline stage it happened
in, so that callers (CLI, API, notification sinks) can report it without
digging through tracebacks.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence


def _label(value: Any) -> Optional[str]:
    """Render enums by name and everything else as-is."""
    if value is None:
        return None
    return getattr(value, "name", str(value))


class SiteForgeError(Exception):
    """Base class for all orchestrator errors."""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        project_id: Optional[str] = None,
        action: Any = None,
        stage: Optional[str] = None,
        retryable: Optional[bool] = None,
    ) -> None:
        self.message = message
        self.project_id = project_id
        self.action = _label(action)
        self.stage = stage
        if retryable is not None:
            self.retryable = retryable
        super().__init__(message)

    def with_context(
        self,
        project_id: Optional[str] = None,
        action: Any = None,
        stage: Optional[str] = None,
    ) -> "SiteForgeError":
        """Fill in context fields that are still unset and return self."""
        if self.project_id is None:
            self.project_id = project_id
        if self.action is None:
            self.action = _label(action)
        if self.stage is None:
            self.stage = stage
        return self

    @property
    def error_type(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "type": self.error_type,
            "message": self.message,
            "project_id": self.project_id,
            "action": self.action,
            "stage": self.stage,
            "retryable": self.retryable,
        }

    def __str__(self) -> str:
        where = ", ".join(
            f"{key}={value}"
            for key, value in (
                ("project", self.project_id),
                ("action", self.action),
                ("stage", self.stage),
            )
            if value
        )
        return f"{self.message} ({where})" if where else self.message


class IllegalTransitionError(SiteForgeError):
    """Requested action is not allowed from the project's current state."""

    def __init__(self, state: Any, action: Any, project_id: Optional[str] = None) -> None:
        self.state = _label(state)
        super().__init__(
            f"Invalid transition: {_label(action)} is not allowed from {self.state}",
            project_id=project_id,
            action=action,
            stage="check_transition",
        )

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["state"] = self.state
        return data


class ConcurrentTransitionError(SiteForgeError):
    """Another transition holds the project's lock."""

    retryable = True

    def __init__(self, project_id: str, action: Any = None) -> None:
        super().__init__(
            f"A transition is already in progress for project '{project_id}'",
            project_id=project_id,
            action=action,
            stage="acquire_lock",
        )


class ValidationError(SiteForgeError):
    """A generated or loaded artifact failed schema or template checks."""

    def __init__(
        self,
        message: str,
        errors: Sequence[str] = (),
        warnings: Sequence[str] = (),
        **kwargs: Any,
    ) -> None:
        self.errors = list(errors)
        self.warnings = list(warnings)
        super().__init__(message, **kwargs)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["errors"] = self.errors
        data["warnings"] = self.warnings
        return data


class AllocationError(SiteForgeError):
    """Ports or other host resources could not be allocated."""

    retryable = True


class ResourceConflictError(AllocationError):
    """A resource is already owned by another project."""

    retryable = False

    def __init__(self, kind: str, name: str, owner: str, project_id: Optional[str] = None) -> None:
        self.kind = kind
        self.name = name
        self.owner = owner
        super().__init__(
            f"{kind} '{name}' is already owned by project '{owner}'",
            project_id=project_id,
        )


class RuntimeAdapterError(SiteForgeError):
    """The container runtime could not satisfy a request."""

    retryable = True


class StageTimeoutError(SiteForgeError):
    """A pipeline stage exceeded its time budget."""

    def __init__(self, stage: str, timeout: float, **kwargs: Any) -> None:
        self.timeout = timeout
        super().__init__(f"Stage '{stage}' timed out after {timeout:g}s", stage=stage, **kwargs)


class TransitionCancelledError(SiteForgeError):
    """The caller cancelled the transition between two stages."""

    def __init__(self, stage: str, **kwargs: Any) -> None:
        super().__init__(f"Transition cancelled before stage '{stage}'", stage=stage, **kwargs)


class RollbackFailedError(SiteForgeError):
    """A compensating action failed; manual intervention is required."""

    def __init__(
        self,
        original: Optional[BaseException],
        failures: Sequence[tuple[str, BaseException]],
        **kwargs: Any,
    ) -> None:
        self.original = original
        self.failures = list(failures)
        names = ", ".join(name for name, _ in self.failures)
        super().__init__(f"Rollback failed for: {names}", retryable=False, **kwargs)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["original_error"] = (
            self.original.to_dict()
            if isinstance(self.original, SiteForgeError)
            else (str(self.original) if self.original else None)
        )
        data["failures"] = [
            {"compensation": name, "error": str(error)} for name, error in self.failures
        ]
        return data


class ProjectNotFoundError(SiteForgeError):
    """No project record exists for the given id."""

    def __init__(self, project_id: str) -> None:
        super().__init__(f"Project not found: {project_id}", project_id=project_id)


class PersistenceError(SiteForgeError):
    """The project registry could not read or write a document."""


class CoordinatorClosedError(SiteForgeError):
    """The coordinator is draining and accepts no new transitions."""

    def __init__(self, project_id: Optional[str] = None, action: Any = None) -> None:
        super().__init__(
            "Coordinator is shut down",
            project_id=project_id,
            action=action,
            stage="admission",
        )
