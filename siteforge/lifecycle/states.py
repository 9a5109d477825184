"""Lifecycle states, actions and the transition table."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional, Union


class ProjectState(Enum):
    """States a project moves through."""

    # No record exists
    VOID = auto()

    # Editable source document
    DRAFT = auto()

    # Build manifest produced
    BUILT = auto()

    # Runtime resources exist, containers not serving
    OFFLINE = auto()

    # Containers serving traffic
    ONLINE = auto()

    def has_record(self) -> bool:
        """Check if a persisted project document exists in this state."""
        return self is not ProjectState.VOID

    def is_deployed(self) -> bool:
        """Check if runtime resources are expected to exist."""
        return self in (ProjectState.OFFLINE, ProjectState.ONLINE)

    @classmethod
    def parse(cls, value: Union[str, "ProjectState"]) -> "ProjectState":
        if isinstance(value, cls):
            return value
        try:
            return cls[str(value).strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown project state: {value!r}") from None


class Action(Enum):
    """Actions that request a state change."""

    CREATE = auto()
    EDIT = auto()
    BUILD = auto()
    REVERT = auto()
    DEPLOY = auto()
    START = auto()
    STOP = auto()
    UPDATE = auto()
    DELETE = auto()

    @classmethod
    def parse(cls, value: Union[str, "Action"]) -> "Action":
        if isinstance(value, cls):
            return value
        try:
            return cls[str(value).strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown action: {value!r}") from None


# The closed set of legal edges. DELETE leads to VOID, which removes the record.
TRANSITIONS: dict[ProjectState, dict[Action, ProjectState]] = {
    ProjectState.VOID: {
        Action.CREATE: ProjectState.DRAFT,
    },
    ProjectState.DRAFT: {
        Action.EDIT: ProjectState.DRAFT,
        Action.BUILD: ProjectState.BUILT,
        Action.DELETE: ProjectState.VOID,
    },
    ProjectState.BUILT: {
        Action.REVERT: ProjectState.DRAFT,
        Action.DEPLOY: ProjectState.OFFLINE,
        Action.DELETE: ProjectState.VOID,
    },
    ProjectState.OFFLINE: {
        Action.START: ProjectState.ONLINE,
        Action.UPDATE: ProjectState.OFFLINE,
        Action.DELETE: ProjectState.VOID,
    },
    ProjectState.ONLINE: {
        Action.STOP: ProjectState.OFFLINE,
        Action.UPDATE: ProjectState.ONLINE,
        Action.DELETE: ProjectState.VOID,
    },
}

# Actions that touch the container runtime
RUNTIME_ACTIONS = frozenset(
    {Action.DEPLOY, Action.START, Action.STOP, Action.UPDATE, Action.DELETE}
)


@dataclass(frozen=True)
class TransitionDecision:
    """Outcome of a legality check."""

    state: ProjectState
    action: Action
    allowed: bool
    target_state: Optional[ProjectState] = None

    def to_dict(self) -> dict:
        return {
            "state": self.state.name,
            "action": self.action.name,
            "allowed": self.allowed,
            "target_state": self.target_state.name if self.target_state else None,
        }
