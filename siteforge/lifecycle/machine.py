"""State machine enforcing the transition table."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from siteforge.errors import IllegalTransitionError
from siteforge.lifecycle.states import TRANSITIONS, Action, ProjectState, TransitionDecision
from siteforge.models.project import Project
from siteforge.utils.logging import get_logger

logger = get_logger("lifecycle.machine")

Clock = Callable[[], datetime]

# Smallest step lastModified advances by when the clock has not moved
_TICK = timedelta(microseconds=1)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class StateMachine:
    """
    Authoritative transition-legality table.

    The machine is pure: it answers legality questions and computes the next
    project value, but never persists or touches runtime resources.
    """

    def __init__(
        self,
        transitions: Optional[dict[ProjectState, dict[Action, ProjectState]]] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        """
        Initialize the state machine.

        Args:
            transitions: Transition table (defaults to TRANSITIONS)
            clock: Source of "now" for lastModified stamps
        """
        self.transitions = transitions if transitions is not None else TRANSITIONS
        self.clock = clock or utc_now

    def can_transition(self, state: ProjectState, action: Action) -> TransitionDecision:
        """Check whether ``action`` is legal from ``state``."""
        target = self.transitions.get(state, {}).get(action)
        return TransitionDecision(
            state=state,
            action=action,
            allowed=target is not None,
            target_state=target,
        )

    def require(
        self,
        state: ProjectState,
        action: Action,
        project_id: Optional[str] = None,
    ) -> ProjectState:
        """
        Return the target state, or raise if the edge does not exist.

        Raises:
            IllegalTransitionError: If the action is not legal from state
        """
        decision = self.can_transition(state, action)
        if not decision.allowed:
            logger.info(
                "transition_rejected",
                project_id=project_id,
                state=state.name,
                action=action.name,
            )
            raise IllegalTransitionError(state, action, project_id=project_id)
        return decision.target_state

    def available_actions(self, state: ProjectState) -> list[Action]:
        """Actions a UI may offer for a project in ``state``."""
        return list(self.transitions.get(state, {}))

    def apply_transition(
        self,
        project: Project,
        action: Action,
        now: Optional[datetime] = None,
    ) -> Project:
        """
        Compute the project value after ``action``.

        The returned project is a new object; the input is left untouched.
        ``last_modified`` always moves forward, even if the clock does not.

        Args:
            project: Project in its current state
            action: Action being committed
            now: Timestamp to stamp (defaults to the machine clock)

        Returns:
            New Project in the target state

        Raises:
            IllegalTransitionError: If the action is not legal
        """
        target = self.require(project.state, action, project_id=project.id)

        stamp = now or self.clock()
        if project.last_modified is not None and stamp <= project.last_modified:
            stamp = project.last_modified + _TICK

        return project.evolve(state=target, last_modified=stamp)
