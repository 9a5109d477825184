"""Transition bookkeeping: step records, audit records and results."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from siteforge.errors import SiteForgeError
from siteforge.lifecycle.states import Action, ProjectState


class StepStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class TransitionOutcome(str, Enum):
    """How a transition ended."""

    PENDING = "pending"
    COMMITTED = "committed"
    REJECTED = "rejected"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"
    ROLLBACK_FAILED = "rollback_failed"
    CANCELLED = "cancelled"


@dataclass
class StepRecord:
    """Timing and status of one pipeline stage."""

    name: str
    status: StepStatus = StepStatus.RUNNING
    duration_ms: float = 0.0
    attempts: int = 0
    error: Optional[str] = None
    _started: float = field(default_factory=time.monotonic, repr=False)

    def finish(self, status: StepStatus, error: Optional[str] = None) -> None:
        self.status = status
        self.error = error
        self.duration_ms = round((time.monotonic() - self._started) * 1000, 3)

    @property
    def success(self) -> bool:
        return self.status == StepStatus.COMPLETED

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "duration_ms": self.duration_ms,
            "attempts": self.attempts,
            "error": self.error,
        }


@dataclass
class TransitionRecord:
    """Audit record of one execute call. Never persisted with the project."""

    project_id: str
    action: Optional[Action]
    from_state: Optional[ProjectState] = None
    to_state: Optional[ProjectState] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    steps: list[StepRecord] = field(default_factory=list)
    outcome: TransitionOutcome = TransitionOutcome.PENDING
    compensations: list[str] = field(default_factory=list)

    def step(self, name: str) -> Optional[StepRecord]:
        for step in self.steps:
            if step.name == name:
                return step
        return None

    @property
    def duration_ms(self) -> float:
        if self.finished_at is None:
            return 0.0
        return round((self.finished_at - self.started_at).total_seconds() * 1000, 3)

    def to_dict(self) -> dict[str, Any]:
        return {
            "project_id": self.project_id,
            "action": self.action.name if self.action else None,
            "from_state": self.from_state.name if self.from_state else None,
            "to_state": self.to_state.name if self.to_state else None,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_ms": self.duration_ms,
            "outcome": self.outcome.value,
            "steps": [s.to_dict() for s in self.steps],
            "compensations": list(self.compensations),
        }


@dataclass
class TransitionResult:
    """What execute returns to its caller."""

    success: bool
    project_id: str
    action: Optional[Action]
    new_state: Optional[ProjectState]
    artifacts: dict[str, Any] = field(default_factory=dict)
    error: Optional[SiteForgeError] = None
    record: Optional[TransitionRecord] = None

    @property
    def error_type(self) -> Optional[str]:
        return self.error.error_type if self.error else None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "project_id": self.project_id,
            "action": self.action.name if self.action else None,
            "new_state": self.new_state.name if self.new_state else None,
            "artifacts": self.artifacts,
        }
        if self.error is not None:
            data["error"] = self.error_type
            data["error_detail"] = self.error.to_dict()
        if self.record is not None:
            data["record"] = self.record.to_dict()
        return data
