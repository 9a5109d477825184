"""Result type for explicit error handling.

Configuration loading and pre-flight guards report failures as values
instead of raising, so callers have to decide what a failure means for them.
Transition failures do not use this type: they travel as exceptions inside
the coordinator and come back in a ``TransitionResult``.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Generic, NoReturn, TypeVar, Union

T = TypeVar("T")  # Success type
E = TypeVar("E")  # Error type


class ResultError(Exception):
    """Raised when unwrapping the wrong side of a Result."""

    pass


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Represents a successful result."""

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        return self.value

    def unwrap_err(self) -> NoReturn:
        raise ResultError(f"Called unwrap_err on Ok value: {self.value!r}")


@dataclass(frozen=True)
class Err(Generic[E]):
    """Represents an error result."""

    error: E

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> NoReturn:
        raise ResultError(f"Called unwrap on Err value: {self.error}")

    def unwrap_err(self) -> E:
        return self.error


Result = Union[Ok[T], Err[E]]


@dataclass(frozen=True)
class GuardError:
    """A failed pre-flight check, with the exit code the CLI reports."""

    code: int
    message: str
    details: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


@dataclass(frozen=True)
class ConfigError:
    """Invalid configuration value, named by its dotted field path."""

    field: str
    message: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def __str__(self) -> str:
        return f"Config error in '{self.field}': {self.message}"


class ExitCode:
    """Process exit codes of the siteforge CLI."""

    SUCCESS = 0
    GENERAL_ERROR = 1

    # Setup errors (10-19): nothing was attempted
    CONFIG_INVALID = 10
    GUARD_TEMPLATES_DIR = 11
    GUARD_DOCKER = 12
    GUARD_DATA_DIR = 13

    # Transition errors (20-29): the persisted project is unchanged
    ILLEGAL_TRANSITION = 20
    CONCURRENT_TRANSITION = 21
    VALIDATION_FAILED = 22
    ALLOCATION_FAILED = 23
    RUNTIME_FAILED = 24
    STAGE_TIMEOUT = 25
    CANCELLED = 26
    PROJECT_NOT_FOUND = 27
    PERSISTENCE_FAILED = 28

    # Rollback could not undo every side effect; inspect the runtime by hand
    ROLLBACK_FAILED = 30
