"""Utility modules for siteforge."""

from siteforge.utils.atomic import (
    AtomicWriteError,
    atomic_write,
    atomic_write_json,
    atomic_write_text,
)
from siteforge.utils.logging import (
    clear_transition_context,
    configure_logging,
    get_correlation_id,
    get_logger,
    log_stage_timing,
    set_correlation_id,
    set_stage,
    set_transition_context,
)
from siteforge.utils.result import ConfigError, Err, ExitCode, GuardError, Ok, Result

__all__ = [
    # Logging
    "configure_logging",
    "get_logger",
    "get_correlation_id",
    "set_correlation_id",
    "set_transition_context",
    "clear_transition_context",
    "set_stage",
    "log_stage_timing",
    # Atomic writes
    "AtomicWriteError",
    "atomic_write",
    "atomic_write_json",
    "atomic_write_text",
    # Result
    "Ok",
    "Err",
    "Result",
    "ConfigError",
    "GuardError",
    "ExitCode",
]
