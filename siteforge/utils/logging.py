"""Structured JSON logging utility with correlation and transition context."""

from __future__ import annotations

import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

import structlog

# Context variables propagated into every log event
correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")
project_id_var: ContextVar[str] = ContextVar("project_id", default="")
action_var: ContextVar[str] = ContextVar("action", default="")
stage_var: ContextVar[str] = ContextVar("stage", default="")


def get_correlation_id() -> str:
    """Get the current correlation ID, generating one if not set."""
    cid = correlation_id_var.get()
    if not cid:
        cid = str(uuid.uuid4())[:8]
        correlation_id_var.set(cid)
    return cid


def set_correlation_id(cid: str) -> None:
    """Set the correlation ID for the current context."""
    correlation_id_var.set(cid)


def set_transition_context(project_id: str, action: str = "") -> None:
    """Bind the project and action of the transition running in this context."""
    project_id_var.set(project_id)
    action_var.set(action)
    stage_var.set("")


def clear_transition_context() -> None:
    """Drop project, action and stage from the current context."""
    project_id_var.set("")
    action_var.set("")
    stage_var.set("")


def set_stage(stage: str) -> None:
    """Set the current pipeline stage."""
    stage_var.set(stage)


def add_context_info(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Add correlation ID and transition context to log events."""
    cid = correlation_id_var.get()
    if cid:
        event_dict["correlation_id"] = cid

    project_id = project_id_var.get()
    if project_id:
        event_dict.setdefault("project_id", project_id)

    action = action_var.get()
    if action:
        event_dict.setdefault("action", action)

    stage = stage_var.get()
    if stage:
        event_dict.setdefault("stage", stage)

    return event_dict


def add_timestamp(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Add ISO format timestamp to log events."""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def configure_logging(
    level: str = "info",
    format_type: str = "json",
    stream: Any = None,
) -> None:
    """
    Configure structured logging for the application.

    Args:
        level: Log level (debug, info, warn, error)
        format_type: Output format ('json' or 'text')
        stream: Output stream (default: sys.stderr)
    """
    if stream is None:
        stream = sys.stderr

    level_map = {
        "debug": logging.DEBUG,
        "info": logging.INFO,
        "warn": logging.WARNING,
        "warning": logging.WARNING,
        "error": logging.ERROR,
    }
    log_level = level_map.get(level.lower(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=stream,
        level=log_level,
    )

    processors: list[structlog.types.Processor] = [
        structlog.stdlib.add_log_level,
        add_timestamp,
        add_context_info,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if format_type == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(stream),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """
    Get a configured logger instance.

    Args:
        name: Optional logger name for context

    Returns:
        Configured structlog logger
    """
    # Initial values keep the proxy lazy, so reconfiguring later still applies
    if name:
        return structlog.get_logger(logger_name=name)
    return structlog.get_logger()


def log_stage_timing(stage: str, duration_seconds: float, **fields: Any) -> None:
    """Log timing information for a pipeline stage."""
    logger = get_logger("timing")
    logger.debug(
        "stage_timing",
        stage=stage,
        duration_seconds=round(duration_seconds, 3),
        **fields,
    )


# Initialize with defaults on import
configure_logging()
