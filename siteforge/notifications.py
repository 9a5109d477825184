"""Lifecycle event notifications.

Events are delivered to every configured sink in emission order. Delivery
is fire-and-forget: a slow or failing sink is logged and skipped, and never
affects the outcome of the transition that emitted the event.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Sequence

import httpx

from siteforge.config.settings import NotificationConfig
from siteforge.utils.logging import get_correlation_id, get_logger

logger = get_logger("notifications")


class EventType(str, Enum):
    WORKFLOW_STARTED = "workflow_started"
    CALL_PROGRESS = "call_progress"
    WORKFLOW_COMPLETED = "workflow_completed"
    WORKFLOW_FAILED = "workflow_failed"
    PROJECT_STATE_CHANGED = "project_state_changed"


@dataclass
class LifecycleEvent:
    """One notification about a project transition."""

    type: EventType
    project_id: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    correlation_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "project_id": self.project_id,
            "timestamp": self.timestamp.isoformat(),
            "correlation_id": self.correlation_id,
            **self.data,
        }


class EventSink(ABC):
    """Destination for lifecycle events."""

    name = "sink"

    @abstractmethod
    async def deliver(self, event: LifecycleEvent) -> None:
        pass

    async def close(self) -> None:
        pass


class LogSink(EventSink):
    """Writes events to the structured log."""

    name = "log"

    async def deliver(self, event: LifecycleEvent) -> None:
        logger.info("lifecycle_event", **event.to_dict())


class WebhookSink(EventSink):
    """
    POSTs events as JSON to a webhook URL.

    Non-2xx responses raise, which the channel logs.
    """

    name = "webhook"

    def __init__(
        self,
        url: str,
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """
        Initialize the sink.

        Args:
            url: Webhook endpoint
            timeout: Per-request timeout in seconds
            client: Shared HTTP client (one is created lazily otherwise)
        """
        self.url = url
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    async def deliver(self, event: LifecycleEvent) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        response = await self._client.post(self.url, json=event.to_dict())
        response.raise_for_status()
        logger.debug("webhook_delivered", url=self.url, event=event.type.value)

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


class EventChannel:
    """Ordered fan-out of lifecycle events to sinks."""

    def __init__(self, sinks: Optional[Sequence[EventSink]] = None, timeout: float = 5.0) -> None:
        self.sinks: list[EventSink] = list(sinks or [])
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: NotificationConfig, timeout: float = 5.0) -> "EventChannel":
        """Build the channel described by the notifications config section."""
        sinks: list[EventSink] = []
        if config.log_events:
            sinks.append(LogSink())
        if config.webhook_url:
            sinks.append(WebhookSink(config.webhook_url, timeout=timeout))
        return cls(sinks, timeout=timeout)

    def add_sink(self, sink: EventSink) -> None:
        self.sinks.append(sink)

    async def emit(self, event_type: EventType, project_id: str, **data: Any) -> LifecycleEvent:
        """
        Deliver an event to every sink, one after another.

        Args:
            event_type: Kind of event
            project_id: Project the event is about
            **data: Event payload

        Returns:
            The delivered event
        """
        event = LifecycleEvent(
            type=event_type,
            project_id=project_id,
            data=data,
            correlation_id=get_correlation_id(),
        )

        for sink in self.sinks:
            try:
                await asyncio.wait_for(sink.deliver(event), timeout=self.timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "event_delivery_timeout",
                    sink=sink.name,
                    event=event_type.value,
                    timeout=self.timeout,
                )
            except Exception as e:
                logger.warning(
                    "event_delivery_failed",
                    sink=sink.name,
                    event=event_type.value,
                    error=str(e),
                    error_type=type(e).__name__,
                )

        return event

    async def close(self) -> None:
        for sink in self.sinks:
            await sink.close()
