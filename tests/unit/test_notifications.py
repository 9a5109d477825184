"""Unit tests for lifecycle event delivery."""

import asyncio
import io
import json

import httpx
import pytest

from siteforge.config.settings import NotificationConfig
from siteforge.notifications import (
    EventChannel,
    EventSink,
    EventType,
    LifecycleEvent,
    LogSink,
    WebhookSink,
)
from siteforge.utils.logging import configure_logging

from tests.conftest import CollectingSink


class FailingSink(EventSink):
    name = "failing"

    async def deliver(self, event):
        raise RuntimeError("sink down")


class SlowSink(EventSink):
    name = "slow"

    async def deliver(self, event):
        await asyncio.sleep(10)


class TestEventChannel:
    """Tests for EventChannel."""

    @pytest.mark.asyncio
    async def test_delivers_in_order(self):
        sink = CollectingSink()
        channel = EventChannel([sink])

        await channel.emit(EventType.WORKFLOW_STARTED, "site-1", action="CREATE")
        await channel.emit(EventType.WORKFLOW_COMPLETED, "site-1", action="CREATE")

        assert sink.types == ["workflow_started", "workflow_completed"]
        assert sink.events[0].data == {"action": "CREATE"}

    @pytest.mark.asyncio
    async def test_failing_sink_is_skipped(self):
        """A broken sink never raises and later sinks still receive the event."""
        sink = CollectingSink()
        channel = EventChannel([FailingSink(), sink])

        event = await channel.emit(EventType.WORKFLOW_FAILED, "site-1")

        assert sink.events == [event]

    @pytest.mark.asyncio
    async def test_slow_sink_times_out(self):
        sink = CollectingSink()
        channel = EventChannel([SlowSink(), sink], timeout=0.01)

        await channel.emit(EventType.CALL_PROGRESS, "site-1", stage="generate")

        assert sink.types == ["call_progress"]

    def test_from_config(self):
        channel = EventChannel.from_config(
            NotificationConfig(webhook_url="https://hooks.example.com/x", log_events=True)
        )
        assert [s.name for s in channel.sinks] == ["log", "webhook"]

    def test_from_config_without_sinks(self):
        channel = EventChannel.from_config(NotificationConfig(log_events=False))
        assert channel.sinks == []


class TestSinks:
    """Tests for the built-in sinks."""

    def test_event_to_dict_flattens_data(self):
        event = LifecycleEvent(
            EventType.PROJECT_STATE_CHANGED,
            "site-1",
            {"previous_state": "BUILT", "state": "OFFLINE"},
            correlation_id="abc",
        )
        data = event.to_dict()
        assert data["type"] == "project_state_changed"
        assert data["state"] == "OFFLINE"
        assert data["correlation_id"] == "abc"

    @pytest.mark.asyncio
    async def test_log_sink(self):
        buffer = io.StringIO()
        configure_logging(level="info", format_type="json", stream=buffer)

        await LogSink().deliver(LifecycleEvent(EventType.WORKFLOW_STARTED, "site-1"))

        record = json.loads(buffer.getvalue().strip().splitlines()[-1])
        assert record["event"] == "lifecycle_event"
        assert record["type"] == "workflow_started"
        assert record["project_id"] == "site-1"

    @pytest.mark.asyncio
    async def test_webhook_posts_json(self):
        received = []

        def handler(request):
            received.append(json.loads(request.content))
            return httpx.Response(204)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            sink = WebhookSink("https://hooks.example.com/x", client=client)
            await sink.deliver(LifecycleEvent(EventType.WORKFLOW_COMPLETED, "site-1", {"state": "DRAFT"}))
            await sink.close()
            assert not client.is_closed

        assert received[0]["type"] == "workflow_completed"
        assert received[0]["state"] == "DRAFT"

    @pytest.mark.asyncio
    async def test_webhook_error_status_raises(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(500))
        async with httpx.AsyncClient(transport=transport) as client:
            sink = WebhookSink("https://hooks.example.com/x", client=client)
            with pytest.raises(httpx.HTTPStatusError):
                await sink.deliver(LifecycleEvent(EventType.WORKFLOW_FAILED, "site-1"))
