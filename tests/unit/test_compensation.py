"""Unit tests for the compensation stack."""

import pytest

from siteforge.errors import RollbackFailedError, RuntimeAdapterError
from siteforge.lifecycle.compensation import CompensationStack


class TestCompensationStack:
    """Tests for CompensationStack."""

    @pytest.mark.asyncio
    async def test_unwinds_in_reverse_order(self):
        """Newest compensation runs first; sync and async undos both work."""
        ran = []
        stack = CompensationStack()

        async def remove_network():
            ran.append("network")

        stack.push("release_ports", lambda: ran.append("ports"))
        stack.push("remove_network", remove_network)
        stack.push("remove_volume", lambda: ran.append("volume"))

        applied = await stack.unwind()

        assert ran == ["volume", "network", "ports"]
        assert applied == ["remove_volume", "remove_network", "release_ports"]
        assert len(stack) == 0

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_unwind(self):
        """Every compensation runs even after one fails."""
        ran = []
        original = RuntimeAdapterError("create failed")
        stack = CompensationStack()

        def broken():
            raise OSError("busy")

        stack.push("release_ports", lambda: ran.append("ports"))
        stack.push("remove_network", broken)

        with pytest.raises(RollbackFailedError) as exc_info:
            await stack.unwind(original)

        error = exc_info.value
        assert ran == ["ports"]
        assert error.original is original
        assert [name for name, _ in error.failures] == ["remove_network"]
        assert not error.retryable
        assert stack.completed == ["release_ports"]

    @pytest.mark.asyncio
    async def test_clear_forgets_entries(self):
        ran = []
        stack = CompensationStack()
        stack.push("release_ports", lambda: ran.append("ports"))

        stack.clear()

        assert await stack.unwind() == []
        assert ran == []

    def test_rollback_error_serializes_original(self):
        error = RollbackFailedError(
            RuntimeAdapterError("boom", stage="create_containers"),
            [("remove_network", OSError("busy"))],
        )
        data = error.to_dict()
        assert data["type"] == "RollbackFailedError"
        assert data["original_error"]["stage"] == "create_containers"
        assert data["failures"] == [{"compensation": "remove_network", "error": "busy"}]
