"""Unit tests for the agent's concurrency helper."""

import asyncio

import pytest
from shorts_agent.agent import gather_or_cancel


@pytest.mark.unit
@pytest.mark.asyncio
class TestGatherOrCancel:
    """Tests for fail-fast gathering."""

    async def test_results_keep_argument_order(self):
        async def value(v, delay):
            await asyncio.sleep(delay)
            return v

        assert await gather_or_cancel(value("a", 0.02), value("b", 0)) == ["a", "b"]

    async def test_failure_cancels_and_awaits_siblings(self):
        events = []

        async def fail():
            await asyncio.sleep(0)
            raise ValueError("bad segment")

        async def slow():
            try:
                await asyncio.sleep(30)
            except asyncio.CancelledError:
                await asyncio.sleep(0)
                events.append("cleaned up")
                raise

        with pytest.raises(ValueError, match="bad segment"):
            await gather_or_cancel(fail(), slow())

        assert events == ["cleaned up"]

    async def test_outer_cancellation_reaches_children(self):
        started, cancelled = asyncio.Event(), asyncio.Event()

        async def slow():
            started.set()
            try:
                await asyncio.sleep(30)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        task = asyncio.ensure_future(gather_or_cancel(slow()))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert cancelled.is_set()
