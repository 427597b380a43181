"""Tests for the work queue."""

import asyncio

import pytest

from scvmm.controller.workqueue import WorkQueue


@pytest.mark.asyncio
class TestWorkQueue:
    """Test deduplication, delays and backoff."""

    async def test_deduplicates_queued_keys(self):
        queue = WorkQueue()
        queue.add("a")
        queue.add("a")
        queue.add("b")

        assert len(queue) == 2
        assert await queue.get() == "a"
        assert await queue.get() == "b"

    async def test_key_added_while_processing_is_requeued_on_done(self):
        queue = WorkQueue()
        queue.add("a")
        key = await queue.get()

        queue.add("a")
        assert len(queue) == 0

        queue.done(key)
        assert len(queue) == 1

    async def test_add_after(self):
        queue = WorkQueue()

        queue.add_after("a", 0.01)
        assert len(queue) == 0

        assert await asyncio.wait_for(queue.get(), timeout=1) == "a"

    async def test_earlier_delay_wins(self):
        queue = WorkQueue()

        queue.add_after("a", 0.01)
        queue.add_after("a", 60)

        assert await asyncio.wait_for(queue.get(), timeout=1) == "a"
        queue.shutdown()

    async def test_shorter_delay_replaces_pending(self):
        queue = WorkQueue()

        queue.add_after("a", 60)
        queue.add_after("a", 0.01)

        assert await asyncio.wait_for(queue.get(), timeout=1) == "a"
        queue.shutdown()

    async def test_backoff_doubles_and_caps(self):
        queue = WorkQueue(base_delay=5, max_delay=30)

        delays = [queue.add_rate_limited("a") for _ in range(5)]

        assert delays == [5, 10, 20, 30, 30]
        assert queue.failures("a") == 5
        queue.shutdown()

    async def test_forget_resets_backoff(self):
        queue = WorkQueue(base_delay=5)
        queue.add_rate_limited("a")
        queue.add_rate_limited("a")

        queue.forget("a")

        assert queue.failures("a") == 0
        assert queue.add_rate_limited("a") == 5
        queue.shutdown()

    async def test_shutdown_cancels_timers(self):
        queue = WorkQueue()
        queue.add_after("a", 0.01)

        queue.shutdown()
        await asyncio.sleep(0.05)

        assert len(queue) == 0
