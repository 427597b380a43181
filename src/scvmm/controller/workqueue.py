"""Deduplicating work queue with delayed adds and per-key backoff."""

import asyncio
import logging
from typing import Dict, Hashable, Set


logger = logging.getLogger(__name__)


class WorkQueue:
    """Hands out keys to workers, at most one attempt per key at a time.

    A key added while it is queued is dropped; a key added while it is being
    processed is queued again once ``done`` is called for it.
    """

    def __init__(self, base_delay: float = 5.0, max_delay: float = 300.0):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._queue: asyncio.Queue = asyncio.Queue()
        self._queued: Set[Hashable] = set()
        self._processing: Set[Hashable] = set()
        self._dirty: Set[Hashable] = set()
        self._timers: Dict[Hashable, asyncio.TimerHandle] = {}
        self._failures: Dict[Hashable, int] = {}

    def __len__(self) -> int:
        return len(self._queued)

    def add(self, key: Hashable):
        if key in self._queued:
            return
        if key in self._processing:
            self._dirty.add(key)
            return
        self._queued.add(key)
        self._queue.put_nowait(key)

    def add_after(self, key: Hashable, delay: float):
        """Add a key after ``delay`` seconds; an earlier pending add wins."""
        if delay <= 0:
            self.add(key)
            return
        loop = asyncio.get_running_loop()
        existing = self._timers.get(key)
        if existing is not None:
            if existing.when() <= loop.time() + delay:
                return
            existing.cancel()
        self._timers[key] = loop.call_later(delay, self._fire, key)

    def _fire(self, key: Hashable):
        self._timers.pop(key, None)
        self.add(key)

    def add_rate_limited(self, key: Hashable) -> float:
        """Add a key after its backoff delay, doubling the delay for next time."""
        failures = self._failures.get(key, 0)
        delay = min(self.base_delay * (2 ** failures), self.max_delay)
        self._failures[key] = failures + 1
        self.add_after(key, delay)
        return delay

    def forget(self, key: Hashable):
        """Reset the backoff of a key."""
        self._failures.pop(key, None)

    def failures(self, key: Hashable) -> int:
        return self._failures.get(key, 0)

    async def get(self) -> Hashable:
        key = await self._queue.get()
        self._queued.discard(key)
        self._processing.add(key)
        return key

    def done(self, key: Hashable):
        self._processing.discard(key)
        self._queue.task_done()
        if key in self._dirty:
            self._dirty.discard(key)
            self.add(key)

    def shutdown(self):
        """Cancel pending delayed adds."""
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
