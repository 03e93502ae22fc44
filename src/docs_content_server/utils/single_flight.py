"""Per-key coalescing of concurrent async loads.

When several coroutines miss the same cache key at once, only the first one
starts the underlying load; the rest await the same task. The shared task is
shielded, so a waiter that is cancelled (client disconnect) stops waiting
without cancelling the load for everyone else.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Hashable
import logging
from typing import Generic, TypeVar


logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class SingleFlight(Generic[K, V]):
    """Coalesce concurrent calls for the same key into one in-flight task."""

    def __init__(self, name: str = "single-flight") -> None:
        self.name = name
        self._inflight: dict[K, asyncio.Task[V]] = {}

    async def do(self, key: K, factory: Callable[[], Awaitable[V]]) -> V:
        """Run ``factory`` for ``key`` unless a run is already in flight, then await it."""
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._inflight[key] = task
            task.add_done_callback(lambda done, key=key: self._forget(key, done))
        else:
            logger.debug("[%s] Joining in-flight load for %s", self.name, key)
        return await asyncio.shield(task)

    def in_flight(self, key: K) -> bool:
        return key in self._inflight

    def __len__(self) -> int:
        return len(self._inflight)

    def _forget(self, key: K, task: asyncio.Task[V]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        # Mark the exception retrieved when every waiter has gone away.
        if not task.cancelled():
            task.exception()
