"""Background expiry of cached documents and navigation trees.

The sweeper only drops entries whose TTL has already passed; reads never
wait on it. It runs as a single asyncio task owned by the application
lifespan.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
import logging


logger = logging.getLogger(__name__)

Purger = Callable[[], int]


class CacheSweeper:
    """Periodically calls each ``purge_expired`` callable until stopped."""

    def __init__(self, purgers: Sequence[Purger], interval_seconds: float = 30.0) -> None:
        self.purgers = list(purgers)
        self.interval_seconds = interval_seconds
        self._stop_event: asyncio.Event | None = None
        self._task: asyncio.Task | None = None
        self.sweeps = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name="cache-sweeper")

    async def stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
        task, self._task = self._task, None
        if task is None:
            return
        try:
            await asyncio.wait_for(task, timeout=max(self.interval_seconds, 1.0))
        except asyncio.TimeoutError:  # pragma: no cover - sweep stuck past one interval
            task.cancel()

    def sweep_once(self) -> int:
        purged = 0
        for purge in self.purgers:
            try:
                purged += purge()
            except Exception:
                logger.exception("Cache purge %r failed", purge)
        self.sweeps += 1
        if purged:
            logger.debug("Cache sweep expired %d entries", purged)
        return purged

    async def _run(self) -> None:
        stop_event = self._stop_event
        assert stop_event is not None
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval_seconds)
                break
            except asyncio.TimeoutError:
                pass
            self.sweep_once()
