"""Unit tests for the change notifier and the cache sweeper."""

import asyncio

import pytest

from docs_content_server.services.cache_sweeper import CacheSweeper
from docs_content_server.services.change_notifier import ChangeEvent, LocalChangeNotifier


class TestLocalChangeNotifier:
    def test_publish_reaches_every_subscriber(self):
        notifier = LocalChangeNotifier()
        received = []
        notifier.subscribe(received.append)
        notifier.subscribe(received.append)

        delivered = notifier.publish(ChangeEvent("/srv/docs/acme/v1", "index"))

        assert delivered == 2
        assert received == [ChangeEvent("/srv/docs/acme/v1", "index")] * 2

    def test_failing_subscriber_is_skipped(self):
        notifier = LocalChangeNotifier()
        received = []

        def broken(event):
            raise RuntimeError("subscriber bug")

        notifier.subscribe(broken)
        notifier.subscribe(received.append)

        assert notifier.publish(ChangeEvent("/srv/docs/acme/v1")) == 1
        assert len(received) == 1

    def test_unsubscribe(self):
        notifier = LocalChangeNotifier()
        unsubscribe = notifier.subscribe(lambda event: None)

        unsubscribe()
        unsubscribe()

        assert notifier.subscriber_count == 0


class TestCacheSweeper:
    def test_sweep_once_sums_purgers_and_survives_failures(self):
        def broken() -> int:
            raise RuntimeError("purge bug")

        sweeper = CacheSweeper([lambda: 2, broken, lambda: 3], interval_seconds=10)

        assert sweeper.sweep_once() == 5
        assert sweeper.sweeps == 1

    @pytest.mark.asyncio
    async def test_runs_periodically_until_stopped(self):
        calls = []
        sweeper = CacheSweeper([lambda: calls.append(1) or 0], interval_seconds=0.01)

        sweeper.start()
        await asyncio.sleep(0.05)
        await sweeper.stop()
        swept = sweeper.sweeps
        await asyncio.sleep(0.03)

        assert swept >= 1
        assert sweeper.sweeps == swept
        assert sweeper.running is False

    @pytest.mark.asyncio
    async def test_start_is_idempotent_and_restartable(self):
        sweeper = CacheSweeper([], interval_seconds=60)

        sweeper.start()
        first_task = sweeper._task
        sweeper.start()
        assert sweeper._task is first_task

        await sweeper.stop()
        sweeper.start()
        assert sweeper.running is True
        await sweeper.stop()

    @pytest.mark.asyncio
    async def test_stop_without_start(self):
        sweeper = CacheSweeper([], interval_seconds=1)
        await sweeper.stop()
        assert sweeper.running is False
