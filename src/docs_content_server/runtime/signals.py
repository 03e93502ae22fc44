"""SIGINT/SIGTERM handling that lets the lifespan drain the content engine."""

from __future__ import annotations

import asyncio
import logging
import signal
from typing import TYPE_CHECKING


if TYPE_CHECKING:
    from starlette.applications import Starlette


logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ShutdownSignal:
    """Records the first shutdown signal and wakes whoever waits on ``event``."""

    def __init__(self) -> None:
        self.event = asyncio.Event()
        self.received: str | None = None

    def trigger(self, reason: str) -> None:
        if self.event.is_set():
            logger.debug("Ignoring %s; shutdown already requested by %s", reason, self.received)
            return
        self.received = reason
        logger.info("Received %s, draining content engine", reason)
        self.event.set()

    def _handle(self, signum: int, frame: object | None) -> None:  # pragma: no cover - signal glue
        self.trigger(signal.Signals(signum).name)


def install_shutdown_signals(app: Starlette) -> ShutdownSignal:
    """Attach handlers once per app; ``app.state.shutdown`` exposes the result."""
    existing = getattr(app.state, "shutdown", None)
    if isinstance(existing, ShutdownSignal):
        return existing

    shutdown = ShutdownSignal()
    for sig in SHUTDOWN_SIGNALS:
        try:
            signal.signal(sig, shutdown._handle)
        except ValueError:  # pragma: no cover - not on the main thread
            logger.debug("Cannot install %s handler outside the main thread", sig.name)

    app.state.shutdown = shutdown
    return shutdown
