"""Change notifications for stored content.

The engine does not watch files itself. An external watcher (or the admin
endpoint) publishes ``ChangeEvent``s, and the document loader subscribes to
evict whatever the change touched.
"""

from collections.abc import Callable
from dataclasses import dataclass
import logging
from typing import Protocol


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChangeEvent:
    """Content at ``storage_location`` changed; ``slug=None`` means anything may have."""

    storage_location: str
    slug: str | None = None


ChangeCallback = Callable[[ChangeEvent], None]
Unsubscribe = Callable[[], None]


class ChangeNotifier(Protocol):
    def subscribe(self, callback: ChangeCallback) -> Unsubscribe:  # pragma: no cover - interface definition
        ...


class LocalChangeNotifier:
    """In-process publisher fanning events out synchronously to subscribers."""

    def __init__(self) -> None:
        self._subscribers: list[ChangeCallback] = []

    def subscribe(self, callback: ChangeCallback) -> Unsubscribe:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, event: ChangeEvent) -> int:
        """Deliver ``event`` to every subscriber and return how many received it.

        A failing subscriber is logged and does not stop delivery to the rest.
        """
        delivered = 0
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.exception("Change subscriber failed for %s", event)
                continue
            delivered += 1
        return delivered

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
