"""Named-event bus the engine publishes completed passes on."""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable

from .models import SyncEvent

logger = logging.getLogger(__name__)

EventCallback = Callable[[SyncEvent], None]


class SyncEventBus:
    """Observer registry keyed by event name.

    Subscribers only see events emitted after they subscribed.  A listener
    that raises is logged and skipped; the remaining listeners still run.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[EventCallback]] = defaultdict(list)

    def on(self, name: str, callback: EventCallback) -> Callable[[], None]:
        """Register *callback* for *name*; return the matching unsubscribe."""
        self._listeners[name].append(callback)

        def unsubscribe() -> None:
            listeners = self._listeners.get(name, [])
            if callback in listeners:
                listeners.remove(callback)

        return unsubscribe

    def emit(self, event: SyncEvent) -> None:
        for callback in list(self._listeners.get(event.name, [])):
            try:
                callback(event)
            except Exception:
                logger.exception("Listener for %s failed", event.name)

    def listener_count(self, name: str) -> int:
        return len(self._listeners.get(name, []))
