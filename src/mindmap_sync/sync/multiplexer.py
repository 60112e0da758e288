"""Fan-in of the two live-change feeds of a project.

The mindmap feed and the feature feed are independent subscriptions on
the store.  ``fan_in`` merges them into one callback receiving tagged
``ChangeEvent``s; ``ChangeMultiplexer`` keeps at most one such
subscription per project.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from .models import ChangeEvent

if TYPE_CHECKING:
    from .store import StoreAdapter, Unsubscribe

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[ChangeEvent], None]


class Subscription:
    """Handle over both underlying feed subscriptions of a project.

    ``close()`` deregisters each feed exactly once, however many times it
    is called and whether or not either feed ever fired.
    """

    def __init__(
        self,
        project_id: str,
        unsubscribers: list[Unsubscribe],
        on_close: Callable[[Subscription], None] | None = None,
    ) -> None:
        self.project_id = project_id
        self._unsubscribers = unsubscribers
        self._on_close = on_close
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        unsubscribers, self._unsubscribers = self._unsubscribers, []
        for unsubscribe in unsubscribers:
            unsubscribe()
        logger.debug("Closed change subscription for %s", self.project_id)
        if self._on_close is not None:
            self._on_close(self)

    def __call__(self) -> None:
        self.close()


def fan_in(
    store: StoreAdapter,
    project_id: str,
    callback: ChangeCallback,
    on_close: Callable[[Subscription], None] | None = None,
) -> Subscription:
    """Subscribe to both feeds of *project_id* and tag their events.

    Events arriving after the subscription closed are dropped.
    """
    subscription: Subscription | None = None

    def forward(kind: str) -> Callable[[dict[str, Any] | None], None]:
        def _handler(payload: dict[str, Any] | None) -> None:
            if subscription is not None and subscription.closed:
                return
            logger.debug("%s change detected for %s", kind, project_id)
            callback(
                ChangeEvent(
                    type=kind,  # type: ignore[arg-type]
                    project_id=project_id,
                    payload=payload,
                )
            )

        return _handler

    unsubscribers: list[Unsubscribe] = []
    try:
        unsubscribers.append(
            store.watch_mindmap(project_id, forward("mindmap"))
        )
        unsubscribers.append(
            store.watch_features(project_id, forward("features"))
        )
    except Exception:
        for unsubscribe in unsubscribers:
            unsubscribe()
        raise

    subscription = Subscription(project_id, unsubscribers, on_close)
    return subscription


class ChangeMultiplexer:
    """Per-project registry of fanned-in change subscriptions.

    Subscribing a project that already has a subscription closes the old
    one first.
    """

    def __init__(self, store: StoreAdapter) -> None:
        self.store = store
        self._active: dict[str, Subscription] = {}

    def subscribe(
        self, project_id: str, callback: ChangeCallback
    ) -> Subscription:
        self.unsubscribe(project_id)
        subscription = self.store.subscribe(
            project_id, callback, on_close=self._forget
        )
        self._active[project_id] = subscription
        logger.info("Subscribed to changes for project %s", project_id)
        return subscription

    def unsubscribe(self, project_id: str) -> None:
        existing = self._active.get(project_id)
        if existing is not None:
            existing.close()

    def close_all(self) -> None:
        for subscription in list(self._active.values()):
            subscription.close()
        self._active.clear()

    def active_projects(self) -> list[str]:
        return list(self._active)

    def _forget(self, subscription: Subscription) -> None:
        if self._active.get(subscription.project_id) is subscription:
            del self._active[subscription.project_id]
