"""Per-project sync status, conflict counting and offline handling.

``SyncController`` wraps a ``SyncEngine`` for one project and derives the
status callers render:

* ``offline`` whenever the latest network signal was offline;
* otherwise ``error`` when the latest pass failed and neither a later
  success nor ``retry_sync()`` has cleared it;
* otherwise ``syncing`` while any pass is in flight;
* otherwise ``synced``.

Passes requested while offline go into a ``PendingOperationLog`` and are
replayed, in order, when the online signal returns.  ``retry_sync()``
only clears the error; it never replays the failed pass.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone

from ..errors import MindmapSyncError
from .engine import SyncEngine
from .models import (
    ChangeEvent,
    Feature,
    MindmapNode,
    PassReport,
    SyncSnapshot,
    SyncStatus,
)
from .multiplexer import ChangeMultiplexer, Subscription
from .pending import PendingOperation, PendingOperationLog

logger = logging.getLogger(__name__)

OFFLINE_MESSAGE = "Offline: changes will sync when back online"

SnapshotCallback = Callable[[SyncSnapshot], None]
ChangeCallback = Callable[[ChangeEvent], None]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SyncController:
    """Track sync state for one project around a ``SyncEngine``.

    Args:
        project_id: The project this controller serves.
        engine: Engine that runs the passes.
        pending: Log for passes requested while offline.
        multiplexer: Change multiplexer used by ``start()``.
        online: Initial network state.
    """

    def __init__(
        self,
        project_id: str,
        engine: SyncEngine,
        pending: PendingOperationLog | None = None,
        multiplexer: ChangeMultiplexer | None = None,
        online: bool = True,
    ) -> None:
        self.project_id = project_id
        self.engine = engine
        self.pending = pending or PendingOperationLog()
        self.multiplexer = multiplexer or ChangeMultiplexer(engine.store)

        self._online = online
        self._in_flight = 0
        self._latest_attempt = 0
        self._failed = False
        self._conflict_count = 0
        self._last_sync_time: str | None = None
        self._last_error: str | None = None
        self._message: str | None = None if online else OFFLINE_MESSAGE
        self._listeners: list[SnapshotCallback] = []
        self._change_listeners: list[ChangeCallback] = []
        self._subscription: Subscription | None = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def status(self) -> SyncStatus:
        if not self._online:
            return SyncStatus.OFFLINE
        if self._failed:
            return SyncStatus.ERROR
        if self._in_flight:
            return SyncStatus.SYNCING
        return SyncStatus.SYNCED

    @property
    def online(self) -> bool:
        return self._online

    @property
    def conflict_count(self) -> int:
        return self._conflict_count

    @property
    def last_sync_time(self) -> str | None:
        return self._last_sync_time

    def snapshot(self) -> SyncSnapshot:
        return SyncSnapshot(
            status=self.status,
            conflict_count=self._conflict_count,
            last_sync_time=self._last_sync_time,
            pending=self.pending.count(self.project_id),
            message=self._message,
            last_error=self._last_error,
        )

    def listen(self, callback: SnapshotCallback) -> Callable[[], None]:
        """Call *callback* with a fresh snapshot after every state change."""
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def on_remote_change(
        self, callback: ChangeCallback
    ) -> Callable[[], None]:
        """Forward live-change events received while started."""
        self._change_listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._change_listeners:
                self._change_listeners.remove(callback)

        return unsubscribe

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    async def mindmap_to_features(
        self, mindmap_id: str, nodes: list[MindmapNode]
    ) -> PassReport | None:
        """Run (or, offline, queue) a mindmap -> features pass.

        Returns:
            The pass report, or ``None`` if the pass was queued or failed.
        """
        if not self._online:
            self._queue(
                PendingOperation(
                    kind="mindmap_to_features",
                    project_id=self.project_id,
                    mindmap_id=mindmap_id,
                    nodes=nodes,
                )
            )
            return None
        return await self._run(
            lambda: self.engine.mindmap_to_features(mindmap_id, nodes)
        )

    async def features_to_mindmap(
        self, features: list[Feature]
    ) -> PassReport | None:
        """Run (or, offline, queue) a features -> mindmap pass."""
        if not self._online:
            self._queue(
                PendingOperation(
                    kind="features_to_mindmap",
                    project_id=self.project_id,
                    features=features,
                )
            )
            return None
        return await self._run(
            lambda: self.engine.features_to_mindmap(
                self.project_id, features
            )
        )

    def retry_sync(self) -> None:
        """Clear the error state and conflict counter.

        The failed pass is not replayed; the caller re-issues it.
        """
        self._failed = False
        self._conflict_count = 0
        self._last_error = None
        if self._online:
            self._message = None
        self._notify()

    # ------------------------------------------------------------------
    # Network signals
    # ------------------------------------------------------------------

    async def set_online(self, online: bool) -> int:
        """Apply a network signal.

        Going online replays the pending log.

        Returns:
            Number of pending operations applied.
        """
        if not online:
            if self._online:
                logger.info("Project %s went offline", self.project_id)
            self._online = False
            self._message = OFFLINE_MESSAGE
            self._notify()
            return 0

        was_offline = not self._online
        self._online = True
        self._message = None
        if was_offline:
            logger.info("Project %s back online", self.project_id)
        self._notify()
        return await self.flush_pending()

    async def flush_pending(self) -> int:
        """Replay queued passes in order, stopping at the first failure."""
        applied = 0
        for op in self.pending.peek(self.project_id):
            if not self._online:
                break
            if op.kind == "mindmap_to_features":
                report = await self._run(
                    lambda op=op: self.engine.mindmap_to_features(
                        op.mindmap_id, op.nodes
                    )
                )
            else:
                report = await self._run(
                    lambda op=op: self.engine.features_to_mindmap(
                        self.project_id, op.features
                    )
                )
            if report is None:
                logger.warning(
                    "Replay of pending %s failed; %d operation(s) kept",
                    op.kind,
                    self.pending.count(self.project_id),
                )
                break
            self.pending.remove(self.project_id, op.op_id)
            applied += 1

        if applied:
            logger.info(
                "Applied %d pending operation(s) for project %s",
                applied,
                self.project_id,
            )
            self._notify()
        return applied

    # ------------------------------------------------------------------
    # Live changes
    # ------------------------------------------------------------------

    def start(self) -> Subscription:
        """Subscribe to live changes of the project (idempotent)."""
        if self._subscription is None or self._subscription.closed:
            self._subscription = self.multiplexer.subscribe(
                self.project_id, self._handle_change
            )
        return self._subscription

    def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None

    def _handle_change(self, event: ChangeEvent) -> None:
        self._last_sync_time = _now()
        for callback in list(self._change_listeners):
            callback(event)
        self._notify()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _queue(self, op: PendingOperation) -> None:
        self.pending.append(op)
        self._message = OFFLINE_MESSAGE
        logger.info(
            "Queued %s for project %s while offline",
            op.kind,
            self.project_id,
        )
        self._notify()

    async def _run(
        self, start: Callable[[], Awaitable[PassReport]]
    ) -> PassReport | None:
        self._latest_attempt += 1
        attempt = self._latest_attempt
        self._in_flight += 1
        self._failed = False
        self._notify()
        try:
            report = await start()
        except MindmapSyncError as exc:
            self._finish_failure(attempt, exc)
            return None
        except Exception as exc:
            self._finish_failure(attempt, exc)
            raise
        self._finish_success(attempt)
        return report

    def _finish_success(self, attempt: int) -> None:
        self._in_flight -= 1
        self._last_sync_time = _now()
        if attempt == self._latest_attempt:
            self._failed = False
            self._conflict_count = 0
            self._last_error = None
        self._notify()

    def _finish_failure(self, attempt: int, exc: Exception) -> None:
        self._in_flight -= 1
        self._conflict_count += 1
        self._last_error = str(exc)
        if attempt == self._latest_attempt:
            self._failed = True
        logger.error(
            "Sync failed for project %s (conflicts=%d): %s",
            self.project_id,
            self._conflict_count,
            exc,
        )
        self._notify()

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for callback in list(self._listeners):
            callback(snapshot)
