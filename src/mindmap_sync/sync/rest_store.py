"""Store adapter over a PostgREST-style backend.

Tables used: ``mindmaps`` (one row per project, JSON ``data`` body),
``features`` and ``user_stories``.  Every blocking HTTP call runs through
``run_sync_limited`` so the event loop is never blocked and the number of
parallel requests stays bounded.

Live feeds are polled: each watched (table, project) pair has one
background task that asks for rows whose ``updated_at`` is newer than the
last one seen and passes each row to the callbacks.  Row deletions carry
no ``updated_at`` and are therefore not reported by the feed; the next
reconciliation pass picks them up.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from ..core.async_utils import run_sync_limited
from ..core.client import BackendClient
from ..errors import MindmapSyncError, NotFoundError
from .models import (
    Connection,
    Feature,
    FeatureDraft,
    MindmapDocument,
    MindmapNode,
    UserStory,
    UserStoryDraft,
    build_body,
)
from .store import FeedCallback, StoreAdapter, Unsubscribe, utc_now

logger = logging.getLogger(__name__)

MINDMAPS = "mindmaps"
FEATURES = "features"
USER_STORIES = "user_stories"


class _Poller:
    """Background poll loop for one (table, project) feed."""

    def __init__(
        self,
        client: BackendClient,
        table: str,
        project_id: str,
        interval: float,
    ) -> None:
        self.client = client
        self.table = table
        self.project_id = project_id
        self.interval = interval
        self.callbacks: list[FeedCallback] = []
        self.watermark = utc_now()
        self.task: asyncio.Task | None = None

    def start(self) -> None:
        self.task = asyncio.get_running_loop().create_task(
            self._run(), name=f"poll-{self.table}-{self.project_id}"
        )

    def stop(self) -> None:
        if self.task is not None:
            self.task.cancel()
            self.task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.poll_once()
            except MindmapSyncError as exc:
                logger.warning(
                    "Polling %s for %s failed: %s",
                    self.table,
                    self.project_id,
                    exc,
                )

    async def poll_once(self) -> int:
        rows = await run_sync_limited(
            self.client.select,
            self.table,
            {
                "project_id": self.project_id,
                "updated_at": ("gt", self.watermark),
            },
            order="updated_at.asc",
        )
        for row in rows or []:
            if row.get("updated_at"):
                self.watermark = max(self.watermark, row["updated_at"])
            for callback in list(self.callbacks):
                try:
                    callback(row)
                except Exception:
                    logger.exception(
                        "Change callback failed for %s feed of %s",
                        self.table,
                        self.project_id,
                    )
        return len(rows or [])


class RestStore(StoreAdapter):
    """``StoreAdapter`` backed by ``BackendClient``.

    Args:
        client: Configured backend client.
        poll_interval: Seconds between change-feed polls.
    """

    def __init__(
        self, client: BackendClient, poll_interval: float = 2.0
    ) -> None:
        self.client = client
        self.poll_interval = poll_interval
        self._pollers: dict[tuple[str, str], _Poller] = {}

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def get_mindmap_document(
        self, project_id: str
    ) -> MindmapDocument | None:
        rows = await run_sync_limited(
            self.client.select,
            MINDMAPS,
            {"project_id": project_id},
            order="created_at.asc",
        )
        if not rows:
            return None
        if len(rows) > 1:
            logger.warning(
                "Project %s has %d mindmaps; using the oldest",
                project_id,
                len(rows),
            )
        return MindmapDocument.from_row(rows[0])

    async def get_mindmap_document_by_id(
        self, mindmap_id: str
    ) -> MindmapDocument:
        try:
            row = await run_sync_limited(
                self.client.select, MINDMAPS, {"id": mindmap_id}, single=True
            )
        except NotFoundError:
            raise NotFoundError("mindmap", mindmap_id) from None
        return MindmapDocument.from_row(row)

    async def create_mindmap_document(
        self,
        project_id: str,
        nodes: list[MindmapNode],
        connections: list[Connection],
    ) -> MindmapDocument:
        existing = await self.get_mindmap_document(project_id)
        if existing is not None:
            return existing
        rows = await run_sync_limited(
            self.client.insert,
            MINDMAPS,
            [
                {
                    "project_id": project_id,
                    "data": build_body(nodes, connections),
                    "version": 1,
                }
            ],
        )
        logger.info("Created mindmap for project %s", project_id)
        return MindmapDocument.from_row(rows[0])

    async def write_mindmap_document(
        self,
        mindmap_id: str,
        nodes: list[MindmapNode],
        connections: list[Connection],
    ) -> MindmapDocument:
        # The version is bumped from the value just read; it is a counter,
        # not a compare-and-set guard.
        current = await self.get_mindmap_document_by_id(mindmap_id)
        rows = await run_sync_limited(
            self.client.update,
            MINDMAPS,
            {
                "data": build_body(nodes, connections, current.root),
                "version": current.version + 1,
                "updated_at": utc_now(),
            },
            {"id": mindmap_id},
        )
        if not rows:
            raise NotFoundError("mindmap", mindmap_id)
        return MindmapDocument.from_row(rows[0])

    # ------------------------------------------------------------------
    # Features and stories
    # ------------------------------------------------------------------

    async def list_features(self, project_id: str) -> list[Feature]:
        rows = await run_sync_limited(
            self.client.select,
            FEATURES,
            {"project_id": project_id},
            order="created_at.asc",
        )
        return [Feature.model_validate(row) for row in rows or []]

    async def insert_feature(self, draft: FeatureDraft) -> Feature:
        rows = await run_sync_limited(
            self.client.insert, FEATURES, [draft.to_row()]
        )
        return Feature.model_validate(rows[0])

    async def update_feature(
        self, feature_id: str, patch: dict[str, Any]
    ) -> Feature:
        rows = await run_sync_limited(
            self.client.update,
            FEATURES,
            {**patch, "updated_at": utc_now()},
            {"id": feature_id},
        )
        if not rows:
            raise NotFoundError("feature", feature_id)
        return Feature.model_validate(rows[0])

    async def delete_feature(self, feature_id: str) -> None:
        await run_sync_limited(
            self.client.delete, FEATURES, {"id": feature_id}
        )

    async def insert_user_stories(
        self, drafts: list[UserStoryDraft]
    ) -> list[UserStory]:
        if not drafts:
            return []
        rows = await run_sync_limited(
            self.client.insert,
            USER_STORIES,
            [d.to_row() for d in drafts],
        )
        return [UserStory.model_validate(row) for row in rows]

    # ------------------------------------------------------------------
    # Live feeds
    # ------------------------------------------------------------------

    def watch_mindmap(
        self, project_id: str, callback: FeedCallback
    ) -> Unsubscribe:
        return self._watch(MINDMAPS, project_id, callback)

    def watch_features(
        self, project_id: str, callback: FeedCallback
    ) -> Unsubscribe:
        return self._watch(FEATURES, project_id, callback)

    def close(self) -> None:
        """Stop every poller."""
        for poller in self._pollers.values():
            poller.stop()
        self._pollers.clear()

    def _watch(
        self, table: str, project_id: str, callback: FeedCallback
    ) -> Unsubscribe:
        """Attach *callback* to the feed, starting its poller if needed.

        Must be called with an event loop running.
        """
        key = (table, project_id)
        poller = self._pollers.get(key)
        if poller is None:
            poller = _Poller(
                self.client, table, project_id, self.poll_interval
            )
            poller.start()
            self._pollers[key] = poller
            logger.debug("Started %s poller for %s", table, project_id)
        poller.callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in poller.callbacks:
                poller.callbacks.remove(callback)
            if not poller.callbacks and self._pollers.get(key) is poller:
                poller.stop()
                del self._pollers[key]
                logger.debug("Stopped %s poller for %s", table, project_id)

        return unsubscribe
