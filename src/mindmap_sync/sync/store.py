"""Store adapter contract and the in-process implementation.

A store exposes the two persistence surfaces the engine reconciles:

* one JSON mindmap document per project (whole-document writes,
  last write wins), and
* the relational feature collection (row-scoped writes), plus the user
  stories hanging off it.

It also exposes one live-change feed per surface.  Feeds deliver
at-least-once and echo a writer's own writes back to it; consumers treat a
notification as a trigger to re-read.
"""

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from collections import defaultdict
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from ..errors import NotFoundError
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

logger = logging.getLogger(__name__)

FeedCallback = Callable[[dict[str, Any] | None], None]
Unsubscribe = Callable[[], None]


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class StoreAdapter(ABC):
    """Async access to mindmap documents, features and user stories."""

    # ------------------------------------------------------------------
    # Mindmap documents
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_mindmap_document(
        self, project_id: str
    ) -> MindmapDocument | None:
        """Return the project's document, or ``None`` if it has none yet."""

    @abstractmethod
    async def get_mindmap_document_by_id(
        self, mindmap_id: str
    ) -> MindmapDocument:
        """Return a document by id.

        Raises:
            NotFoundError: If no document has this id.
        """

    @abstractmethod
    async def create_mindmap_document(
        self,
        project_id: str,
        nodes: list[MindmapNode],
        connections: list[Connection],
    ) -> MindmapDocument:
        """Create the project's document (first use only)."""

    @abstractmethod
    async def write_mindmap_document(
        self,
        mindmap_id: str,
        nodes: list[MindmapNode],
        connections: list[Connection],
    ) -> MindmapDocument:
        """Replace the document body and stamp ``updated_at``.

        *nodes* includes the root.  Raises ``NotFoundError`` for an
        unknown id.
        """

    # ------------------------------------------------------------------
    # Features and stories
    # ------------------------------------------------------------------

    @abstractmethod
    async def list_features(self, project_id: str) -> list[Feature]:
        """Return every feature of a project."""

    @abstractmethod
    async def insert_feature(self, draft: FeatureDraft) -> Feature:
        """Insert one feature and return it with its backend id."""

    @abstractmethod
    async def update_feature(
        self, feature_id: str, patch: dict[str, Any]
    ) -> Feature:
        """Apply *patch* to a feature, stamping ``updated_at``.

        Raises ``NotFoundError`` for an unknown id.
        """

    @abstractmethod
    async def delete_feature(self, feature_id: str) -> None:
        """Delete a feature; deleting a missing feature is a no-op."""

    @abstractmethod
    async def insert_user_stories(
        self, drafts: list[UserStoryDraft]
    ) -> list[UserStory]:
        """Insert user stories in one call."""

    # ------------------------------------------------------------------
    # Live feeds
    # ------------------------------------------------------------------

    @abstractmethod
    def watch_mindmap(
        self, project_id: str, callback: FeedCallback
    ) -> Unsubscribe:
        """Register for changes to the project's mindmap document."""

    @abstractmethod
    def watch_features(
        self, project_id: str, callback: FeedCallback
    ) -> Unsubscribe:
        """Register for changes to the project's feature rows."""

    def subscribe(self, project_id: str, on_change, on_close=None):
        """Watch both feeds of a project through one tagged callback.

        *on_close*, when given, is called once with the subscription as
        it closes.

        Returns:
            A ``Subscription`` whose ``close()`` is idempotent.
        """
        from .multiplexer import fan_in

        return fan_in(self, project_id, on_change, on_close=on_close)


class MemoryStore(StoreAdapter):
    """Dict-backed store that notifies watchers synchronously.

    Suitable for tests and for running the engine without a backend.
    Every write notifies watchers of its project, including the writer.
    """

    def __init__(self) -> None:
        self.mindmaps: dict[str, dict[str, Any]] = {}
        self.features: dict[str, dict[str, Any]] = {}
        self.user_stories: dict[str, dict[str, Any]] = {}
        self._watchers: dict[
            tuple[str, str], list[FeedCallback]
        ] = defaultdict(list)

    # -- documents ----------------------------------------------------

    async def get_mindmap_document(
        self, project_id: str
    ) -> MindmapDocument | None:
        for row in self.mindmaps.values():
            if row["project_id"] == project_id:
                return MindmapDocument.from_row(row)
        return None

    async def get_mindmap_document_by_id(
        self, mindmap_id: str
    ) -> MindmapDocument:
        row = self.mindmaps.get(mindmap_id)
        if row is None:
            raise NotFoundError("mindmap", mindmap_id)
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
        now = utc_now()
        row = {
            "id": str(uuid.uuid4()),
            "project_id": project_id,
            "data": build_body(nodes, connections),
            "version": 1,
            "created_at": now,
            "updated_at": now,
        }
        self.mindmaps[row["id"]] = row
        self._notify("mindmap", project_id, row)
        return MindmapDocument.from_row(row)

    async def write_mindmap_document(
        self,
        mindmap_id: str,
        nodes: list[MindmapNode],
        connections: list[Connection],
    ) -> MindmapDocument:
        row = self.mindmaps.get(mindmap_id)
        if row is None:
            raise NotFoundError("mindmap", mindmap_id)
        current = MindmapDocument.from_row(row)
        row["data"] = build_body(nodes, connections, current.root)
        row["version"] = (row.get("version") or 1) + 1
        row["updated_at"] = utc_now()
        self._notify("mindmap", row["project_id"], row)
        return MindmapDocument.from_row(row)

    # -- features -----------------------------------------------------

    async def list_features(self, project_id: str) -> list[Feature]:
        return [
            Feature.model_validate(row)
            for row in self.features.values()
            if row["project_id"] == project_id
        ]

    async def insert_feature(self, draft: FeatureDraft) -> Feature:
        now = utc_now()
        row = {
            **draft.model_dump(),
            "id": str(uuid.uuid4()),
            "created_at": now,
            "updated_at": now,
        }
        self.features[row["id"]] = row
        self._notify("features", row["project_id"], row)
        return Feature.model_validate(row)

    async def update_feature(
        self, feature_id: str, patch: dict[str, Any]
    ) -> Feature:
        row = self.features.get(feature_id)
        if row is None:
            raise NotFoundError("feature", feature_id)
        row.update(patch)
        row["updated_at"] = utc_now()
        self._notify("features", row["project_id"], row)
        return Feature.model_validate(row)

    async def delete_feature(self, feature_id: str) -> None:
        row = self.features.pop(feature_id, None)
        if row is not None:
            self._notify("features", row["project_id"], None)

    async def insert_user_stories(
        self, drafts: list[UserStoryDraft]
    ) -> list[UserStory]:
        stories = []
        for draft in drafts:
            row = {**draft.model_dump(), "id": str(uuid.uuid4())}
            self.user_stories[row["id"]] = row
            stories.append(UserStory.model_validate(row))
        return stories

    # -- feeds --------------------------------------------------------

    def watch_mindmap(
        self, project_id: str, callback: FeedCallback
    ) -> Unsubscribe:
        return self._watch("mindmap", project_id, callback)

    def watch_features(
        self, project_id: str, callback: FeedCallback
    ) -> Unsubscribe:
        return self._watch("features", project_id, callback)

    def watcher_count(self, project_id: str) -> int:
        return sum(
            len(self._watchers[(feed, project_id)])
            for feed in ("mindmap", "features")
        )

    def _watch(
        self, feed: str, project_id: str, callback: FeedCallback
    ) -> Unsubscribe:
        key = (feed, project_id)
        self._watchers[key].append(callback)

        def unsubscribe() -> None:
            if callback in self._watchers[key]:
                self._watchers[key].remove(callback)

        return unsubscribe

    def _notify(
        self, feed: str, project_id: str, row: dict[str, Any] | None
    ) -> None:
        for callback in list(self._watchers[(feed, project_id)]):
            try:
                callback(dict(row) if row is not None else None)
            except Exception:
                logger.exception(
                    "Change callback failed for %s feed of %s",
                    feed,
                    project_id,
                )
