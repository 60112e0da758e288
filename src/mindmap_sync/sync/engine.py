"""Sync engine that runs reconciliation passes in both directions.

``SyncEngine`` is constructed explicitly around a ``StoreAdapter``; there
is no module-level instance, so several projects (or several tests) can
each own their engine.

mindmap -> features
    1. Load the document (project, root, previous nodes) and features.
    2. Plan creates/updates/deletes with ``plan_mindmap_to_features``.
    3. Execute feature writes, back-filling created ids into the nodes.
    4. Write the document once, with every link resolved.
    5. Emit ``mindmap-to-features``.

features -> mindmap
    1. Load the document; no document means nothing to reconcile.
    2. Plan the node list with ``plan_features_to_mindmap``.
    3. Write the document, then repair stale ``node_id`` back-links.
    4. Emit ``features-to-mindmap``.

Document writes are last-write-wins: the ``version`` counter is not used
as a guard and passes racing on the same project are not serialised.
Any store error aborts the pass and propagates unchanged.
"""

from __future__ import annotations

import logging
import random
from datetime import datetime, timezone

from ..core.async_utils import gather_limited
from .events import SyncEventBus
from .models import (
    FEATURES_TO_MINDMAP,
    MINDMAP_TO_FEATURES,
    Feature,
    MindmapNode,
    PassReport,
    SyncAction,
    SyncEvent,
    SyncResult,
)
from .planner import (
    FeatureWrite,
    plan_features_to_mindmap,
    plan_mindmap_to_features,
    set_feature_link,
)
from .store import StoreAdapter

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SyncEngine:
    """Reconcile a project's mindmap document with its feature rows.

    Args:
        store: Persistence backend for documents and features.
        events: Bus to publish completed passes on.  A private bus is
            created when omitted.
        rng: Random source for new node positions.
    """

    def __init__(
        self,
        store: StoreAdapter,
        events: SyncEventBus | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.store = store
        self.events = events or SyncEventBus()
        self.rng = rng or random.Random()

    def on(self, name: str, callback):
        """Shortcut for ``self.events.on``."""
        return self.events.on(name, callback)

    # ------------------------------------------------------------------
    # mindmap -> features
    # ------------------------------------------------------------------

    async def mindmap_to_features(
        self, mindmap_id: str, updated_nodes: list[MindmapNode]
    ) -> PassReport:
        """Make the project's features mirror *updated_nodes*.

        The nodes in *updated_nodes* are updated in place with their
        resolved ``featureId`` links.

        Args:
            mindmap_id: Document to write.
            updated_nodes: Full proposed node list.  The root may be
                omitted; the persisted root is kept.

        Returns:
            A ``PassReport`` of the feature writes performed.

        Raises:
            NotFoundError: If *mindmap_id* does not exist.
            TransportError: If any backend call fails.
        """
        started_at = _now()
        document = await self.store.get_mindmap_document_by_id(mindmap_id)
        features = await self.store.list_features(document.project_id)

        plan = plan_mindmap_to_features(
            document, updated_nodes, features, started_at
        )
        by_id = {n.id: n for n in plan.nodes}
        results = list(plan.results)

        # Feature writes are independent of each other; the document is
        # written once all of them are durable.
        results.extend(
            await gather_limited(
                [self._apply_write(write, by_id) for write in plan.writes]
            )
        )

        await self.store.write_mindmap_document(
            mindmap_id, plan.nodes, plan.connections
        )

        report = PassReport(
            direction=MINDMAP_TO_FEATURES,
            project_id=document.project_id,
            mindmap_id=mindmap_id,
            nodes=plan.nodes,
            results=results,
            started_at=started_at,
            completed_at=_now(),
        )
        self._log_divergences(report)
        self.events.emit(
            SyncEvent(
                name=MINDMAP_TO_FEATURES,
                project_id=document.project_id,
                mindmap_id=mindmap_id,
                nodes=plan.nodes,
            )
        )
        return report

    # ------------------------------------------------------------------
    # features -> mindmap
    # ------------------------------------------------------------------

    async def features_to_mindmap(
        self, project_id: str, updated_features: list[Feature]
    ) -> PassReport:
        """Make the project's mindmap document mirror *updated_features*.

        Returns:
            A ``PassReport``.  When the project has no document yet the
            report is empty and no event is emitted.

        Raises:
            TransportError: If any backend call fails.
        """
        started_at = _now()
        document = await self.store.get_mindmap_document(project_id)
        if document is None:
            logger.debug(
                "No mindmap for project %s; nothing to reconcile",
                project_id,
            )
            return PassReport(
                direction=FEATURES_TO_MINDMAP,
                project_id=project_id,
                started_at=started_at,
                completed_at=_now(),
            )

        all_features = await self.store.list_features(project_id)
        plan = plan_features_to_mindmap(
            document, updated_features, all_features, self.rng
        )

        await self.store.write_mindmap_document(
            document.id, plan.nodes, plan.connections
        )

        # Back-links go in after the document so they never name a node
        # that has not been persisted.
        for repair in plan.link_repairs:
            await self.store.update_feature(repair.feature_id, repair.patch)
            logger.debug(
                "Linked feature %s to node %s",
                repair.feature_id,
                repair.node_id,
            )

        report = PassReport(
            direction=FEATURES_TO_MINDMAP,
            project_id=project_id,
            mindmap_id=document.id,
            nodes=plan.nodes,
            results=plan.results,
            started_at=started_at,
            completed_at=_now(),
        )
        self._log_divergences(report)
        self.events.emit(
            SyncEvent(
                name=FEATURES_TO_MINDMAP,
                project_id=project_id,
                mindmap_id=document.id,
                features=list(updated_features),
            )
        )
        return report

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _log_divergences(report: PassReport) -> None:
        for result in report.divergences:
            logger.warning(
                "Repaired divergent link node=%s feature=%s (%s)",
                result.node_id,
                result.feature_id,
                result.action.value,
            )

    async def _apply_write(
        self, write: FeatureWrite, nodes: dict[str, MindmapNode]
    ) -> SyncResult:
        """Execute one planned feature write and describe the outcome."""
        feature_id = write.feature_id
        if write.action == SyncAction.CREATE_FEATURE:
            created = await self.store.insert_feature(write.draft)
            set_feature_link(nodes[write.node_id], created.id)
            feature_id = created.id
            logger.info(
                "Created feature %s for node %s", created.id, write.node_id
            )
        elif write.action == SyncAction.DELETE_FEATURE:
            await self.store.delete_feature(write.feature_id)
            logger.info(
                "Deleted feature %s (node %s removed)",
                write.feature_id,
                write.node_id,
            )
        else:
            await self.store.update_feature(write.feature_id, write.patch)
            logger.debug(
                "Updated feature %s from node %s: %s",
                write.feature_id,
                write.node_id,
                sorted(write.patch),
            )
        return SyncResult(
            action=write.action,
            node_id=write.node_id,
            feature_id=feature_id,
            divergence=write.divergence,
        )
