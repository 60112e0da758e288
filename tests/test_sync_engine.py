"""Tests for SyncEngine against the in-memory store.

Covers:
- mindmap -> features: create, back-fill, single document write, cascade
- features -> mindmap: node synthesis, update, no-document no-op
- idempotence, link integrity, root immutability, convergence
- event emission and error propagation
"""

from __future__ import annotations

import random

import pytest

from mindmap_sync.errors import NotFoundError, TransportError
from mindmap_sync.sync.engine import SyncEngine
from mindmap_sync.sync.models import (
    FEATURES_TO_MINDMAP,
    MINDMAP_TO_FEATURES,
    Feature,
    FeatureDraft,
    MindmapDocument,
    MindmapNode,
    NodeMetadata,
)
from mindmap_sync.sync.store import MemoryStore

SHARED_FIELDS = ("title", "description", "priority", "complexity", "category")

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _new_doc(store: MemoryStore, project_id: str = "p1") -> MindmapDocument:
    return await store.create_mindmap_document(project_id, [], [])


async def _add_feature(store: MemoryStore, **fields) -> Feature:
    fields.setdefault("project_id", "p1")
    return await store.insert_feature(FeatureDraft(**fields))


def _pairs_consistent(doc: MindmapDocument, features: list[Feature]) -> bool:
    by_id = {f.id: f for f in features}
    for node in doc.nodes:
        feature = by_id.get(node.feature_id)
        if feature is None:
            return False
        meta = node.metadata
        node_side = (
            node.title,
            node.description,
            meta.priority,
            meta.complexity,
            meta.category,
        )
        feature_side = tuple(getattr(feature, f) for f in SHARED_FIELDS)
        if node_side != feature_side:
            return False
    return True


class FailingStore(MemoryStore):
    """MemoryStore whose feature inserts fail."""

    async def insert_feature(self, draft):
        raise TransportError("insert failed", status_code=503)


# ---------------------------------------------------------------------------
# mindmap -> features
# ---------------------------------------------------------------------------


class TestMindmapToFeatures:
    async def test_hand_drawn_node_creates_feature(self, engine, memory_store):
        """A node without featureId becomes exactly one feature and is linked."""
        doc = await _new_doc(memory_store)
        node = MindmapNode(
            id="n9", title="Export CSV", parent_id="root", metadata=NodeMetadata()
        )

        report = await engine.mindmap_to_features(doc.id, [node])

        features = await memory_store.list_features("p1")
        assert len(features) == 1
        assert features[0].title == "Export CSV"
        assert node.metadata.feature_id == features[0].id
        assert len(report.created_features) == 1

    async def test_link_persisted_in_same_pass(self, engine, memory_store):
        doc = await _new_doc(memory_store)
        node = MindmapNode(id="a", title="A", parent_id="root")

        await engine.mindmap_to_features(doc.id, [node])

        stored = await memory_store.get_mindmap_document("p1")
        features = await memory_store.list_features("p1")
        assert stored.nodes[0].feature_id == features[0].id
        assert features[0].node_id == "a"

    async def test_idempotent(self, engine, memory_store):
        doc = await _new_doc(memory_store)
        nodes = [
            MindmapNode(id="a", title="A", parent_id="root"),
            MindmapNode(id="b", title="B", parent_id="a"),
        ]

        await engine.mindmap_to_features(doc.id, nodes)
        first = {f.id: f.title for f in await memory_store.list_features("p1")}
        report = await engine.mindmap_to_features(doc.id, nodes)
        second = {f.id: f.title for f in await memory_store.list_features("p1")}

        assert first == second
        assert len(report.skipped) == 2
        assert report.created_features == []

    async def test_idempotent_when_caller_resends_unlinked_nodes(
        self, engine, memory_store
    ):
        """Resending the original unlinked nodes relinks instead of duplicating."""
        doc = await _new_doc(memory_store)
        await engine.mindmap_to_features(
            doc.id, [MindmapNode(id="a", title="A", parent_id="root")]
        )
        await engine.mindmap_to_features(
            doc.id, [MindmapNode(id="a", title="A", parent_id="root")]
        )
        assert len(await memory_store.list_features("p1")) == 1

    async def test_node_wins_on_update(self, engine, memory_store):
        doc = await _new_doc(memory_store)
        feature = await _add_feature(
            memory_store, title="Old", priority="low", metadata={"node_id": "a"}
        )
        node = MindmapNode(
            id="a",
            title="New",
            parent_id="root",
            metadata=NodeMetadata(feature_id=feature.id, priority="high"),
        )

        report = await engine.mindmap_to_features(doc.id, [node])

        updated = memory_store.features[feature.id]
        assert updated["title"] == "New"
        assert updated["priority"] == "high"
        assert [r.feature_id for r in report.updated_features] == [feature.id]

    async def test_root_never_becomes_feature(self, engine, memory_store):
        doc = await _new_doc(memory_store)
        root = MindmapNode(id="root", title="My App")

        await engine.mindmap_to_features(doc.id, [root])

        assert await memory_store.list_features("p1") == []
        stored = await memory_store.get_mindmap_document("p1")
        assert stored.root.id == "root"
        assert stored.root.title == "My App"

    async def test_removed_node_deletes_feature(self, engine, memory_store):
        doc = await _new_doc(memory_store)
        a = MindmapNode(id="a", title="A", parent_id="root")
        b = MindmapNode(id="b", title="B", parent_id="root")
        await engine.mindmap_to_features(doc.id, [a, b])

        report = await engine.mindmap_to_features(doc.id, [a])

        titles = [f.title for f in await memory_store.list_features("p1")]
        assert titles == ["A"]
        assert [r.node_id for r in report.deleted_features] == ["b"]

    async def test_emits_event(self, engine, memory_store):
        doc = await _new_doc(memory_store)
        seen = []
        engine.on(MINDMAP_TO_FEATURES, seen.append)

        await engine.mindmap_to_features(
            doc.id, [MindmapNode(id="a", title="A", parent_id="root")]
        )

        assert len(seen) == 1
        assert seen[0].mindmap_id == doc.id
        assert [n.id for n in seen[0].nodes] == ["root", "a"]

    async def test_unknown_mindmap_raises(self, engine):
        with pytest.raises(NotFoundError):
            await engine.mindmap_to_features("missing", [])

    async def test_store_error_aborts_before_document_write(self):
        store = FailingStore()
        engine = SyncEngine(store, rng=random.Random(1))
        doc = await _new_doc(store)
        seen = []
        engine.on(MINDMAP_TO_FEATURES, seen.append)

        with pytest.raises(TransportError):
            await engine.mindmap_to_features(
                doc.id, [MindmapNode(id="a", title="A", parent_id="root")]
            )

        stored = await store.get_mindmap_document("p1")
        assert stored.nodes == []
        assert seen == []


# ---------------------------------------------------------------------------
# features -> mindmap
# ---------------------------------------------------------------------------


class TestFeaturesToMindmap:
    async def test_feature_synthesises_node(self, engine, memory_store):
        """One high-priority feature and an empty document yield one red node."""
        await _new_doc(memory_store)
        feature = Feature(
            id="f1", project_id="p1", title="Login", priority="high"
        )
        memory_store.features["f1"] = feature.model_dump()

        report = await engine.features_to_mindmap("p1", [feature])

        stored = await memory_store.get_mindmap_document("p1")
        assert len(stored.nodes) == 1
        node = stored.nodes[0]
        assert node.id == "node_f1"
        assert node.parent_id == "root"
        assert node.style.color == "#ef4444"
        assert node.feature_id == "f1"
        assert memory_store.features["f1"]["metadata"]["node_id"] == "node_f1"
        assert len(report.created_nodes) == 1

    async def test_no_document_is_noop(self, engine, memory_store):
        seen = []
        engine.on(FEATURES_TO_MINDMAP, seen.append)
        feature = await _add_feature(memory_store, title="Lonely")

        report = await engine.features_to_mindmap("p1", [feature])

        assert report.results == []
        assert report.mindmap_id is None
        assert memory_store.mindmaps == {}
        assert seen == []

    async def test_feature_wins_on_update(self, engine, memory_store):
        doc = await _new_doc(memory_store)
        await engine.mindmap_to_features(
            doc.id, [MindmapNode(id="a", title="Draft", parent_id="root")]
        )
        feature = (await memory_store.list_features("p1"))[0]
        feature = await memory_store.update_feature(
            feature.id, {"title": "Final", "priority": "low"}
        )

        await engine.features_to_mindmap("p1", [feature])

        stored = await memory_store.get_mindmap_document("p1")
        assert [n.id for n in stored.nodes] == ["a"]
        assert stored.nodes[0].title == "Final"
        assert stored.nodes[0].metadata.priority == "low"

    async def test_deleted_feature_removes_node(self, engine, memory_store):
        doc = await _new_doc(memory_store)
        await engine.mindmap_to_features(
            doc.id,
            [
                MindmapNode(id="a", title="A", parent_id="root"),
                MindmapNode(id="b", title="B", parent_id="root"),
            ],
        )
        doomed = next(
            f for f in await memory_store.list_features("p1") if f.title == "B"
        )
        await memory_store.delete_feature(doomed.id)

        report = await engine.features_to_mindmap("p1", [])

        stored = await memory_store.get_mindmap_document("p1")
        assert [n.id for n in stored.nodes] == ["a"]
        assert [r.node_id for r in report.removed_nodes] == ["b"]

    async def test_feature_missing_from_store_is_skipped(
        self, engine, memory_store
    ):
        """A stale feature row never produces a node linked to nothing."""
        doc = await _new_doc(memory_store)
        stale = Feature(id="gone", project_id="p1", title="Gone")

        report = await engine.features_to_mindmap("p1", [stale])

        stored = await memory_store.get_mindmap_document("p1")
        assert stored.nodes == []
        assert stored.version == doc.version + 1
        assert report.created_nodes == []
        assert [r.feature_id for r in report.skipped] == ["gone"]
        assert memory_store.features == {}

    async def test_idempotent(self, engine, memory_store):
        await _new_doc(memory_store)
        feature = await _add_feature(memory_store, title="Search")

        await engine.features_to_mindmap("p1", [feature])
        feature = (await memory_store.list_features("p1"))[0]
        report = await engine.features_to_mindmap("p1", [feature])

        stored = await memory_store.get_mindmap_document("p1")
        assert len(stored.nodes) == 1
        assert report.created_nodes == []


# ---------------------------------------------------------------------------
# Cross-direction properties
# ---------------------------------------------------------------------------


class TestConvergence:
    async def test_features_then_mindmap(self, engine, memory_store):
        await _new_doc(memory_store)
        for title in ("Login", "Export", "Billing"):
            await _add_feature(memory_store, title=title, priority="high")
        await engine.features_to_mindmap(
            "p1", await memory_store.list_features("p1")
        )

        doc = await memory_store.get_mindmap_document("p1")
        doc.nodes[0].title = "Sign in"
        await engine.mindmap_to_features(doc.id, doc.all_nodes())

        stored = await memory_store.get_mindmap_document("p1")
        features = await memory_store.list_features("p1")
        assert len(features) == 3
        assert _pairs_consistent(stored, features)

    async def test_mindmap_then_features(self, engine, memory_store):
        doc = await _new_doc(memory_store)
        await engine.mindmap_to_features(
            doc.id,
            [
                MindmapNode(id="a", title="A", parent_id="root"),
                MindmapNode(id="b", title="B", parent_id="a"),
            ],
        )
        feature = (await memory_store.list_features("p1"))[0]
        await memory_store.update_feature(feature.id, {"description": "why"})

        await engine.features_to_mindmap(
            "p1", await memory_store.list_features("p1")
        )

        stored = await memory_store.get_mindmap_document("p1")
        features = await memory_store.list_features("p1")
        assert _pairs_consistent(stored, features)
        assert stored.root.id == "root"
