"""Pure reconciliation planning for both sync directions.

The planner decides *what* a pass has to do; ``SyncEngine`` does it.
Nothing here touches the store, so every decision can be tested from
plain lists of nodes and features.

Link resolution is the same in both directions.  A node and a feature
belong together when, in order of preference:

1. the node's ``featureId`` names the feature,
2. the feature's ``node_id`` names the node (one-sided link),
3. (features -> mindmap only) the node id is ``node_<feature id>``.

Any pairing other than a clean symmetric link is a divergence: it is
repaired and reported, never raised.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Any

from .models import (
    DEFAULT_CATEGORY,
    DEFAULT_COMPLEXITY,
    DEFAULT_PRIORITY,
    ROOT_NODE_ID,
    Connection,
    Feature,
    FeatureDraft,
    FeatureMetadata,
    MindmapDocument,
    MindmapNode,
    NodeMetadata,
    NodePosition,
    NodeStyle,
    SyncAction,
    SyncResult,
    priority_color,
)

# Region new nodes are dropped into, clear of the root at the origin.
PLACEMENT_X = (100.0, 500.0)
PLACEMENT_Y = (100.0, 400.0)


@dataclass(frozen=True)
class FeatureWrite:
    """One store mutation on the feature collection.

    Exactly one of *draft* (create) or *patch* (update) is set, except for
    deletes which carry neither.
    """

    action: SyncAction
    node_id: str | None = None
    feature_id: str | None = None
    draft: FeatureDraft | None = None
    patch: dict[str, Any] | None = None
    divergence: bool = False


@dataclass
class MindmapToFeaturesPlan:
    nodes: list[MindmapNode]
    connections: list[Connection]
    writes: list[FeatureWrite] = field(default_factory=list)
    results: list[SyncResult] = field(default_factory=list)


@dataclass
class FeaturesToMindmapPlan:
    nodes: list[MindmapNode]
    connections: list[Connection]
    results: list[SyncResult] = field(default_factory=list)
    link_repairs: list[FeatureWrite] = field(default_factory=list)


def node_id_for_feature(feature_id: str) -> str:
    """Deterministic id of the node synthesised for a feature."""
    return f"node_{feature_id}"


def node_fields(node: MindmapNode) -> dict[str, Any]:
    """Project a node onto the feature columns it owns."""
    meta = node.metadata or NodeMetadata()
    return {
        "title": node.title,
        "description": node.description or None,
        "priority": meta.priority or DEFAULT_PRIORITY,
        "complexity": meta.complexity or DEFAULT_COMPLEXITY,
        "category": meta.category or DEFAULT_CATEGORY,
    }


def _with_node_link(metadata: FeatureMetadata, node_id: str) -> dict:
    data = metadata.model_dump(exclude_none=True)
    data["node_id"] = node_id
    return data


def set_feature_link(node: MindmapNode, feature_id: str) -> None:
    """Record *feature_id* on *node*, creating the metadata bag if needed."""
    if node.metadata is None:
        node.metadata = NodeMetadata()
    node.metadata.feature_id = feature_id


# ---------------------------------------------------------------------------
# mindmap -> features
# ---------------------------------------------------------------------------


def plan_mindmap_to_features(
    document: MindmapDocument,
    updated_nodes: list[MindmapNode],
    features: list[Feature],
    now: str,
) -> MindmapToFeaturesPlan:
    """Plan the feature writes that make *features* mirror *updated_nodes*.

    The node side wins for every shared field.  Existing links are written
    onto the node objects in *updated_nodes* as they are resolved; links to
    features that have yet to be created are filled in by the engine.

    Args:
        document: The persisted document, before this pass.
        updated_nodes: The full proposed node list (root optional).
        features: Every feature of the document's project.
        now: ISO 8601 timestamp stamped on created features.

    Returns:
        The plan, including the node list to persist (root first).
    """
    by_id = {f.id: f for f in features}
    by_node_id: dict[str, Feature] = {}
    for feature in features:
        if feature.node_id and feature.node_id not in by_node_id:
            by_node_id[feature.node_id] = feature

    nodes = _with_root(updated_nodes, document.root)
    plan = MindmapToFeaturesPlan(
        nodes=nodes,
        connections=_surviving_connections(document.connections, nodes),
    )
    claimed: set[str] = set()

    for node in nodes:
        if node.is_root:
            continue

        linked_id = node.feature_id
        feature = by_id.get(linked_id) if linked_id else None
        if feature is not None and feature.id in claimed:
            # Two nodes claim one feature; the later one gets its own.
            feature = None
        if feature is None:
            candidate = by_node_id.get(node.id)
            if candidate is not None and candidate.id not in claimed:
                feature = candidate

        if feature is None:
            plan.writes.append(
                FeatureWrite(
                    action=SyncAction.CREATE_FEATURE,
                    node_id=node.id,
                    draft=_draft_from_node(document.project_id, node, now),
                    divergence=linked_id is not None,
                )
            )
            continue

        claimed.add(feature.id)
        divergence = linked_id != feature.id or feature.node_id != node.id
        set_feature_link(node, feature.id)

        patch = {
            key: value
            for key, value in node_fields(node).items()
            if getattr(feature, key) != value
        }
        if feature.node_id != node.id:
            patch["metadata"] = _with_node_link(feature.metadata, node.id)

        if patch:
            action = (
                SyncAction.UPDATE_FEATURE
                if set(patch) - {"metadata"}
                else SyncAction.RELINK
            )
            plan.writes.append(
                FeatureWrite(
                    action=action,
                    node_id=node.id,
                    feature_id=feature.id,
                    patch=patch,
                    divergence=divergence,
                )
            )
        else:
            plan.results.append(
                SyncResult(
                    action=SyncAction.RELINK if divergence else SyncAction.SKIP,
                    node_id=node.id,
                    feature_id=feature.id,
                    divergence=divergence,
                )
            )

    plan.writes.extend(
        _cascade_deletes(document, nodes, features, claimed)
    )
    return plan


def _with_root(
    nodes: list[MindmapNode], root: MindmapNode
) -> list[MindmapNode]:
    """Return *nodes* with the root first, restoring it when omitted."""
    given_root = next((n for n in nodes if n.is_root), None)
    rest = [n for n in nodes if not n.is_root]
    return [given_root or root] + rest


def _surviving_connections(
    connections: list[Connection], nodes: list[MindmapNode]
) -> list[Connection]:
    ids = {n.id for n in nodes}
    return [c for c in connections if c.from_ in ids and c.to in ids]


def _draft_from_node(
    project_id: str, node: MindmapNode, now: str
) -> FeatureDraft:
    meta = node.metadata or NodeMetadata()
    return FeatureDraft(
        project_id=project_id,
        **node_fields(node),
        metadata=FeatureMetadata(
            node_id=node.id,
            sync_timestamp=now,
            generated_by_ai=meta.generated_by_ai,
            generation_timestamp=meta.generation_timestamp,
        ),
    )


def _cascade_deletes(
    document: MindmapDocument,
    nodes: list[MindmapNode],
    features: list[Feature],
    claimed: set[str],
) -> list[FeatureWrite]:
    """Features whose node was in the document and has now been removed."""
    kept = {n.id for n in nodes}
    removed = {n.id: n for n in document.nodes if n.id not in kept}
    if not removed:
        return []

    doomed: dict[str, str] = {}
    for node in removed.values():
        if node.feature_id:
            doomed[node.feature_id] = node.id
    for feature in features:
        if feature.node_id in removed:
            doomed.setdefault(feature.id, feature.node_id)

    known = {f.id for f in features}
    return [
        FeatureWrite(
            action=SyncAction.DELETE_FEATURE,
            node_id=node_id,
            feature_id=feature_id,
        )
        for feature_id, node_id in doomed.items()
        if feature_id in known and feature_id not in claimed
    ]


# ---------------------------------------------------------------------------
# features -> mindmap
# ---------------------------------------------------------------------------


def plan_features_to_mindmap(
    document: MindmapDocument,
    updated_features: list[Feature],
    all_features: list[Feature],
    rng: random.Random,
) -> FeaturesToMindmapPlan:
    """Plan the node list that makes *document* mirror *updated_features*.

    The feature side wins for every shared field; position and style of
    existing nodes are left alone.  Nodes linked to features that no
    longer exist are removed.  Updated features the store does not hold
    are skipped, so no node is ever linked to a missing feature.

    Args:
        document: The persisted document.
        updated_features: Features to reconcile into the document.
        all_features: Every feature of the project as stored; the only
            source for which features exist.
        rng: Source of randomness for new node positions.
    """
    nodes = [n.model_copy(deep=True) for n in document.all_nodes()]
    connections = list(document.connections)
    plan = FeaturesToMindmapPlan(nodes=nodes, connections=connections)

    known = {f.id for f in all_features}
    _remove_orphans(plan, known)

    latest: dict[str, Feature] = {}
    for feature in updated_features:
        if feature.id not in known:
            plan.results.append(
                SyncResult(
                    action=SyncAction.SKIP,
                    feature_id=feature.id,
                    detail="feature not found in store",
                )
            )
            continue
        latest[feature.id] = feature

    for feature in latest.values():
        by_id = {n.id: n for n in plan.nodes}
        by_feature = {
            n.feature_id: n for n in plan.nodes if n.feature_id
        }

        node = by_feature.get(feature.id)
        adopted = False
        if node is None:
            for candidate_id in (
                feature.node_id,
                node_id_for_feature(feature.id),
            ):
                candidate = by_id.get(candidate_id) if candidate_id else None
                if (
                    candidate is not None
                    and not candidate.is_root
                    and candidate.feature_id is None
                ):
                    node, adopted = candidate, True
                    break

        if node is None:
            node = _new_node(feature, rng)
            plan.nodes.append(node)
            plan.connections.append(
                Connection(from_=ROOT_NODE_ID, to=node.id)
            )
            plan.results.append(
                SyncResult(
                    action=SyncAction.CREATE_NODE,
                    node_id=node.id,
                    feature_id=feature.id,
                )
            )
        else:
            changed = _apply_feature(node, feature)
            if adopted:
                action = SyncAction.RELINK
            elif changed:
                action = SyncAction.UPDATE_NODE
            else:
                action = SyncAction.SKIP
            plan.results.append(
                SyncResult(
                    action=action,
                    node_id=node.id,
                    feature_id=feature.id,
                    divergence=adopted
                    or (
                        feature.node_id is not None
                        and feature.node_id != node.id
                    ),
                )
            )

        if feature.node_id != node.id:
            plan.link_repairs.append(
                FeatureWrite(
                    action=SyncAction.RELINK,
                    node_id=node.id,
                    feature_id=feature.id,
                    patch={
                        "metadata": _with_node_link(
                            feature.metadata, node.id
                        )
                    },
                    divergence=feature.node_id is not None,
                )
            )

    return plan


def _remove_orphans(plan: FeaturesToMindmapPlan, known: set[str]) -> None:
    """Drop nodes whose linked feature was deleted, re-parenting children."""
    orphans = {
        n.id: n
        for n in plan.nodes
        if not n.is_root and n.feature_id and n.feature_id not in known
    }
    if not orphans:
        return

    def surviving_parent(parent_id: str | None) -> str:
        seen: set[str] = set()
        while parent_id in orphans and parent_id not in seen:
            seen.add(parent_id)
            parent_id = orphans[parent_id].parent_id
        return parent_id or ROOT_NODE_ID

    plan.nodes = [n for n in plan.nodes if n.id not in orphans]
    plan.connections = [
        c
        for c in plan.connections
        if c.from_ not in orphans and c.to not in orphans
    ]
    existing = {(c.from_, c.to) for c in plan.connections}
    for node in plan.nodes:
        if node.parent_id in orphans:
            node.parent_id = surviving_parent(node.parent_id)
            if (node.parent_id, node.id) not in existing:
                plan.connections.append(
                    Connection(from_=node.parent_id, to=node.id)
                )
                existing.add((node.parent_id, node.id))

    for node in orphans.values():
        plan.results.append(
            SyncResult(
                action=SyncAction.REMOVE_NODE,
                node_id=node.id,
                feature_id=node.feature_id,
                divergence=True,
                detail="linked feature no longer exists",
            )
        )


def _apply_feature(node: MindmapNode, feature: Feature) -> bool:
    """Copy the feature's fields onto *node*; return True if anything changed."""
    before = node.model_dump()
    node.title = feature.title
    node.description = feature.description or None
    if node.metadata is None:
        node.metadata = NodeMetadata()
    node.metadata.priority = feature.priority or DEFAULT_PRIORITY
    node.metadata.complexity = feature.complexity or DEFAULT_COMPLEXITY
    node.metadata.category = feature.category or DEFAULT_CATEGORY
    node.metadata.feature_id = feature.id
    return node.model_dump() != before


def _new_node(feature: Feature, rng: random.Random) -> MindmapNode:
    priority = feature.priority or DEFAULT_PRIORITY
    return MindmapNode(
        id=node_id_for_feature(feature.id),
        title=feature.title,
        description=feature.description or None,
        parent_id=ROOT_NODE_ID,
        position=NodePosition(
            x=rng.uniform(*PLACEMENT_X),
            y=rng.uniform(*PLACEMENT_Y),
        ),
        style=NodeStyle(color=priority_color(priority), size="medium"),
        metadata=NodeMetadata(
            priority=priority,
            complexity=feature.complexity or DEFAULT_COMPLEXITY,
            category=feature.category or DEFAULT_CATEGORY,
            feature_id=feature.id,
        ),
    )
