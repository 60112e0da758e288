"""Pydantic models for the mindmap <-> feature sync engine.

Defines the shared vocabulary of both representations and the records the
engine produces:

- ``MindmapNode`` / ``MindmapDocument``: the graph side, one JSON document
  per project.
- ``Feature`` / ``FeatureDraft``: the relational side, one row per feature.
- ``UserStory`` / ``UserStoryDraft``: rows hanging off a feature.
- ``SyncAction``, ``SyncResult``, ``PassReport``: outcome of one
  reconciliation pass.
- ``SyncStatus``, ``SyncSnapshot``: state published by the controller.
- ``ChangeEvent``, ``SyncEvent``: live-change and engine notifications.

Wire keys on the mindmap side are camelCase (``parentId``, ``featureId``,
``rootNode``); the models expose snake_case attributes with aliases and
always serialise by alias.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

ROOT_NODE_ID = "root"

DEFAULT_PRIORITY = "medium"
DEFAULT_COMPLEXITY = "medium"
DEFAULT_CATEGORY = "core"

PRIORITY_COLORS: dict[str, str] = {
    "high": "#ef4444",
    "medium": "#3b82f6",
    "low": "#10b981",
}
FALLBACK_COLOR = "#6b7280"

MINDMAP_TO_FEATURES = "mindmap-to-features"
FEATURES_TO_MINDMAP = "features-to-mindmap"


def priority_color(priority: str | None) -> str:
    """Return the node colour for a feature priority."""
    return PRIORITY_COLORS.get(priority or "", FALLBACK_COLOR)


# ---------------------------------------------------------------------------
# Mindmap side
# ---------------------------------------------------------------------------


class NodePosition(BaseModel):
    x: float = 0
    y: float = 0


class NodeStyle(BaseModel):
    color: str = "#3b82f6"
    size: Literal["small", "medium", "large"] = "medium"


class NodeMetadata(BaseModel):
    """Metadata bag attached to a mindmap node.

    ``feature_id`` is the back-reference to the owning feature. ``None``
    means the node has never been materialised as a feature. Keys written
    by other clients are kept so the document round-trips.
    """

    priority: str | None = None
    complexity: str | None = None
    category: str | None = None
    feature_id: str | None = Field(default=None, alias="featureId")
    generated_by_ai: bool | None = None
    node_id: str | None = None
    generation_timestamp: str | None = None

    model_config = {"extra": "allow", "populate_by_name": True}


class MindmapNode(BaseModel):
    """One node of a mindmap document.

    Attributes:
        id: Client-issued id, unique within the document.  ``"root"`` is
            reserved for the root node.
        title: User-visible label.
        description: Optional longer text.
        parent_id: Parent node id; ``None`` only for the root.
        position: Layout coordinate, round-tripped unchanged.
        style: Cosmetic style, round-tripped unchanged.
        metadata: Semantic fields plus the ``featureId`` link.
    """

    id: str
    title: str
    description: str | None = None
    parent_id: str | None = Field(default=None, alias="parentId")
    position: NodePosition = Field(default_factory=NodePosition)
    style: NodeStyle = Field(default_factory=NodeStyle)
    metadata: NodeMetadata | None = None

    model_config = {"populate_by_name": True}

    @property
    def is_root(self) -> bool:
        return self.id == ROOT_NODE_ID

    @property
    def feature_id(self) -> str | None:
        """The linked feature id, or ``None`` when unlinked."""
        if self.metadata is None:
            return None
        return self.metadata.feature_id

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class Connection(BaseModel):
    from_: str = Field(alias="from")
    to: str

    model_config = {"populate_by_name": True, "frozen": True}

    def to_json(self) -> dict[str, str]:
        return self.model_dump(by_alias=True)


def default_root(title: str = "Project") -> MindmapNode:
    """Build the root node used when a document carries none."""
    return MindmapNode(
        id=ROOT_NODE_ID,
        title=title,
        style=NodeStyle(color="#1f2937", size="large"),
    )


class MindmapDocument(BaseModel):
    """The single mindmap record of a project.

    ``version`` is carried for completeness but never consulted as a write
    guard: document writes are last-write-wins.
    """

    id: str
    project_id: str
    root: MindmapNode = Field(default_factory=default_root)
    nodes: list[MindmapNode] = []
    connections: list[Connection] = []
    version: int = 1
    updated_at: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> MindmapDocument:
        """Build a document from a persisted row, normalising the body.

        Two body shapes exist: ``{rootNode, nodes, connections}`` and a
        flat ``{nodes}`` array holding the root among the other nodes.
        Both produce the same document.
        """
        body = row.get("data")
        if not isinstance(body, dict):
            body = {}

        raw_nodes = body.get("nodes")
        if not isinstance(raw_nodes, list):
            raw_nodes = []
        nodes = [
            MindmapNode.model_validate(n)
            for n in raw_nodes
            if isinstance(n, dict)
        ]

        raw_root = body.get("rootNode")
        if isinstance(raw_root, dict):
            root = MindmapNode.model_validate(raw_root)
        else:
            root = next((n for n in nodes if n.is_root), None)
            if root is None:
                root = default_root()

        raw_connections = body.get("connections")
        if not isinstance(raw_connections, list):
            raw_connections = []
        connections = [
            Connection.model_validate(c)
            for c in raw_connections
            if isinstance(c, dict) and "from" in c and "to" in c
        ]

        return cls(
            id=str(row["id"]),
            project_id=str(row["project_id"]),
            root=root,
            nodes=[n for n in nodes if not n.is_root],
            connections=connections,
            version=row.get("version") or 1,
            updated_at=row.get("updated_at"),
        )

    def all_nodes(self) -> list[MindmapNode]:
        """Root first, then every other node in document order."""
        return [self.root] + list(self.nodes)

    def to_body(self) -> dict[str, Any]:
        """Serialise to the canonical persisted body shape."""
        return build_body(self.all_nodes(), self.connections, self.root)


def build_body(
    nodes: list[MindmapNode],
    connections: list[Connection],
    fallback_root: MindmapNode | None = None,
) -> dict[str, Any]:
    """Split *nodes* into ``rootNode`` and ``nodes`` and serialise them.

    If *nodes* carries no root, *fallback_root* (or a default root) is used
    so a document is never written without one.
    """
    root = next((n for n in nodes if n.is_root), None)
    if root is None:
        root = fallback_root or default_root()
    return {
        "rootNode": root.to_json(),
        "nodes": [n.to_json() for n in nodes if not n.is_root],
        "connections": [c.to_json() for c in connections],
    }


# ---------------------------------------------------------------------------
# Feature side
# ---------------------------------------------------------------------------


class FeatureMetadata(BaseModel):
    """Metadata bag attached to a feature row.

    ``node_id`` is the forward reference to the mindmap node.
    """

    node_id: str | None = None
    generated_by_ai: bool | None = None
    generation_timestamp: str | None = None
    sync_timestamp: str | None = None
    correlation_id: str | None = None

    model_config = {"extra": "allow"}


class FeatureDraft(BaseModel):
    """Insert payload for a feature; the backend assigns ``id``."""

    project_id: str
    title: str
    description: str | None = None
    priority: str | None = None
    complexity: str | None = None
    category: str | None = None
    metadata: FeatureMetadata = Field(default_factory=FeatureMetadata)

    @field_validator("metadata", mode="before")
    @classmethod
    def _null_metadata(cls, value: Any) -> Any:
        return {} if value is None else value

    def to_row(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class Feature(FeatureDraft):
    """A persisted feature row."""

    id: str

    @property
    def node_id(self) -> str | None:
        return self.metadata.node_id


class UserStoryDraft(BaseModel):
    feature_id: str
    title: str
    description: str | None = None
    acceptance_criteria: list[str] = []
    priority: str = DEFAULT_PRIORITY
    status: str = "draft"

    def to_row(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class UserStory(UserStoryDraft):
    id: str


# ---------------------------------------------------------------------------
# Pass results
# ---------------------------------------------------------------------------


class SyncAction(str, Enum):
    """Side effects a reconciliation pass can produce."""

    SKIP = "skip"
    CREATE_FEATURE = "create_feature"
    UPDATE_FEATURE = "update_feature"
    DELETE_FEATURE = "delete_feature"
    CREATE_NODE = "create_node"
    UPDATE_NODE = "update_node"
    REMOVE_NODE = "remove_node"
    RELINK = "relink"


class SyncResult(BaseModel):
    """Outcome for one node/feature pair within a pass.

    Attributes:
        action: What was done.
        node_id: Node involved, if any.
        feature_id: Feature involved, if any.
        divergence: True when the pair's link was one-sided or stale
            and had to be repaired.
        detail: Optional human-readable note.
    """

    action: SyncAction
    node_id: str | None = None
    feature_id: str | None = None
    divergence: bool = False
    detail: str | None = None

    model_config = {"frozen": True}


class PassReport(BaseModel):
    """Aggregate outcome of one reconciliation pass."""

    direction: str
    project_id: str | None = None
    mindmap_id: str | None = None
    nodes: list[MindmapNode] = []
    results: list[SyncResult] = []
    started_at: str
    completed_at: str | None = None

    model_config = {"frozen": True}

    def _with(self, action: SyncAction) -> list[SyncResult]:
        return [r for r in self.results if r.action == action]

    @property
    def created_features(self) -> list[SyncResult]:
        return self._with(SyncAction.CREATE_FEATURE)

    @property
    def updated_features(self) -> list[SyncResult]:
        return self._with(SyncAction.UPDATE_FEATURE)

    @property
    def deleted_features(self) -> list[SyncResult]:
        return self._with(SyncAction.DELETE_FEATURE)

    @property
    def created_nodes(self) -> list[SyncResult]:
        return self._with(SyncAction.CREATE_NODE)

    @property
    def updated_nodes(self) -> list[SyncResult]:
        return self._with(SyncAction.UPDATE_NODE)

    @property
    def removed_nodes(self) -> list[SyncResult]:
        return self._with(SyncAction.REMOVE_NODE)

    @property
    def relinked(self) -> list[SyncResult]:
        return self._with(SyncAction.RELINK)

    @property
    def skipped(self) -> list[SyncResult]:
        return self._with(SyncAction.SKIP)

    @property
    def divergences(self) -> list[SyncResult]:
        return [r for r in self.results if r.divergence]

    def summary(self) -> str:
        """Format a human-readable summary of the pass.

        Returns:
            Multi-line summary string with counts by action.
        """
        lines = [
            f"Sync pass '{self.direction}'"
            + (f" for project '{self.project_id}'" if self.project_id else ""),
            f"  Features created: {len(self.created_features)}",
            f"  Features updated: {len(self.updated_features)}",
            f"  Features deleted: {len(self.deleted_features)}",
            f"  Nodes created:    {len(self.created_nodes)}",
            f"  Nodes updated:    {len(self.updated_nodes)}",
            f"  Nodes removed:    {len(self.removed_nodes)}",
            f"  Relinked:         {len(self.relinked)}",
            f"  Unchanged:        {len(self.skipped)}",
            f"  Divergences:      {len(self.divergences)}",
        ]
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# Controller state and notifications
# ---------------------------------------------------------------------------


class SyncStatus(str, Enum):
    SYNCED = "synced"
    SYNCING = "syncing"
    ERROR = "error"
    OFFLINE = "offline"


class SyncSnapshot(BaseModel):
    """Point-in-time view of a controller, published to listeners."""

    status: SyncStatus
    conflict_count: int = 0
    last_sync_time: str | None = None
    pending: int = 0
    message: str | None = None
    last_error: str | None = None

    model_config = {"frozen": True}


class ChangeEvent(BaseModel):
    """A live-change notification from one of the two feeds.

    Notifications are advisory: consumers re-read rather than trusting
    ``payload`` as the record of truth.
    """

    type: Literal["mindmap", "features"]
    project_id: str
    payload: dict[str, Any] | None = None

    model_config = {"frozen": True}


class SyncEvent(BaseModel):
    """Emitted by the engine after a completed pass."""

    name: str
    project_id: str | None = None
    mindmap_id: str | None = None
    nodes: list[MindmapNode] = []
    features: list[Feature] = []

    model_config = {"frozen": True}
