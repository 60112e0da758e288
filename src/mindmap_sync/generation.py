"""Import of generation-service responses.

A generation response is a JSON object with three required keys::

    {
      "mindmap": {"rootNode": {...}, "nodes": [...], "connections": [...]},
      "features": [{"nodeId": "n1", "ref": "f1", "title": ..., ...}],
      "userStories": [{"featureRef": "f1", "title": ..., ...}]
    }

The whole response is validated, and every story joined to its feature,
before anything is written; a rejected response leaves no rows behind.

Stories are joined to features by correlation id.  A feature's id is its
``ref`` when present, otherwise its ``nodeId``.  A story names its feature
with ``featureRef``; ``featureTitle`` is accepted instead only when exactly
one feature carries that title.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Callable
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError

from .core.async_utils import gather_limited
from .errors import GenerationValidationError
from .sync.models import (
    DEFAULT_CATEGORY,
    DEFAULT_COMPLEXITY,
    DEFAULT_PRIORITY,
    Connection,
    FeatureDraft,
    FeatureMetadata,
    Feature,
    MindmapDocument,
    MindmapNode,
    UserStory,
    UserStoryDraft,
    default_root,
)
from .sync.planner import set_feature_link
from .sync.store import StoreAdapter, utc_now

logger = logging.getLogger(__name__)

REQUIRED_KEYS = ("mindmap", "features", "userStories")


class GeneratedFeature(BaseModel):
    node_id: str | None = Field(default=None, alias="nodeId")
    ref: str | None = None
    title: str
    description: str | None = None
    priority: str | None = None
    category: str | None = None
    complexity: str | None = None

    model_config = {"populate_by_name": True}

    @property
    def correlation_id(self) -> str | None:
        return self.ref or self.node_id


class GeneratedStory(BaseModel):
    feature_ref: str | None = Field(default=None, alias="featureRef")
    feature_title: str | None = Field(default=None, alias="featureTitle")
    title: str
    description: str | None = None
    acceptance_criteria: list[str] = Field(
        default_factory=list, alias="acceptanceCriteria"
    )
    priority: str | None = None

    model_config = {"populate_by_name": True}


class GeneratedMindmap(BaseModel):
    """The mindmap part of a response; the root may sit among the nodes."""

    root_node: MindmapNode | None = Field(default=None, alias="rootNode")
    nodes: list[MindmapNode] = []
    connections: list[Connection] = []

    model_config = {"populate_by_name": True}

    def to_document(self, project_id: str) -> MindmapDocument:
        root = self.root_node or next(
            (n for n in self.nodes if n.is_root), None
        )
        return MindmapDocument(
            id="generated",
            project_id=project_id,
            root=root or default_root(),
            nodes=[n for n in self.nodes if not n.is_root],
            connections=self.connections,
        )


class GenerationResponse(BaseModel):
    mindmap: GeneratedMindmap
    features: list[GeneratedFeature]
    user_stories: list[GeneratedStory] = Field(alias="userStories")

    model_config = {"populate_by_name": True}


class GenerationProgress(BaseModel):
    stage: Literal[
        "validating",
        "creating_mindmap",
        "creating_features",
        "creating_stories",
        "complete",
    ]
    progress: int
    current_action: str


class ImportResult(BaseModel):
    """Everything one import wrote."""

    mindmap: MindmapDocument
    features: list[Feature] = []
    user_stories: list[UserStory] = []


ProgressCallback = Callable[[GenerationProgress], None]


def parse_generation_response(data: Any) -> GenerationResponse:
    """Validate the shape of a raw generation response.

    Raises:
        GenerationValidationError: If a required key is missing or any
            entry has the wrong shape.
    """
    if not isinstance(data, dict):
        raise GenerationValidationError(
            "Generation response must be a JSON object",
            problems=[f"got {type(data).__name__}"],
        )

    missing = [key for key in REQUIRED_KEYS if key not in data]
    if missing:
        raise GenerationValidationError(
            f"Generation response is missing required keys: {', '.join(missing)}",
            missing_keys=missing,
        )

    try:
        return GenerationResponse.model_validate(data)
    except ValidationError as exc:
        problems = [
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
            for err in exc.errors()
        ]
        raise GenerationValidationError(
            "Generation response has malformed entries",
            problems=problems,
        ) from None


def join_stories(
    features: list[GeneratedFeature], stories: list[GeneratedStory]
) -> list[int]:
    """Resolve each story to the index of its feature.

    Returns:
        One feature index per story, in story order.

    Raises:
        GenerationValidationError: Listing every story that matches no
            feature or more than one.
    """
    by_ref: dict[str, list[int]] = {}
    for index, feature in enumerate(features):
        if feature.correlation_id:
            by_ref.setdefault(feature.correlation_id, []).append(index)
    title_counts = Counter(f.title for f in features)

    resolved: list[int] = []
    problems: list[str] = []
    for position, story in enumerate(stories):
        label = f"userStories[{position}] '{story.title}'"
        if story.feature_ref is not None:
            matches = by_ref.get(story.feature_ref, [])
            key = f"featureRef '{story.feature_ref}'"
        elif story.feature_title is not None:
            if title_counts[story.feature_title] > 1:
                problems.append(
                    f"{label}: featureTitle '{story.feature_title}' is shared "
                    f"by {title_counts[story.feature_title]} features; use featureRef"
                )
                continue
            matches = [
                i for i, f in enumerate(features)
                if f.title == story.feature_title
            ]
            key = f"featureTitle '{story.feature_title}'"
        else:
            problems.append(f"{label}: names no feature")
            continue

        if not matches:
            problems.append(f"{label}: {key} matches no feature")
        elif len(matches) > 1:
            problems.append(f"{label}: {key} matches {len(matches)} features")
        else:
            resolved.append(matches[0])

    if problems:
        raise GenerationValidationError(
            f"{len(problems)} user stories could not be joined to a feature",
            problems=problems,
        )
    return resolved


class GenerationImporter:
    """Persist a validated generation response for one project.

    Args:
        store: Target store.
        on_progress: Optional callback receiving ``GenerationProgress``
            updates as the import advances.
    """

    def __init__(
        self,
        store: StoreAdapter,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        self.store = store
        self.on_progress = on_progress

    async def import_response(
        self, project_id: str, data: Any
    ) -> ImportResult:
        """Validate *data* and write mindmap, features and stories.

        The project's existing document is reused (its body replaced) so a
        project never holds more than one mindmap.  Features that were
        linked to the replaced nodes lose their ``node_id``; the next
        features -> mindmap pass gives each of them a node again.

        Raises:
            GenerationValidationError: Before any write, if *data* is
                rejected.
            TransportError: If a backend write fails.
        """
        self._progress("validating", 10, "Validating generation response...")
        response = parse_generation_response(data)
        story_targets = join_stories(response.features, response.user_stories)

        generated = response.mindmap.to_document(project_id)
        nodes = generated.all_nodes()
        by_node = {n.id: n for n in nodes}

        self._progress("creating_mindmap", 30, "Creating mindmap...")
        document = await self.store.get_mindmap_document(project_id)
        stale: list[Feature] = []
        if document is None:
            document = await self.store.create_mindmap_document(
                project_id, nodes, generated.connections
            )
        else:
            stale = [
                f for f in await self.store.list_features(project_id)
                if f.node_id is not None
            ]

        for spec in response.features:
            if spec.node_id is not None and spec.node_id not in by_node:
                logger.warning(
                    "Generated feature '%s' names unknown node %s; left unlinked",
                    spec.title,
                    spec.node_id,
                )

        self._progress("creating_features", 60, "Creating features...")
        timestamp = utc_now()
        features = await gather_limited(
            [
                self.store.insert_feature(
                    self._draft(
                        project_id,
                        feature,
                        timestamp,
                        linked=feature.node_id in by_node,
                    )
                )
                for feature in response.features
            ]
        )
        for spec, feature in zip(response.features, features):
            if spec.node_id in by_node:
                set_feature_link(by_node[spec.node_id], feature.id)

        document = await self.store.write_mindmap_document(
            document.id, nodes, generated.connections
        )
        if stale:
            await self._unlink(stale)

        self._progress("creating_stories", 80, "Creating user stories...")
        stories = await self.store.insert_user_stories(
            [
                UserStoryDraft(
                    feature_id=features[target].id,
                    title=story.title,
                    description=story.description,
                    acceptance_criteria=story.acceptance_criteria,
                    priority=story.priority or DEFAULT_PRIORITY,
                )
                for story, target in zip(response.user_stories, story_targets)
            ]
        )

        logger.info(
            "Imported generation for project %s: %d nodes, %d features, %d stories",
            project_id,
            len(nodes),
            len(features),
            len(stories),
        )
        self._progress("complete", 100, "Generation import complete")
        return ImportResult(
            mindmap=document, features=features, user_stories=stories
        )

    async def _unlink(self, features: list[Feature]) -> None:
        """Drop the node back-link of features whose nodes were replaced."""
        patches = []
        for feature in features:
            metadata = feature.metadata.model_dump(exclude_none=True)
            metadata.pop("node_id", None)
            patches.append(
                self.store.update_feature(feature.id, {"metadata": metadata})
            )
        await gather_limited(patches)
        logger.info(
            "Unlinked %d feature(s) from replaced mindmap nodes",
            len(features),
        )

    @staticmethod
    def _draft(
        project_id: str,
        feature: GeneratedFeature,
        timestamp: str,
        linked: bool,
    ) -> FeatureDraft:
        return FeatureDraft(
            project_id=project_id,
            title=feature.title,
            description=feature.description,
            priority=feature.priority or DEFAULT_PRIORITY,
            complexity=feature.complexity or DEFAULT_COMPLEXITY,
            category=feature.category or DEFAULT_CATEGORY,
            metadata=FeatureMetadata(
                generated_by_ai=True,
                node_id=feature.node_id if linked else None,
                generation_timestamp=timestamp,
                correlation_id=feature.correlation_id,
            ),
        )

    def _progress(self, stage: str, progress: int, action: str) -> None:
        if self.on_progress is None:
            return
        self.on_progress(
            GenerationProgress(
                stage=stage, progress=progress, current_action=action
            )
        )
