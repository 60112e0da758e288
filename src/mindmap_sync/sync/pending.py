"""Pending-operation log for passes requested while offline.

Each project gets its own queue, persisted as ``pending_{project}.json``
in the state directory so queued edits survive a restart.  Without a
state directory the log lives in memory only.

Key design choices:

* **Atomic writes** -- ``_save()`` writes to a temp file then calls
  ``os.replace()`` so readers never see partial data.
* **Coalescing** -- an operation that targets the same thing as the
  operation at the tail of the queue replaces it (mindmap passes carry the
  whole node list) or merges into it (feature passes merge by feature id).
* **Idempotent replay** -- both passes converge when re-run, so an
  operation that was applied but not yet removed is safe to replay.
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

from .models import Feature, MindmapNode

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]")


class PendingOperation(BaseModel):
    """One deferred reconciliation pass."""

    op_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    kind: Literal["mindmap_to_features", "features_to_mindmap"]
    project_id: str
    mindmap_id: str | None = None
    nodes: list[MindmapNode] = []
    features: list[Feature] = []
    queued_at: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def target(self) -> tuple[str, str | None]:
        return self.kind, self.mindmap_id


class PendingOperationLog:
    """Per-project FIFO of deferred passes.

    Args:
        state_dir: Directory for the JSON queue files, or ``None`` to keep
            the queues in memory.
    """

    def __init__(self, state_dir: Path | None = None) -> None:
        self._state_dir = state_dir
        self._queues: dict[str, list[PendingOperation]] = {}

    # ------------------------------------------------------------------
    # Queue operations
    # ------------------------------------------------------------------

    def append(self, op: PendingOperation) -> PendingOperation:
        """Queue *op*, coalescing with the tail when both share a target.

        Returns:
            The operation now at the tail of the queue.
        """
        queue = self._load(op.project_id)
        if queue and queue[-1].target() == op.target():
            op = self._coalesce(queue[-1], op)
            queue[-1] = op
            logger.debug(
                "Coalesced pending %s for project %s",
                op.kind,
                op.project_id,
            )
        else:
            queue.append(op)
        self._save(op.project_id, queue)
        return op

    def peek(self, project_id: str) -> list[PendingOperation]:
        """Return the queued operations of a project, oldest first."""
        return list(self._load(project_id))

    def remove(self, project_id: str, op_id: str) -> None:
        """Drop one operation; no-op if absent."""
        queue = [op for op in self._load(project_id) if op.op_id != op_id]
        self._save(project_id, queue)

    def clear(self, project_id: str) -> None:
        self._save(project_id, [])

    def count(self, project_id: str) -> int:
        return len(self._load(project_id))

    @staticmethod
    def _coalesce(
        older: PendingOperation, newer: PendingOperation
    ) -> PendingOperation:
        if newer.kind == "mindmap_to_features":
            return newer.model_copy(update={"op_id": older.op_id})
        merged = {f.id: f for f in older.features}
        for feature in newer.features:
            merged[feature.id] = feature
        return newer.model_copy(
            update={"op_id": older.op_id, "features": list(merged.values())}
        )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self, project_id: str) -> list[PendingOperation]:
        if project_id in self._queues:
            return self._queues[project_id]

        queue: list[PendingOperation] = []
        path = self._queue_path(project_id)
        if path is not None and path.exists():
            with open(path, encoding="utf-8") as fh:
                data = json.load(fh)
            queue = [
                PendingOperation.model_validate(item)
                for item in data.get("operations", [])
            ]
        self._queues[project_id] = queue
        return queue

    def _save(self, project_id: str, queue: list[PendingOperation]) -> None:
        self._queues[project_id] = queue
        path = self._queue_path(project_id)
        if path is None:
            return

        self._state_dir.mkdir(parents=True, exist_ok=True)
        payload = {
            "version": 1,
            "project": project_id,
            "operations": [
                op.model_dump(mode="json", by_alias=True) for op in queue
            ],
        }
        fd, tmp_path = tempfile.mkstemp(
            dir=str(self._state_dir), suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(payload, fh, indent=2)
            os.replace(tmp_path, path)
        except BaseException:
            # Clean up temp file on any failure.
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    def _queue_path(self, project_id: str) -> Path | None:
        if self._state_dir is None:
            return None
        return self._state_dir / f"pending_{_UNSAFE.sub('_', project_id)}.json"
