"""Bidirectional mindmap <-> feature sync engine.

Public API for keeping a project's mindmap document and its feature rows
consistent with each other.

Architecture
------------
Each project owns one JSON mindmap document (a node tree) and a
collection of feature rows.  A node and a feature are linked by the
node's ``metadata.featureId`` and the feature's ``metadata.node_id``.
Reconciliation passes run in one direction at a time and repair one-sided
or stale links instead of failing on them.

Modules:

- ``engine``      -- ``SyncEngine``: runs both reconciliation passes.
- ``planner``     -- pure planning of what each pass writes.
- ``store``       -- ``StoreAdapter`` contract and ``MemoryStore``.
- ``rest_store``  -- ``RestStore`` over a PostgREST-style backend.
- ``controller``  -- ``SyncController``: status, conflicts, offline queue.
- ``pending``     -- ``PendingOperationLog``: passes queued while offline.
- ``multiplexer`` -- ``ChangeMultiplexer``: one subscription per project.
- ``events``      -- ``SyncEventBus``: pass-completed notifications.
- ``models``      -- data contracts shared by the modules above.
- ``reporter``    -- human-readable and JSON report formatting.

Usage example
-------------
::

    from mindmap_sync.sync import MemoryStore, SyncEngine, format_pass_report

    store = MemoryStore()
    engine = SyncEngine(store)

    doc = await store.create_mindmap_document("p1", [], [])
    report = await engine.mindmap_to_features(doc.id, nodes)
    print(format_pass_report(report))
"""

from .controller import SyncController
from .engine import SyncEngine
from .events import SyncEventBus
from .models import (
    ChangeEvent,
    Connection,
    Feature,
    FeatureDraft,
    MindmapDocument,
    MindmapNode,
    PassReport,
    SyncAction,
    SyncEvent,
    SyncResult,
    SyncSnapshot,
    SyncStatus,
)
from .multiplexer import ChangeMultiplexer, Subscription
from .pending import PendingOperation, PendingOperationLog
from .reporter import format_pass_report, format_status, report_to_json
from .rest_store import RestStore
from .store import MemoryStore, StoreAdapter

__all__ = [
    "ChangeEvent",
    "ChangeMultiplexer",
    "Connection",
    "Feature",
    "FeatureDraft",
    "MemoryStore",
    "MindmapDocument",
    "MindmapNode",
    "PassReport",
    "PendingOperation",
    "PendingOperationLog",
    "RestStore",
    "StoreAdapter",
    "Subscription",
    "SyncAction",
    "SyncController",
    "SyncEngine",
    "SyncEvent",
    "SyncEventBus",
    "SyncResult",
    "SyncSnapshot",
    "SyncStatus",
    "format_pass_report",
    "format_status",
    "report_to_json",
]
