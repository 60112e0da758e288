"""Tests for MCP sync tool definitions and handlers.

Covers:
- Tool definitions have valid schemas
- mindmap_to_features / features_to_mindmap against an in-memory context
- offline queueing and replay through sync_set_network
- sync_status and sync_retry structured output
- argument validation via the registry
"""

from __future__ import annotations

from unittest.mock import patch

import pytest

from mindmap_sync.config import Config
from mindmap_sync.errors import TransportError
from mindmap_sync.mcp.context import SyncContext
from mindmap_sync.mcp.tools.registry import ToolRegistry
from mindmap_sync.mcp.tools.sync import SYNC_SPECS, SYNC_TOOLS
from mindmap_sync.sync.models import FeatureDraft
from mindmap_sync.sync.store import MemoryStore

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def context():
    ctx = SyncContext(MemoryStore(), Config(backend_kind="memory"))
    yield ctx
    ctx.close()


@pytest.fixture
def registry():
    return ToolRegistry(SYNC_SPECS)


async def _call(registry, context, name, **args):
    return await registry.call_tool(name, args, context)


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------


class TestDefinitions:
    def test_names(self):
        assert [t.name for t in SYNC_TOOLS] == [
            "mindmap_to_features",
            "features_to_mindmap",
            "sync_status",
            "sync_retry",
            "sync_set_network",
        ]

    def test_schemas_require_project(self):
        for tool in SYNC_TOOLS:
            assert tool.inputSchema["type"] == "object"
            assert "project_id" in tool.inputSchema["required"]


# ---------------------------------------------------------------------------
# Passes
# ---------------------------------------------------------------------------


class TestPasses:
    async def test_mindmap_to_features(self, registry, context):
        doc = await context.store.create_mindmap_document("p1", [], [])

        result = await _call(
            registry,
            context,
            "mindmap_to_features",
            project_id="p1",
            mindmap_id=doc.id,
            nodes=[{"id": "n9", "title": "Export CSV", "parentId": "root"}],
        )

        assert not result.isError
        assert result.structuredContent["summary"]["features_created"] == 1
        assert result.structuredContent["status"] == "synced"
        nodes = result.structuredContent["nodes"]
        assert nodes[1]["metadata"]["featureId"]
        assert "Features created:" in result.content[0].text

    async def test_features_to_mindmap_defaults_to_all(self, registry, context):
        await context.store.create_mindmap_document("p1", [], [])
        await context.store.insert_feature(
            FeatureDraft(project_id="p1", title="Login", priority="high")
        )

        result = await _call(
            registry, context, "features_to_mindmap", project_id="p1"
        )

        assert result.structuredContent["summary"]["nodes_created"] == 1
        stored = await context.store.get_mindmap_document("p1")
        assert stored.nodes[0].style.color == "#ef4444"

    async def test_features_to_mindmap_explicit_rows(self, registry, context):
        await context.store.create_mindmap_document("p1", [], [])
        feature = await context.store.insert_feature(
            FeatureDraft(project_id="p1", title="Draft")
        )

        result = await _call(
            registry,
            context,
            "features_to_mindmap",
            project_id="p1",
            features=[{"id": feature.id, "title": "Login"}],
        )

        node = result.structuredContent["nodes"][1]
        assert node["id"] == f"node_{feature.id}"
        assert node["title"] == "Login"

    async def test_unknown_mindmap_is_not_found(self, registry, context):
        result = await _call(
            registry,
            context,
            "mindmap_to_features",
            project_id="p1",
            mindmap_id="missing",
            nodes=[],
        )
        assert result.isError
        assert "Error (not_found)" in result.content[0].text

    async def test_mindmap_of_other_project_rejected(self, registry, context):
        other = await context.store.create_mindmap_document("p2", [], [])

        result = await _call(
            registry,
            context,
            "mindmap_to_features",
            project_id="p1",
            mindmap_id=other.id,
            nodes=[{"id": "a", "title": "A", "parentId": "root"}],
        )

        assert result.isError
        assert "belongs to project p2, not p1" in result.content[0].text
        assert context.store.features == {}
        assert context.controller("p1").status.value == "synced"

    async def test_missing_arguments(self, registry, context):
        result = await _call(registry, context, "mindmap_to_features", project_id="p1")
        assert result.isError
        assert "mindmap_id is required" in result.content[0].text

    async def test_failed_pass_reports_error_status(self, registry, context):
        await context.store.create_mindmap_document("p1", [], [])
        with patch.object(
            MemoryStore,
            "list_features",
            side_effect=TransportError("backend down", status_code=503),
        ):
            result = await _call(
                registry, context, "features_to_mindmap", project_id="p1",
                features=[],
            )

        assert result.isError
        assert "backend down" in result.content[0].text
        status = await _call(registry, context, "sync_status", project_id="p1")
        assert status.structuredContent["status"] == "error"
        assert status.structuredContent["conflict_count"] == 1

        retry = await _call(registry, context, "sync_retry", project_id="p1")
        assert retry.structuredContent["status"] == "synced"


# ---------------------------------------------------------------------------
# Network and status
# ---------------------------------------------------------------------------


class TestNetwork:
    async def test_offline_queue_and_replay(self, registry, context):
        doc = await context.store.create_mindmap_document("p1", [], [])

        offline = await _call(
            registry, context, "sync_set_network", project_id="p1", online=False
        )
        assert offline.structuredContent["status"] == "offline"

        queued = await _call(
            registry,
            context,
            "mindmap_to_features",
            project_id="p1",
            mindmap_id=doc.id,
            nodes=[{"id": "a", "title": "A", "parentId": "root"}],
        )
        assert not queued.isError
        assert queued.structuredContent == {
            "status": "offline",
            "queued": True,
            "pending": 1,
        }
        assert context.store.features == {}

        online = await _call(
            registry, context, "sync_set_network", project_id="p1", online=True
        )
        assert online.structuredContent == {
            "status": "synced",
            "applied": 1,
            "pending": 0,
        }
        assert len(context.store.features) == 1

    async def test_online_must_be_bool(self, registry, context):
        result = await _call(
            registry, context, "sync_set_network", project_id="p1", online="yes"
        )
        assert result.isError
        assert "online must be true or false" in result.content[0].text

    async def test_status_text(self, registry, context):
        result = await _call(registry, context, "sync_status", project_id="p1")
        assert "Sync status for 'p1'" in result.content[0].text
        assert result.structuredContent["project_id"] == "p1"
        assert result.structuredContent["pending"] == 0
