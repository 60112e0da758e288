"""Tests for the generation_import MCP tool."""

import pytest

from mindmap_sync.config import Config
from mindmap_sync.mcp.context import SyncContext
from mindmap_sync.mcp.tools.generation import GENERATION_SPECS
from mindmap_sync.mcp.tools.registry import ToolRegistry
from mindmap_sync.sync.store import MemoryStore

RESPONSE = {
    "mindmap": {
        "rootNode": {"id": "root", "title": "Shop"},
        "nodes": [{"id": "n1", "title": "Cart", "parentId": "root"}],
        "connections": [{"from": "root", "to": "n1"}],
    },
    "features": [{"nodeId": "n1", "title": "Cart"}],
    "userStories": [{"featureRef": "n1", "title": "Add item"}],
}


@pytest.fixture
def context():
    return SyncContext(MemoryStore(), Config(backend_kind="memory"))


@pytest.fixture
def registry():
    return ToolRegistry(GENERATION_SPECS)


async def test_import(registry, context):
    result = await registry.call_tool(
        "generation_import", {"project_id": "p1", "response": RESPONSE}, context
    )

    assert not result.isError
    assert "2 nodes, 1 features, 1 user stories" in result.content[0].text
    data = result.structuredContent
    assert len(data["feature_ids"]) == 1
    assert len(data["user_story_ids"]) == 1
    assert data["mindmap_id"] in context.store.mindmaps


async def test_missing_user_stories_rejected(registry, context):
    response = {k: v for k, v in RESPONSE.items() if k != "userStories"}

    result = await registry.call_tool(
        "generation_import", {"project_id": "p1", "response": response}, context
    )

    assert result.isError
    assert "missing keys: userStories" in result.content[0].text
    assert context.store.mindmaps == {}
    assert context.store.features == {}


async def test_project_required(registry, context):
    result = await registry.call_tool(
        "generation_import", {"response": RESPONSE}, context
    )
    assert result.isError
    assert "project_id is required" in result.content[0].text
