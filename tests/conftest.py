"""Shared pytest fixtures for mindmap-sync tests."""

import random
from unittest.mock import MagicMock

import pytest

from mindmap_sync.config import Config
from mindmap_sync.sync.engine import SyncEngine
from mindmap_sync.sync.models import MindmapNode, NodeMetadata
from mindmap_sync.sync.store import MemoryStore


@pytest.fixture
def mock_config():
    """Create a REST-backend Config for testing."""
    return Config(
        backend_url="https://project.example.com",
        api_key="test-key",
        insecure=False,
    )


@pytest.fixture
def mock_backend_client(mock_config):
    """Create a mock BackendClient instance for testing."""
    from mindmap_sync.core.client import BackendClient

    client = MagicMock(spec=BackendClient)
    client.config = mock_config
    return client


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def engine(memory_store):
    """Engine over a fresh MemoryStore with deterministic placement."""
    return SyncEngine(memory_store, rng=random.Random(7))


@pytest.fixture
def make_node():
    """Factory for mindmap nodes; ``feature_id`` sets the link."""

    def _make(node_id, title=None, parent_id="root", feature_id=None, **meta):
        metadata = None
        if feature_id is not None or meta:
            metadata = NodeMetadata(feature_id=feature_id, **meta)
        return MindmapNode(
            id=node_id,
            title=title or node_id.upper(),
            parent_id=parent_id,
            metadata=metadata,
        )

    return _make
