"""Tests for mindmap_sync.mcp.lifespan: server startup/shutdown lifecycle.

Tests the server_lifespan() async context manager which:
- Loads config from env vars (with optional CLI overrides)
- Builds the store, validating the REST connection first
- Initializes concurrency semaphore
- Fails fast on config errors or connection failures
- Stops live subscriptions on shutdown
"""

from contextlib import ExitStack
from unittest.mock import MagicMock, patch

import pytest

from mindmap_sync.config import Config
from mindmap_sync.mcp.context import SyncContext
from mindmap_sync.mcp.lifespan import server_lifespan
from mindmap_sync.sync.rest_store import RestStore
from mindmap_sync.sync.store import MemoryStore

MODULE = "mindmap_sync.mcp.lifespan"

# -------------------------------------------------------------------------
# Helpers
# -------------------------------------------------------------------------


def _make_config(**overrides):
    """Create a valid Config for testing."""
    defaults = {
        "backend_url": "https://project.example.com",
        "api_key": "test-key",
        "max_parallel_requests": 5,
        "poll_interval": 3.0,
    }
    defaults.update(overrides)
    return Config(**defaults)


def _patches(stack, config=None, load_error=None, **extra):
    """Patch the lifespan's collaborators; returns the mocks by name."""
    load_kwargs = (
        {"side_effect": load_error}
        if load_error
        else {"return_value": config or _make_config()}
    )
    mocks = {
        "load_config": stack.enter_context(
            patch(f"{MODULE}.load_config", **load_kwargs)
        ),
        "discover": stack.enter_context(
            patch(f"{MODULE}.discover_config_files", return_value=[])
        ),
        "dotenv": stack.enter_context(patch(f"{MODULE}.load_dotenv")),
        "init_semaphore": stack.enter_context(patch(f"{MODULE}.init_semaphore")),
        "stderr": stack.enter_context(patch(f"{MODULE}._stderr_print")),
    }
    for name, kwargs in extra.items():
        mocks[name] = stack.enter_context(patch(f"{MODULE}.{name}", **kwargs))
    return mocks


# -------------------------------------------------------------------------
# Successful startup
# -------------------------------------------------------------------------


class TestServerLifespanSuccess:
    async def test_rest_backend(self):
        mock_client = MagicMock()
        with ExitStack() as stack:
            mocks = _patches(
                stack,
                BackendClient={"return_value": mock_client},
                run_sync={"return_value": "https://project.example.com/rest/v1"},
            )
            async with server_lifespan() as ctx:
                context = ctx["context"]
                assert isinstance(context, SyncContext)
                assert isinstance(context.store, RestStore)
                assert context.store.poll_interval == 3.0
                assert context.client is mock_client
                mocks["run_sync"].assert_called_once_with(
                    mock_client.validate_connection
                )
                mocks["init_semaphore"].assert_called_once_with(5)

    async def test_memory_backend_skips_connection(self):
        with ExitStack() as stack:
            mocks = _patches(
                stack,
                config=_make_config(backend_kind="memory", backend_url=""),
                BackendClient={},
            )
            async with server_lifespan() as ctx:
                assert isinstance(ctx["context"].store, MemoryStore)
            mocks["BackendClient"].assert_not_called()

    async def test_overrides_forwarded(self):
        with ExitStack() as stack:
            mocks = _patches(
                stack,
                config=_make_config(backend_kind="memory"),
            )
            overrides = {"backend": "memory", "debug": True}
            async with server_lifespan(overrides):
                pass

            kwargs = mocks["load_config"].call_args.kwargs
            assert kwargs["backend"] == "memory"
            assert kwargs["debug"] is True
            assert kwargs["yaml_fallbacks"] is None

    async def test_shutdown_closes_context(self):
        with ExitStack() as stack:
            _patches(stack, config=_make_config(backend_kind="memory"))
            with patch.object(SyncContext, "close") as mock_close:
                async with server_lifespan():
                    mock_close.assert_not_called()
                mock_close.assert_called_once()


# -------------------------------------------------------------------------
# Failures
# -------------------------------------------------------------------------


class TestServerLifespanFailure:
    async def test_config_error(self):
        with ExitStack() as stack:
            mocks = _patches(stack, load_error=ValueError("Backend URL not found"))
            with pytest.raises(RuntimeError, match="Configuration error"):
                async with server_lifespan():
                    pass
            mocks["init_semaphore"].assert_not_called()

    async def test_connection_failure(self):
        with ExitStack() as stack:
            _patches(
                stack,
                BackendClient={"return_value": MagicMock()},
                run_sync={"side_effect": ConnectionError("refused")},
            )
            with pytest.raises(RuntimeError, match="Backend connection failed"):
                async with server_lifespan():
                    pass
