"""Lifespan management for MCP server startup and shutdown."""

import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from dotenv import load_dotenv

from ..config import Config, load_config
from ..config_loader import (
    discover_config_files,
    load_hierarchical_config,
)
from ..config_schema import build_config, yaml_fallbacks
from ..core.async_utils import init_semaphore, run_sync
from ..core.client import BackendClient
from ..sync.rest_store import RestStore
from ..sync.store import MemoryStore
from .context import SyncContext

logger = logging.getLogger(__name__)

_CONFIG_HINT = "Ensure MINDMAP_SYNC_URL and MINDMAP_SYNC_API_KEY are set."


def _stderr_print(msg: str) -> None:
    """Print message to stderr for user feedback (safe in MCP mode)."""
    print(msg, file=sys.stderr, flush=True)


def _resolve_config(overrides: dict[str, Any]) -> Config:
    """Merge CLI > env vars (.env loaded first) > YAML > defaults."""
    # .env first so ${VAR} references in YAML can see its values
    load_dotenv()

    fallbacks: dict[str, Any] | None = None
    sources = []
    config_files = discover_config_files()
    if config_files:
        unified = build_config(load_hierarchical_config())
        fallbacks = yaml_fallbacks(unified)
        sources.append(f"config file: {config_files[0]}")

    config = load_config(
        url=overrides.get("url"),
        api_key=overrides.get("api_key"),
        backend=overrides.get("backend"),
        insecure=overrides.get("insecure", False),
        debug=overrides.get("debug", False),
        yaml_fallbacks=fallbacks,
    )

    if overrides:
        sources.append("CLI arguments")
    sources.append("environment variables")
    source_desc = ", ".join(sources)
    logger.info("Configuration loaded from: %s", source_desc)
    _stderr_print(f"  Configuration loaded from: {source_desc}")
    return config


@asynccontextmanager
async def server_lifespan(
    config_overrides: dict[str, Any] | None = None,
) -> AsyncIterator[dict[str, Any]]:
    """
    Manage server startup and shutdown.

    On startup:
    - Resolve configuration from CLI, env, .env and YAML sources
    - Build the store (REST backend or in-memory)
    - For the REST backend, validate the connection and fail fast

    On shutdown:
    - Close live subscriptions and stop polling

    Args:
        config_overrides: Optional CLI values (url, api_key, backend, insecure, debug)

    Yields:
        Dict with a 'context' key holding the ``SyncContext``

    Raises:
        RuntimeError: If configuration is invalid or the backend is unreachable.
    """
    logger.info("MCP server starting...")
    _stderr_print("Mindmap Sync Server starting...")

    try:
        config = _resolve_config(config_overrides or {})
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        _stderr_print(f"ERROR: Configuration error: {e}")
        _stderr_print(f"  {_CONFIG_HINT}")
        raise RuntimeError(f"Configuration error: {e}. {_CONFIG_HINT}") from e

    init_semaphore(config.max_parallel_requests)
    _stderr_print(f"  Parallel requests: {config.max_parallel_requests}")

    if config.backend_kind == "memory":
        logger.warning("Using in-memory store; nothing will be persisted")
        _stderr_print("  Backend: memory (nothing is persisted)")
        context = SyncContext(MemoryStore(), config)
    else:
        logger.info("Validating backend connection to %s", config.backend_url)
        _stderr_print(f"  Backend URL: {config.backend_url}")
        try:
            client = BackendClient(config)
            rest_url = await run_sync(client.validate_connection)
        except Exception as e:
            logger.error("Failed to connect to backend: %s", e)
            _stderr_print("ERROR: Backend connection failed.")
            _stderr_print(f"  {e}")
            raise RuntimeError(
                f"Backend connection failed: {e}. {_CONFIG_HINT}"
            ) from e
        logger.info("Connected to backend at %s", rest_url)
        _stderr_print(f"  Connected to {rest_url}")
        context = SyncContext(
            RestStore(client, poll_interval=config.poll_interval),
            config,
            client=client,
        )

    _stderr_print("Server ready. Waiting for MCP client connection...")
    try:
        yield {"context": context}
    finally:
        context.close()
        logger.info("MCP server shutting down")
        _stderr_print("Mindmap Sync Server shutting down.")
