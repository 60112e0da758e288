"""MCP server for mindmap <-> feature sync using stdio transport.

Exposes the sync engine, the per-project controllers and the generation
importer as MCP tools.

Transport: stdio
Protocol: JSON-RPC 2.0 over MCP
"""

import argparse
import asyncio
import logging
import sys

import mcp.server.stdio
import mcp.types as types
from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions

from .. import __version__
from ..core.async_utils import run_sync
from ..logger import DEFAULT_LOG_FILE, setup_logging
from .context import SyncContext
from .lifespan import server_lifespan
from .tools import ALL_SPECS, ToolRegistry, build_error_response
from .tools.registry import ToolSpec

logger = logging.getLogger(__name__)

server = Server("mindmap-sync-server")

# Initialized in main()
_context: SyncContext | None = None
_registry: ToolRegistry | None = None


# ---------------------------------------------------------------------------
# Ping tool
# ---------------------------------------------------------------------------


async def _handle_ping(
    context: SyncContext, args: dict
) -> types.CallToolResult:
    """Report which backend is in use and whether it answers."""
    if context.client is None:
        return types.CallToolResult(
            content=[
                types.TextContent(
                    type="text",
                    text="Mindmap sync server running on the in-memory store.",
                )
            ]
        )
    try:
        rest_url = await run_sync(context.client.validate_connection)
    except Exception as e:
        return build_error_response(
            "transport_error",
            f"Backend connection failed: {e}",
            "Check MINDMAP_SYNC_URL and MINDMAP_SYNC_API_KEY.",
        )
    return types.CallToolResult(
        content=[
            types.TextContent(
                type="text",
                text=f"Mindmap sync server connected to {rest_url}",
            )
        ]
    )


PING_SPEC = ToolSpec(
    tool=types.Tool(
        name="ping",
        description="Test backend connectivity of the mindmap sync server",
        inputSchema={
            "type": "object",
            "properties": {},
            "required": [],
        },
    ),
    handler=_handle_ping,
)


# ---------------------------------------------------------------------------
# Global accessors
# ---------------------------------------------------------------------------


def get_context() -> SyncContext:
    """Return the running server's ``SyncContext``.

    Raises:
        RuntimeError: If the lifespan has not started.
    """
    if _context is None:
        raise RuntimeError(
            "SyncContext not initialized. Server lifespan not started."
        )
    return _context


def set_context(context: SyncContext | None) -> None:
    global _context
    _context = context


def get_registry() -> ToolRegistry:
    if _registry is None:
        raise RuntimeError("ToolRegistry not initialized.")
    return _registry


def set_registry(registry: ToolRegistry | None) -> None:
    global _registry
    _registry = registry


def build_registry() -> ToolRegistry:
    return ToolRegistry([PING_SPEC] + ALL_SPECS)


# ---------------------------------------------------------------------------
# MCP protocol handlers
# ---------------------------------------------------------------------------


@server.list_tools()
async def handle_list_tools() -> list[types.Tool]:
    return get_registry().list_tools()


@server.call_tool()
async def handle_call_tool(
    name: str, arguments: dict | None
) -> types.CallToolResult:
    """Dispatch a tool call through the registry."""
    context = get_context()
    try:
        return await get_registry().call_tool(name, arguments, context)
    except ValueError as e:
        return build_error_response(
            "unknown_tool",
            str(e),
            "Use list_tools to see available tools.",
        )


# ---------------------------------------------------------------------------
# Server lifecycle
# ---------------------------------------------------------------------------


async def main(config_overrides: dict | None = None):
    """Run the MCP server with stdio transport.

    Args:
        config_overrides: Optional CLI values (url, api_key, backend,
            insecure, debug, log_file).
    """
    overrides = config_overrides or {}

    # Must run before stdio_server so nothing reaches stdout
    setup_logging(
        mode="mcp",
        debug=overrides.get("debug", False),
        log_file=overrides.get("log_file"),
    )

    registry = build_registry()
    logger.info("Registered %d tools", registry.tool_count())
    set_registry(registry)

    # set_context() is called here rather than inside the lifespan so it
    # updates this module even when it runs as __main__.
    async with server_lifespan(config_overrides=overrides) as ctx:
        set_context(ctx["context"])
        try:
            async with mcp.server.stdio.stdio_server() as (
                read_stream,
                write_stream,
            ):
                init_options = InitializationOptions(
                    server_name="mindmap-sync-server",
                    server_version=__version__,
                    capabilities=server.get_capabilities(
                        notification_options=NotificationOptions(),
                        experimental_capabilities={},
                    ),
                )
                await server.run(read_stream, write_stream, init_options)
        finally:
            set_context(None)
            set_registry(None)


def run() -> None:
    """Entry point: parse CLI arguments and run the server."""
    parser = argparse.ArgumentParser(
        description="Mindmap Sync Server - MCP server keeping mindmaps and features in sync",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run with settings from .env / config.yml
  mindmap-sync-server

  # Point at a backend explicitly
  mindmap-sync-server --url https://project.example.com

  # Run without a backend (nothing persisted)
  mindmap-sync-server --backend memory

Note: stdio carries JSON-RPC. All user-facing messages go to stderr.
        """,
    )

    parser.add_argument(
        "--url",
        help="Backend base URL (overrides MINDMAP_SYNC_URL and config files)",
    )
    parser.add_argument(
        "--api-key",
        help="Backend API key (visible in process list -- prefer MINDMAP_SYNC_API_KEY)",
    )
    parser.add_argument(
        "--backend",
        choices=["rest", "memory"],
        help="Store backend (default: rest)",
    )
    parser.add_argument(
        "--insecure",
        action="store_true",
        help="Skip SSL certificate verification (development only)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Log at DEBUG level",
    )
    parser.add_argument(
        "--log-file",
        default=DEFAULT_LOG_FILE,
        help=f"Log file path (default: {DEFAULT_LOG_FILE})",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"mindmap-sync-server version {__version__}",
    )

    args = parser.parse_args()

    config_overrides = {}
    if args.url:
        config_overrides["url"] = args.url
    if args.api_key:
        config_overrides["api_key"] = args.api_key
    if args.backend:
        config_overrides["backend"] = args.backend
    if args.insecure:
        config_overrides["insecure"] = True
    if args.debug:
        config_overrides["debug"] = True
    if args.log_file:
        config_overrides["log_file"] = args.log_file

    shown = [k for k in config_overrides if k not in ("api_key", "log_file")]
    if shown:
        print(
            f"Config overrides from CLI: {', '.join(shown)}",
            file=sys.stderr,
        )

    try:
        asyncio.run(main(config_overrides=config_overrides))
    except RuntimeError:
        # Already reported on stderr by the lifespan
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(0)


if __name__ == "__main__":
    run()
