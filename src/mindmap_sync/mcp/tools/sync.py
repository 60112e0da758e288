"""MCP tool handlers for mindmap <-> feature synchronisation.

Defines five tools:

- ``mindmap_to_features`` -- push an edited node list to the features.
- ``features_to_mindmap`` -- push feature edits into the mindmap.
- ``sync_status`` -- show a project's controller snapshot.
- ``sync_retry`` -- clear a project's error state.
- ``sync_set_network`` -- signal online/offline; online replays the queue.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import mcp.types as types

from ...sync.models import Feature, MindmapNode, PassReport, SyncStatus
from ...sync.reporter import format_pass_report, format_status, report_to_json
from .errors import build_error_response
from .registry import ToolSpec

if TYPE_CHECKING:
    from ...sync.controller import SyncController
    from ..context import SyncContext

logger = logging.getLogger(__name__)

_PROJECT_ID = {
    "type": "string",
    "description": "Project whose mindmap and features are synchronised",
}


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------


SYNC_TOOLS: list[types.Tool] = [
    types.Tool(
        name="mindmap_to_features",
        description=(
            "Make a project's features mirror an edited mindmap node list. "
            "New nodes become features, edited nodes update their feature, "
            "and removed nodes delete theirs. Queued while offline."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=True,
            idempotentHint=True,
            openWorldHint=True,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "project_id": _PROJECT_ID,
                "mindmap_id": {
                    "type": "string",
                    "description": "Id of the project's mindmap document",
                },
                "nodes": {
                    "type": "array",
                    "items": {"type": "object"},
                    "description": (
                        "Full node list (id, title, description, parentId, "
                        "position, style, metadata). The root may be omitted."
                    ),
                },
            },
            "required": ["project_id", "mindmap_id", "nodes"],
        },
    ),
    types.Tool(
        name="features_to_mindmap",
        description=(
            "Make a project's mindmap mirror its features. Missing nodes "
            "are created, linked nodes updated, and nodes whose feature "
            "was deleted are removed."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=True,
            idempotentHint=True,
            openWorldHint=True,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "project_id": _PROJECT_ID,
                "features": {
                    "type": "array",
                    "items": {"type": "object"},
                    "description": (
                        "Feature rows to apply. Defaults to every current "
                        "feature of the project."
                    ),
                },
            },
            "required": ["project_id"],
        },
    ),
    types.Tool(
        name="sync_status",
        description=(
            "Show a project's sync status, conflict count, last sync time "
            "and number of operations queued while offline."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {"project_id": _PROJECT_ID},
            "required": ["project_id"],
        },
    ),
    types.Tool(
        name="sync_retry",
        description=(
            "Clear a project's error state and conflict count. The failed "
            "pass is not replayed; issue it again afterwards."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {"project_id": _PROJECT_ID},
            "required": ["project_id"],
        },
    ),
    types.Tool(
        name="sync_set_network",
        description=(
            "Tell a project's controller whether the network is available. "
            "Going online replays passes queued while offline, in order."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=True,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "project_id": _PROJECT_ID,
                "online": {
                    "type": "boolean",
                    "description": "True when the network is back",
                },
            },
            "required": ["project_id", "online"],
        },
    ),
]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _require_str(args: dict[str, Any], key: str) -> str:
    value = args.get(key)
    if not isinstance(value, str) or not value:
        raise ValueError(f"{key} is required")
    return value


def _require_list(args: dict[str, Any], key: str) -> list:
    value = args.get(key)
    if not isinstance(value, list):
        raise ValueError(f"{key} must be an array")
    return value


def _pass_result(
    controller: SyncController, report: PassReport | None
) -> types.CallToolResult:
    """Render a controller pass outcome."""
    snapshot = controller.snapshot()
    if report is not None:
        return types.CallToolResult(
            content=[
                types.TextContent(type="text", text=format_pass_report(report))
            ],
            structuredContent={
                **report_to_json(report),
                "status": snapshot.status.value,
            },
        )
    if snapshot.status == SyncStatus.OFFLINE:
        return types.CallToolResult(
            content=[
                types.TextContent(
                    type="text",
                    text=f"{snapshot.message} ({snapshot.pending} pending)",
                )
            ],
            structuredContent={
                "status": snapshot.status.value,
                "queued": True,
                "pending": snapshot.pending,
            },
        )
    return build_error_response(
        "sync_error",
        snapshot.last_error or "sync pass failed",
        "Use sync_retry to clear the error, then rerun the pass.",
    )


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


async def _handle_mindmap_to_features(
    context: SyncContext, args: dict[str, Any]
) -> types.CallToolResult:
    project_id = _require_str(args, "project_id")
    mindmap_id = _require_str(args, "mindmap_id")
    nodes = [
        MindmapNode.model_validate(n) for n in _require_list(args, "nodes")
    ]

    controller = context.controller(project_id)
    if controller.online:
        # Offline calls are queued unchecked; replay reads the document.
        document = await context.store.get_mindmap_document_by_id(mindmap_id)
        if document.project_id != project_id:
            raise ValueError(
                f"mindmap {mindmap_id} belongs to project "
                f"{document.project_id}, not {project_id}"
            )
    report = await controller.mindmap_to_features(mindmap_id, nodes)
    return _pass_result(controller, report)


async def _handle_features_to_mindmap(
    context: SyncContext, args: dict[str, Any]
) -> types.CallToolResult:
    project_id = _require_str(args, "project_id")
    if args.get("features") is None:
        features = await context.store.list_features(project_id)
    else:
        features = [
            Feature.model_validate({"project_id": project_id, **f})
            for f in _require_list(args, "features")
        ]

    controller = context.controller(project_id)
    report = await controller.features_to_mindmap(features)
    return _pass_result(controller, report)


async def _handle_sync_status(
    context: SyncContext, args: dict[str, Any]
) -> types.CallToolResult:
    project_id = _require_str(args, "project_id")
    snapshot = context.controller(project_id).snapshot()
    return types.CallToolResult(
        content=[
            types.TextContent(
                type="text",
                text=f"Sync status for '{project_id}'\n{format_status(snapshot)}",
            )
        ],
        structuredContent={
            "project_id": project_id,
            **snapshot.model_dump(mode="json"),
        },
    )


async def _handle_sync_retry(
    context: SyncContext, args: dict[str, Any]
) -> types.CallToolResult:
    project_id = _require_str(args, "project_id")
    controller = context.controller(project_id)
    controller.retry_sync()
    return types.CallToolResult(
        content=[
            types.TextContent(
                type="text",
                text=f"Cleared sync error for '{project_id}'. Status: {controller.status.value}",
            )
        ],
        structuredContent={"status": controller.status.value},
    )


async def _handle_sync_set_network(
    context: SyncContext, args: dict[str, Any]
) -> types.CallToolResult:
    project_id = _require_str(args, "project_id")
    online = args.get("online")
    if not isinstance(online, bool):
        raise ValueError("online must be true or false")

    controller = context.controller(project_id)
    applied = await controller.set_online(online)
    snapshot = controller.snapshot()

    text = f"Project '{project_id}' is {snapshot.status.value}."
    if applied:
        text += f" Replayed {applied} queued operation(s)."
    if snapshot.pending:
        text += f" {snapshot.pending} operation(s) still queued."
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent={
            "status": snapshot.status.value,
            "applied": applied,
            "pending": snapshot.pending,
        },
    )


# ToolSpec list for registry-based dispatch
SYNC_SPECS: list[ToolSpec] = [
    ToolSpec(tool=SYNC_TOOLS[0], handler=_handle_mindmap_to_features),
    ToolSpec(tool=SYNC_TOOLS[1], handler=_handle_features_to_mindmap),
    ToolSpec(tool=SYNC_TOOLS[2], handler=_handle_sync_status),
    ToolSpec(tool=SYNC_TOOLS[3], handler=_handle_sync_retry),
    ToolSpec(tool=SYNC_TOOLS[4], handler=_handle_sync_set_network),
]
