"""MCP tool handler for importing generation-service responses."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import mcp.types as types

from ...generation import GenerationImporter
from .registry import ToolSpec

if TYPE_CHECKING:
    from ..context import SyncContext

logger = logging.getLogger(__name__)


GENERATION_TOOLS: list[types.Tool] = [
    types.Tool(
        name="generation_import",
        description=(
            "Import a generated mindmap with its features and user stories "
            "into a project. The response must carry 'mindmap', 'features' "
            "and 'userStories'; it is rejected as a whole, before any "
            "write, if a key is missing or a story cannot be matched to "
            "exactly one feature."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=True,
            idempotentHint=False,
            openWorldHint=True,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "project_id": {
                    "type": "string",
                    "description": "Project to import into",
                },
                "response": {
                    "type": "object",
                    "description": "Generation response object",
                },
            },
            "required": ["project_id", "response"],
        },
    ),
]


async def _handle_generation_import(
    context: SyncContext, args: dict[str, Any]
) -> types.CallToolResult:
    project_id = args.get("project_id")
    if not project_id:
        raise ValueError("project_id is required")

    result = await GenerationImporter(context.store).import_response(
        project_id, args.get("response")
    )

    text = (
        f"Imported into project '{project_id}': "
        f"{len(result.mindmap.all_nodes())} nodes, "
        f"{len(result.features)} features, "
        f"{len(result.user_stories)} user stories."
    )
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent={
            "mindmap_id": result.mindmap.id,
            "feature_ids": [f.id for f in result.features],
            "user_story_ids": [s.id for s in result.user_stories],
        },
    )


GENERATION_SPECS: list[ToolSpec] = [
    ToolSpec(tool=GENERATION_TOOLS[0], handler=_handle_generation_import),
]
