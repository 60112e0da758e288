"""Error response builders for MCP tool handlers.

Every failure a tool reports carries a corrective action so an agent can
recover without human help.
"""

import mcp.types as types

from ...errors import (
    GenerationValidationError,
    MindmapSyncError,
    NotFoundError,
    TransportError,
)


def build_error_response(
    error_type: str, message: str, corrective_action: str
) -> types.CallToolResult:
    """Build a structured error response with corrective action.

    Args:
        error_type: Error category (not_found, validation_error,
            transport_error, sync_error, server_error)
        message: Human-readable error description
        corrective_action: Specific action the agent can take next

    Returns:
        CallToolResult with isError=True

    Examples:
        >>> build_error_response("not_found", "mindmap 'm1' not found", "Check the mindmap_id.")
        CallToolResult(content=[TextContent(...)], isError=True)
    """
    error_text = f"Error ({error_type}): {message}\n\nAction: {corrective_action}"

    return types.CallToolResult(
        content=[types.TextContent(type="text", text=error_text)],
        isError=True,
    )


_NOT_FOUND_ACTIONS = {
    "mindmap": "Check the mindmap_id, or run features_to_mindmap for the project first.",
    "feature": "The feature was deleted concurrently; rerun the pass to reconcile.",
}


def translate_sync_error(error: MindmapSyncError) -> types.CallToolResult:
    """Translate a typed sync error into a structured error response."""
    match error:
        case NotFoundError():
            action = _NOT_FOUND_ACTIONS.get(
                error.entity, "Verify the id and retry."
            )
            return build_error_response("not_found", str(error), action)

        case GenerationValidationError():
            details = list(error.problems)
            if error.missing_keys:
                details.append(
                    f"missing keys: {', '.join(error.missing_keys)}"
                )
            message = str(error)
            if details:
                message += "\n" + "\n".join(f"  - {d}" for d in details)
            return build_error_response(
                "validation_error",
                message,
                "Fix the generation response and resubmit; nothing was written.",
            )

        case TransportError():
            status = (
                f" (HTTP {error.status_code})" if error.status_code else ""
            )
            return build_error_response(
                "transport_error",
                f"{error}{status}",
                "Check backend connectivity with ping, then retry.",
            )

        case _:
            return build_error_response(
                "sync_error",
                str(error),
                "Use sync_status to inspect the project, then retry.",
            )
