"""MCP tool handlers for mindmap sync operations.

Each module defines its ``types.Tool`` list and a parallel ``ToolSpec``
list consumed by ``ToolRegistry``.
"""

from .errors import build_error_response, translate_sync_error
from .generation import GENERATION_SPECS, GENERATION_TOOLS
from .registry import ToolRegistry, ToolSpec
from .sync import SYNC_SPECS, SYNC_TOOLS

ALL_SPECS: list[ToolSpec] = SYNC_SPECS + GENERATION_SPECS

__all__ = [
    "build_error_response",
    "translate_sync_error",
    # Registry
    "ToolSpec",
    "ToolRegistry",
    # ToolSpec lists
    "ALL_SPECS",
    "SYNC_SPECS",
    "GENERATION_SPECS",
    # Tool lists
    "SYNC_TOOLS",
    "GENERATION_TOOLS",
]
