"""Pass report and status formatting.

Provides human-readable and machine-readable output for sync passes:

- ``format_pass_report`` -- post-pass summary with per-action sections.
- ``format_status`` -- one controller snapshot.
- ``report_to_json`` -- structured dict for tool output.
"""

from __future__ import annotations

from typing import Any

from .models import PassReport, SyncAction, SyncSnapshot

_SECTIONS: list[tuple[SyncAction, str]] = [
    (SyncAction.CREATE_FEATURE, "Features created"),
    (SyncAction.UPDATE_FEATURE, "Features updated"),
    (SyncAction.DELETE_FEATURE, "Features deleted"),
    (SyncAction.CREATE_NODE, "Nodes created"),
    (SyncAction.UPDATE_NODE, "Nodes updated"),
    (SyncAction.REMOVE_NODE, "Nodes removed"),
    (SyncAction.RELINK, "Links repaired"),
]


def format_pass_report(report: PassReport) -> str:
    """Format a pass report as human-readable text.

    Sections are only included when they contain at least one result.
    Unchanged pairs are summarised by count only.
    """
    lines: list[str] = []

    header = f"Sync pass '{report.direction}'"
    if report.project_id:
        header += f" for project '{report.project_id}'"
    lines.append(header)
    lines.append(f"Started: {report.started_at}")
    if report.completed_at:
        lines.append(f"Completed: {report.completed_at}")
    lines.append("")

    if not report.results and report.mindmap_id is None:
        lines.append("No mindmap document yet; nothing to reconcile.")
        return "\n".join(lines)

    for action, title in _SECTIONS:
        matching = [r for r in report.results if r.action == action]
        if not matching:
            continue
        lines.append(f"{title}:")
        for r in matching:
            pair = f"  {r.node_id or '-'} <-> {r.feature_id or '-'}"
            if r.divergence:
                pair += " (divergent link repaired)"
            if r.detail:
                pair += f": {r.detail}"
            lines.append(pair)
        lines.append("")

    if report.skipped:
        lines.append(f"Unchanged: {len(report.skipped)} pairs")
        lines.append("")

    return "\n".join(lines).rstrip()


def format_status(snapshot: SyncSnapshot) -> str:
    lines = [
        f"Status:        {snapshot.status.value}",
        f"Conflicts:     {snapshot.conflict_count}",
        f"Last sync:     {snapshot.last_sync_time or 'never'}",
        f"Pending ops:   {snapshot.pending}",
    ]
    if snapshot.message:
        lines.append(f"Note:          {snapshot.message}")
    if snapshot.last_error:
        lines.append(f"Last error:    {snapshot.last_error}")
    return "\n".join(lines)


def report_to_json(report: PassReport) -> dict[str, Any]:
    """Convert a pass report to a JSON-serialisable dict."""
    return {
        "direction": report.direction,
        "project_id": report.project_id,
        "mindmap_id": report.mindmap_id,
        "started_at": report.started_at,
        "completed_at": report.completed_at,
        "summary": {
            "features_created": len(report.created_features),
            "features_updated": len(report.updated_features),
            "features_deleted": len(report.deleted_features),
            "nodes_created": len(report.created_nodes),
            "nodes_updated": len(report.updated_nodes),
            "nodes_removed": len(report.removed_nodes),
            "relinked": len(report.relinked),
            "unchanged": len(report.skipped),
            "divergences": len(report.divergences),
        },
        "results": [r.model_dump(mode="json") for r in report.results],
        "nodes": [n.to_json() for n in report.nodes],
    }
