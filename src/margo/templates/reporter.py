"""Template report formatting functions.

Provides human-readable and machine-readable output for template
commands:

- ``format_sync_report`` -- full post-run summary.
- ``format_dry_run_preview`` -- dry-run preview grouped by action.
- ``format_divergence_diff`` -- unified diff of a user copy vs. bundled.
- ``format_template_listing`` -- ``margo list`` / ``margo examples`` output.
- ``report_to_json`` -- structured dict for ``--json`` output.
"""

from __future__ import annotations

import difflib
from collections import defaultdict
from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import SyncReport, SyncResult, TemplateId

from .engine import REASON_SIDECAR_OCCUPIED, REASON_UNTRACKED
from .models import SyncAction

# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def format_sync_report(report: SyncReport) -> str:
    """Format a complete run report as human-readable text.

    Sections are only included when they contain at least one result.
    Unchanged templates are summarised by count only.

    Args:
        report: The completed report.

    Returns:
        Multi-line formatted string.
    """
    if report.dry_run:
        return format_dry_run_preview(report)

    lines: list[str] = []
    lines.append(f"margo {report.command} (v{report.tool_version})")
    lines.append("")

    lines.append(
        f"{len(report.results)} templates: "
        f"{len(report.created)} created, "
        f"{len(report.updated)} updated, "
        f"{len(report.sidecars)} sidecars, "
        f"{len(report.diverged)} diverged, "
        f"{len(report.conflicts)} conflicts, "
        f"{len(report.errors)} errors"
    )
    lines.append("")

    ok_created = [r for r in report.created if r.success]
    ok_updated = [r for r in report.updated if r.success]
    ok_sidecars = [r for r in report.sidecars if r.success]

    if ok_created:
        lines.append("Created:")
        for r in ok_created:
            lines.append(f"  {r.template_id} -> {r.path}")
        lines.append("")

    if ok_updated:
        lines.append("Updated:")
        for r in ok_updated:
            note = " (overwrote local edits)" if r.diverged else ""
            lines.append(f"  {r.template_id} -> {r.path}{note}")
        lines.append("")

    if ok_sidecars:
        lines.append("New defaults written alongside your edits:")
        for r in ok_sidecars:
            lines.append(f"  {r.template_id} -> {r.path}")
        lines.append("")

    if report.diverged:
        lines.append("Modified locally (not updated):")
        for r in report.diverged:
            if r.reason == REASON_SIDECAR_OCCUPIED:
                lines.append(
                    f"  {r.template_id}: {r.path} is in the way of the "
                    "sidecar; move it aside"
                )
            else:
                lines.append(f"  {r.template_id}: {r.path}")
        lines.append(
            "  Use --sidecar to receive the new default alongside, "
            "or --force to overwrite."
        )
        lines.append("")

    untracked = [
        r for r in report.skipped if r.reason == REASON_UNTRACKED and r.success
    ]
    if untracked:
        lines.append("Left alone (not created by margo):")
        for r in untracked:
            lines.append(f"  {r.template_id}: {r.path}")
        lines.append("")

    if report.conflicts:
        lines.append("Conflicts:")
        for r in report.conflicts:
            lines.append(f"  {r.template_id}: {r.reason}")
        lines.append("")

    if report.errors:
        lines.append("Errors:")
        for r in report.errors:
            lines.append(f"  {r.template_id} ({r.action.value}): {r.error}")
        lines.append("")

    quiet = len(report.skipped) - len(report.diverged) - len(untracked)
    quiet -= len([r for r in report.skipped if not r.success])
    if quiet > 0:
        lines.append(f"Unchanged: {quiet} templates")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Dry-run preview
# ------------------------------------------------------------------


def format_dry_run_preview(report: SyncReport) -> str:
    """Format a dry-run preview grouped by action type.

    Each proposed action is shown as ``[ACTION] kind/name -> path``.

    Args:
        report: A dry-run report (``dry_run=True``).

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []
    lines.append("DRY RUN -- No changes will be made")
    lines.append(f"Command: {report.command}")
    lines.append("")

    groups: dict[SyncAction, list[SyncResult]] = defaultdict(list)
    for r in report.results:
        groups[r.action].append(r)

    display_order = [
        SyncAction.CREATE,
        SyncAction.UPDATE,
        SyncAction.SIDECAR,
        SyncAction.CONFLICT,
    ]

    for action in display_order:
        if action not in groups:
            continue
        lines.append(f"[{action.value.upper()}]")
        for r in groups[action]:
            lines.append(f"  {r.template_id} -> {r.path} ({r.reason})")
        lines.append("")

    diverged = [r for r in groups.get(SyncAction.SKIP, []) if r.diverged]
    if diverged:
        lines.append("[SKIP - MODIFIED LOCALLY]")
        for r in diverged:
            lines.append(f"  {r.template_id}: {r.path}")
        lines.append("")

    skip_count = len(groups.get(SyncAction.SKIP, [])) - len(diverged)
    if skip_count > 0:
        lines.append(f"Skipped: {skip_count} templates")
        lines.append("")

    if not any(
        a != SyncAction.SKIP for a in groups
    ) and not diverged:
        lines.append("No changes needed.")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Divergence diff
# ------------------------------------------------------------------


def format_divergence_diff(
    template_id: TemplateId,
    user_text: str | None,
    bundled_text: str,
) -> str:
    """Format a unified diff between the user's copy and the bundled default.

    Args:
        template_id: The template.
        user_text: Content of the user's file, or ``None`` if absent.
        bundled_text: Content shipped with this build.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = [f"Template: {template_id}", ""]

    if user_text is None:
        lines.append("(no user copy -- run 'margo copy' or 'margo init')")
        return "\n".join(lines)

    diff = difflib.unified_diff(
        user_text.splitlines(keepends=True),
        bundled_text.splitlines(keepends=True),
        fromfile=f"yours: {template_id}",
        tofile=f"bundled: {template_id}",
    )
    diff_text = "".join(diff)
    if diff_text:
        lines.append(diff_text.rstrip())
    else:
        lines.append("(no textual differences)")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Listings
# ------------------------------------------------------------------


def format_template_listing(
    title: str,
    groups: dict[str, Sequence[tuple[str, str | None]]],
    empty_hint: dict[str, str] | None = None,
) -> str:
    """Format grouped ``(name, status)`` rows.

    Args:
        title: Heading line.
        groups: Kind label -> rows.  A ``None`` status prints the name only.
        empty_hint: Kind label -> text shown when that group is empty.

    Returns:
        Multi-line formatted string.
    """
    hints = empty_hint or {}
    lines = [title, ""]
    for label, rows in groups.items():
        lines.append(f"  {label} ({len(rows)})")
        if not rows:
            lines.append(f"    - {hints.get(label, 'none')}")
        width = max((len(name) for name, _ in rows), default=0)
        for name, status in rows:
            if status:
                lines.append(f"    - {name.ljust(width)}  [{status}]")
            else:
                lines.append(f"    - {name}")
        lines.append("")
    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def report_to_json(report: SyncReport) -> dict:
    """Convert a report to a structured dict for JSON serialisation.

    Args:
        report: The report.

    Returns:
        Dict with run info, counts, and per-result details.
    """
    results_list = []
    for r in report.results:
        entry: dict = {
            "template": r.template_id.key,
            "kind": r.template_id.kind.value,
            "name": r.template_id.name,
            "action": r.action.value,
            "diverged": r.diverged,
            "outcome": r.outcome,
            "success": r.success,
            "path": r.path,
        }
        if r.reason:
            entry["reason"] = r.reason
        if r.error:
            entry["error"] = r.error
        results_list.append(entry)

    return {
        "command": report.command,
        "dry_run": report.dry_run,
        "tool_version": report.tool_version,
        "started_at": report.started_at,
        "completed_at": report.completed_at,
        "counts": {
            "total": len(report.results),
            "created": len(report.created),
            "updated": len(report.updated),
            "sidecars": len(report.sidecars),
            "skipped": len(report.skipped),
            "diverged": len(report.diverged),
            "conflicts": len(report.conflicts),
            "errors": len(report.errors),
        },
        "results": results_list,
    }


def ids_to_json(ids: Iterable[TemplateId]) -> list[dict]:
    """Serialise template ids for ``--json`` listings."""
    return [{"kind": t.kind.value, "name": t.name} for t in ids]
