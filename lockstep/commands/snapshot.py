"""Slash commands for local snapshots: /snapshot, /diff, /reset."""

from __future__ import annotations

from typing import List

from rich.console import Console
from rich.table import Table

from ..slash_commands import SlashCommand, SlashCommandContext, render_rich
from ..snapshot import (
    MissingBaseSnapshotError,
    ReconcileResult,
    SnapshotBuilder,
    SnapshotStoreError,
    compute_diff,
)

MAX_LISTED = 20


def _require_sync(context: SlashCommandContext, label: str):
    if context.sync is None:
        return None, f"[{label}] sync is not configured."
    return context.sync, None


def _snapshot_handler(context: SlashCommandContext, _: List[str]) -> str:
    sync, error = _require_sync(context, "snapshot")
    if error:
        return error
    try:
        snapshot = sync.create_snapshot()
    except OSError as e:
        return f"[snapshot] could not save snapshot: {e}"
    return f"[snapshot] {sync.state.last_message} ({len(snapshot.files)} files)."


def _diff_handler(context: SlashCommandContext, args: List[str]) -> str:
    sync, error = _require_sync(context, "diff")
    if error:
        return error
    try:
        base = sync.store.load()
    except SnapshotStoreError as e:
        return f"[diff] {e}"
    if base is None:
        return "[diff] No base snapshot found. Create a snapshot first."

    settings = sync.snapshot_settings
    current = SnapshotBuilder(
        sync.workspace_dir,
        excludes=settings.excludes,
        protected_folder=settings.protected_folder,
    ).create_snapshot()
    diff = compute_diff(base, current)
    if not diff.has_changes:
        return f"[diff] workspace matches snapshot {base.id}."

    show_all = any(arg in {"--all", "-a"} for arg in args)

    def _render(console: Console) -> None:
        table = Table(title=f"Changes since {base.id}", show_header=True, header_style="bold cyan")
        table.add_column("Change", no_wrap=True)
        table.add_column("Path", overflow="fold")
        rows = (
            [("[green]added", path) for path in diff.added]
            + [("[yellow]modified", path) for path in diff.modified]
            + [("[red]deleted", path) for path in diff.deleted]
        )
        limit = len(rows) if show_all else MAX_LISTED
        for row in rows[:limit]:
            table.add_row(*row)
        console.print(table)
        console.print(diff.summary())
        if len(rows) > limit:
            console.print(f"[dim]Showing {limit}/{len(rows)}. Use '/diff --all' for everything.[/dim]")

    return render_rich(_render)


def render_reconcile_result(label: str, result: ReconcileResult) -> str:
    """Summarize a reconcile run, listing per-path errors if any."""
    lines = [f"[{label}] snapshot {result.snapshot_id}: {result.summary()}"]
    for error in result.errors:
        lines.append(f"  ! {error}")
    for link in result.unlinked:
        lines.append(f"  removed symlink {link}")
    if result.skipped:
        lines.append(f"  skipped (excluded here): {', '.join(result.skipped)}")
    if result.remaining is not None and result.remaining.has_changes:
        lines.append(f"  still differs: {result.remaining.summary()}")
    return "\n".join(lines)


def _reset_handler(context: SlashCommandContext, _: List[str]) -> str:
    sync, error = _require_sync(context, "reset")
    if error:
        return error
    try:
        result = sync.reset_workspace()
    except MissingBaseSnapshotError as e:
        return f"[reset] {e}"
    except SnapshotStoreError as e:
        return f"[reset] {e}"
    return render_reconcile_result("reset", result)


COMMANDS = [
    SlashCommand(
        name="snapshot",
        description="Save the workspace as the base snapshot (published when hosting).",
        handler=_snapshot_handler,
        requires_ready=True,
    ),
    SlashCommand(
        name="diff",
        description="Compare the workspace with the base snapshot.",
        handler=_diff_handler,
        usage="[--all]",
        requires_ready=True,
    ),
    SlashCommand(
        name="reset",
        description="Restore the workspace to the base snapshot.",
        handler=_reset_handler,
        requires_ready=True,
    ),
]

__all__ = ["COMMANDS", "render_reconcile_result"]
