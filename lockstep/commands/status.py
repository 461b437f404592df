"""/status: workspace, connection and configuration overview."""

from __future__ import annotations

from typing import Dict, Iterable, List, Sequence, Tuple

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..slash_commands import SlashCommand, SlashCommandContext, render_rich
from ..snapshot import SnapshotStoreError

SECTION_ALIASES: Dict[str, Sequence[str]] = {
    "info": ("info", "summary"),
    "session": ("session", "sync"),
    "diagnostics": ("diagnostics", "diag", "diags"),
}
DEFAULT_MAX_ROWS = 5


def _resolve_sections(args: Iterable[str]) -> Tuple[List[str], bool]:
    """Return sections to render and whether all rows should be shown."""

    normalized = [arg.strip().lower() for arg in args]
    show_all = any(arg in {"--all", "-a", "all"} for arg in normalized)

    requested = [
        section
        for section, aliases in SECTION_ALIASES.items()
        if any(arg in aliases for arg in normalized)
    ]
    return requested or list(SECTION_ALIASES.keys()), show_all


def _base_snapshot_label(context: SlashCommandContext) -> str:
    if context.sync is None:
        return "(sync unavailable)"
    try:
        base = context.sync.store.load()
    except SnapshotStoreError as e:
        return f"unreadable ({e})"
    if base is None:
        return "(none)"
    return f"{base.id} ({len(base.files)} files)"


def _handler(context: SlashCommandContext, args: List[str]) -> str:
    config = context.config
    sections, show_all = _resolve_sections(args)

    def _render_summary(console: Console) -> None:
        info = Table.grid(padding=(0, 1))
        info.add_column("Key", style="bold", no_wrap=True)
        info.add_column("Value", overflow="fold")
        info.add_row("Workspace", str(config.workspace_dir))
        info.add_row("Status", config.status)
        info.add_row("Config files", str(len(config.files_loaded)))
        info.add_row("Log path", str(config.log_path or "(not initialized)"))
        info.add_row("Base snapshot", _base_snapshot_label(context))
        console.print(Panel(info, title="Workspace", border_style="green", padding=(0, 1)))

    def _render_session(console: Console) -> None:
        if context.sync is None:
            console.print(Panel("[yellow]Sync is not configured.", title="Session", border_style="blue"))
            return

        state = context.sync.state
        table = Table.grid(padding=(0, 1))
        table.add_column("Key", style="bold", no_wrap=True)
        table.add_column("Value", overflow="fold")
        table.add_row("Server", context.sync.client.settings.server_url)
        table.add_row("Connection", "[green]connected" if state.connected else "[red]disconnected")
        table.add_row("Role", state.role.value if state.role else "(none)")
        table.add_row("Session code", state.session_code or "(none)")
        table.add_row("Subscribers", str(state.subscriber_count))
        table.add_row("Pending snapshot", str(state.pending_version) if state.pending_version else "(none)")
        if state.last_message:
            table.add_row("Last message", state.last_message)
        console.print(Panel(table, title="Session", border_style="blue", padding=(0, 1)))

    def _render_diagnostics(console: Console) -> None:
        if not config.diagnostics:
            console.print(Panel("[green]No diagnostics reported.", title="Diagnostics", border_style="red"))
            return

        diag_table = Table(show_header=True, header_style="bold red", box=box.SIMPLE, pad_edge=False)
        diag_table.add_column("Lvl", style="red", no_wrap=True)
        diag_table.add_column("Message", overflow="fold", ratio=2)
        diag_table.add_column("Source", overflow="fold", ratio=2)

        max_rows = len(config.diagnostics) if show_all else DEFAULT_MAX_ROWS
        for diag in config.diagnostics[:max_rows]:
            diag_table.add_row(diag.level.upper(), diag.message, str(diag.source or "-"))

        console.print(Panel(diag_table, title="Diagnostics", border_style="red", padding=(0, 1)))
        if len(config.diagnostics) > max_rows:
            console.print(
                f"[dim]Showing {max_rows}/{len(config.diagnostics)}. "
                "Use '/status diagnostics --all' for the full list.[/dim]"
            )

    renderers = {
        "info": _render_summary,
        "session": _render_session,
        "diagnostics": _render_diagnostics,
    }

    def _render(console: Console) -> None:
        for section in sections:
            renderers[section](console)

    return render_rich(_render)


COMMAND = SlashCommand(
    name="status",
    description="Show workspace, session, and configuration diagnostics.",
    handler=_handler,
    usage="[info|session|diagnostics] [--all]",
)
