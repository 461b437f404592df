"""
Interactive terminal front end for lockstep.

Reads slash commands from the prompt and prints session events (new
snapshots, subscriber counts, session closures) as they arrive from the
broker.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from shutil import get_terminal_size
from typing import Optional

try:
    import readline
except ImportError:  # pragma: no cover
    readline = None

from rich.console import Console
from rich.text import Text

from .commands import COMMANDS
from .configuration import ConfigurationBundle, Diagnostic, load_runtime_configuration
from .logging_utils import setup_logging
from .slash_commands import CommandRouter, parse_command_line
from .snapshot import SnapshotSettings
from .sync import ClientSettings, SessionState, SyncClient, WorkspaceSync

REPO_ROOT = Path(__file__).resolve().parent.parent
logger = logging.getLogger("lockstep")
TRUE_STRINGS = {"1", "true", "yes", "on"}
FALSE_STRINGS = {"0", "false", "no", "off"}


def print_banner(workspace_dir: Path) -> None:
    """Print the runtime header so users know which tree is being tracked."""

    terminal_width = get_terminal_size(fallback=(80, 24)).columns
    if terminal_width >= 60:
        inner_width = 58
        lines = [
            "╔" + "═" * inner_width + "╗",
            f"║{'LOCKSTEP':^{inner_width}}║",
            f"║{'snapshot ◇ share ◇ restore':^{inner_width}}║",
            "╚" + "═" * inner_width + "╝",
        ]
        print("\n".join(lines))
    else:
        print("lockstep")
    print(f"workspace: {workspace_dir}")
    print("Type /help for commands, /quit to exit.")
    print()


def _parse_env_flag(value: str, *, default: bool = True) -> bool:
    normalized = value.strip().lower()
    if normalized in TRUE_STRINGS:
        return True
    if normalized in FALSE_STRINGS:
        return False
    return default


def _resolve_ui_verbose(config_bundle: ConfigurationBundle) -> bool:
    """Resolve whether the CLI should show the banner and event chatter."""

    env_value = os.environ.get("LOCKSTEP_UI_VERBOSE")
    if env_value is not None:
        return _parse_env_flag(env_value)

    verbose_setting = config_bundle.section("ui").get("verbose")
    if verbose_setting is None:
        return True
    return bool(verbose_setting)


def _log_path_within(log_path: Path, directory: Path) -> bool:
    try:
        log_path.relative_to(directory)
        return True
    except ValueError:
        return False


def build_sync(config: ConfigurationBundle) -> Optional[WorkspaceSync]:
    """Wire the broker client to the workspace, or None when the workspace is unusable."""

    if config.status != "ready":
        return None
    client_settings = ClientSettings.from_config(config.merged)
    client = SyncClient(client_settings)
    return WorkspaceSync(
        config.workspace_dir,
        client,
        snapshot_settings=SnapshotSettings.from_config(config.merged),
        auto_apply=client_settings.auto_apply,
        auto_rejoin=client_settings.auto_rejoin,
    )


def build_router(config: ConfigurationBundle, sync: Optional[WorkspaceSync] = None) -> CommandRouter:
    """Register every slash command."""

    router = CommandRouter(config, sync=sync, metadata={"repo_root": str(REPO_ROOT)})
    for command in COMMANDS:
        router.register(command)
    return router


def connect_on_startup(sync: Optional[WorkspaceSync]) -> bool:
    """Open the broker connection when the client is configured to connect at launch."""

    if sync is None or not sync.client.settings.connect_on_start:
        return False
    if sync.client.connect():
        return True
    print(f"[sync] broker at {sync.client.settings.server_url} is unreachable; retrying in the background.")
    return False


def emit_configuration_report(config: ConfigurationBundle) -> None:
    """Print diagnostics so users can correct issues quickly."""

    if not config.diagnostics:
        print(f"[config] Loaded {len(config.files_loaded)} file(s).")
        return

    print("[config] Diagnostics:")
    for diag in config.diagnostics:
        prefix = diag.source or config.workspace_dir
        print(f"  - ({diag.level.upper()}) {diag.message} [{prefix}]")


def configure_autocomplete(router: CommandRouter) -> None:
    """Enable readline tab completion for slash commands."""

    if readline is None:
        return

    commands = list(router.command_names) + ["quit"]

    def completer(text: str, state: int):
        buffer = readline.get_line_buffer()
        if not buffer.startswith("/"):
            return None
        fragment = text[1:] if text.startswith("/") else text
        matches = [f"/{cmd}" for cmd in commands if cmd.startswith(fragment)]
        if state < len(matches):
            return matches[state]
        return None

    readline.set_completer(completer)
    readline.parse_and_bind("tab: complete")
    readline.set_completer_delims(" \t")


class EventPrinter:
    """Prints session state changes the user has not seen yet."""

    def __init__(self, console: Console, verbose: bool = True):
        self.console = console
        self.verbose = verbose
        self._last: Optional[SessionState] = None

    def __call__(self, state: SessionState) -> None:
        previous, self._last = self._last, state
        if previous is None:
            previous = SessionState()

        if state.connected != previous.connected and self.verbose:
            if state.connected:
                self._emit("connected", "green")
            else:
                self._emit("disconnected", "red")
        if state.pending_version and state.pending_version != previous.pending_version:
            self._emit(
                f"snapshot {state.pending_version} is available. Type /apply to update your workspace.",
                "bold cyan",
            )
        if state.subscriber_count != previous.subscriber_count and state.role is not None and self.verbose:
            self._emit(f"{state.subscriber_count} subscriber(s) in session")
        if state.last_message and state.last_message != previous.last_message and self.verbose:
            self._emit(state.last_message)

    def _emit(self, text: str, style: str = "") -> None:
        self.console.print(Text.assemble(("[sync] ", "dim"), (text, style)))


def execute_cli_command(command_line: str, router: CommandRouter) -> str:
    """Execute a slash command line (leading '/' optional) and print the output."""

    command, args = parse_command_line(command_line)
    if not command:
        return ""
    result = router.handle(command, args)
    print(result)
    logger.info("Executed CLI command: /%s %s", command, " ".join(args))
    return result


def main() -> None:
    """Entry point for `lockstep` and `python -m lockstep`."""

    console = Console()
    config_bundle = load_runtime_configuration()
    ui_verbose = _resolve_ui_verbose(config_bundle)
    if ui_verbose:
        print_banner(config_bundle.workspace_dir)

    logging_config = config_bundle.section("logging")
    log_level_name = (os.environ.get("LOCKSTEP_LOG_LEVEL") or logging_config.get("level") or "WARNING").upper()
    state_dir = config_bundle.workspace_dir / SnapshotSettings.from_config(config_bundle.merged).protected_folder
    if config_bundle.status != "ready":
        state_dir = config_bundle.config_dir or REPO_ROOT
    log_path = setup_logging(
        state_dir,
        log_level_name,
        structured=bool(logging_config.get("structured", False)),
    )
    config_bundle.log_path = log_path
    if not _log_path_within(log_path, state_dir):
        config_bundle.diagnostics.append(
            Diagnostic(
                level="warning",
                message=f"Log directory is not writable; logging to fallback path '{log_path}'.",
                source=log_path,
            )
        )
    if ui_verbose or config_bundle.diagnostics:
        emit_configuration_report(config_bundle)
    logger.info("Logging initialized at %s", log_path)

    sync = build_sync(config_bundle)
    if sync is not None:
        sync.on_change(EventPrinter(console, verbose=ui_verbose))
        connect_on_startup(sync)

    router = build_router(config_bundle, sync)
    configure_autocomplete(router)

    try:
        while True:
            try:
                raw_line = input("> ")
            except (EOFError, KeyboardInterrupt):
                print("\n[Exiting lockstep]")
                break

            line = raw_line.strip()
            if not line:
                continue
            if line.lower() in {"quit", "exit", "/quit", "/exit"}:
                print("[Goodbye]")
                break
            if not line.startswith("/"):
                print("[lockstep] commands start with '/'. Type /help for the list.")
                continue
            execute_cli_command(line, router)
    finally:
        if sync is not None:
            sync.client.disconnect()


__all__ = [
    "EventPrinter",
    "build_router",
    "build_sync",
    "configure_autocomplete",
    "connect_on_startup",
    "emit_configuration_report",
    "execute_cli_command",
    "main",
    "print_banner",
]
