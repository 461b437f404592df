"""Slash command registry and rendering helpers."""

from __future__ import annotations

from dataclasses import dataclass, field
from io import StringIO
import logging
import shlex
import shutil
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Sequence, Tuple

from rich.console import Console
from rich.table import Table

from .configuration import ConfigurationBundle

if TYPE_CHECKING:
    from .sync.session import WorkspaceSync

logger = logging.getLogger("lockstep.commands")

SlashCommandHandler = Callable[["SlashCommandContext", List[str]], str]


@dataclass
class SlashCommandContext:
    """What a handler gets to work with."""

    config: ConfigurationBundle
    router: "CommandRouter"
    sync: Optional["WorkspaceSync"] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SlashCommand:
    name: str
    description: str
    handler: SlashCommandHandler
    usage: str = ""
    requires_ready: bool = False
    aliases: Tuple[str, ...] = ()

    @property
    def label(self) -> str:
        return f"/{self.name} {self.usage}".rstrip()


def parse_command_line(line: str) -> Tuple[str, List[str]]:
    """Split '/join ABC123' (leading slash optional) into ('join', ['ABC123']).

    Quoting follows shell rules; an unbalanced quote falls back to plain
    whitespace splitting. Empty input yields ('', []).
    """

    text = line.strip()
    if text.startswith("/"):
        text = text[1:]
    try:
        parts = shlex.split(text)
    except ValueError:
        parts = text.split()
    if not parts:
        return "", []
    return parts[0], parts[1:]


class CommandRouter:
    """Looks up commands by name or alias and runs them against the current workspace."""

    def __init__(
        self,
        config: ConfigurationBundle,
        sync: Optional["WorkspaceSync"] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.config = config
        self.sync = sync
        self.metadata = metadata or {}
        self._commands: Dict[str, SlashCommand] = {}
        self._aliases: Dict[str, str] = {}

    def register(self, command: SlashCommand) -> None:
        name = command.name.lower()
        if name in self._commands or name in self._aliases:
            raise ValueError(f"slash command '/{name}' is already registered")
        self._commands[name] = command
        for alias in command.aliases:
            self._aliases[alias.lower()] = name

    def get(self, command_name: str) -> Optional[SlashCommand]:
        key = command_name.lower()
        return self._commands.get(self._aliases.get(key, key))

    @property
    def command_names(self) -> Sequence[str]:
        return sorted(self._commands)

    def commands(self) -> Sequence[SlashCommand]:
        return [self._commands[name] for name in self.command_names]

    def handle(self, command_name: str, args: List[str]) -> str:
        command = self.get(command_name)
        if command is None:
            return f"[router] unknown command '/{command_name}'. Type /help for the list."
        if command.requires_ready and self.config.status != "ready":
            return (
                f"[router] '/{command.name}' requires a ready workspace "
                f"(current status: {self.config.status})."
            )

        context = SlashCommandContext(config=self.config, router=self, sync=self.sync, metadata=self.metadata)
        try:
            return command.handler(context, args)
        except Exception:
            logger.exception("Slash command /%s failed (args=%s)", command.name, args)
            return f"[router] '/{command.name}' failed; see the log for details."


def render_help_table(commands: Sequence[SlashCommand]) -> str:
    def _render(console: Console) -> None:
        table = Table(title="Slash Commands", show_header=True, header_style="bold cyan")
        table.add_column("Command", style="green", no_wrap=True)
        table.add_column("Description")
        for command in commands:
            description = command.description
            if command.aliases:
                description += f" (alias: {', '.join('/' + a for a in command.aliases)})"
            table.add_row(command.label, description)
        console.print(table)

    return render_rich(_render)


def render_rich(render_fn: Callable[[Console], None]) -> str:
    """Render into an off-screen console and return the ANSI text."""

    size = shutil.get_terminal_size(fallback=(80, 24))
    console = Console(
        file=StringIO(),
        record=True,
        force_terminal=True,
        width=max(20, size.columns),
        height=max(10, size.lines),
    )
    render_fn(console)
    return console.export_text(styles=True)


__all__ = [
    "CommandRouter",
    "SlashCommand",
    "SlashCommandContext",
    "parse_command_line",
    "render_help_table",
    "render_rich",
]
