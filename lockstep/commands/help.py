"""/help: list commands, or show one command's usage."""

from __future__ import annotations

from typing import List

from ..slash_commands import SlashCommand, SlashCommandContext, render_help_table


def _handler(context: SlashCommandContext, args: List[str]) -> str:
    if not args:
        return render_help_table(context.router.commands())

    name = args[0].lstrip("/")
    command = context.router.get(name)
    if command is None:
        return f"[help] no command named '/{name}'."
    return f"{command.label}\n  {command.description}"


COMMAND = SlashCommand(
    name="help",
    description="List slash commands, or describe one.",
    handler=_handler,
    usage="[COMMAND]",
    aliases=("?",),
)
