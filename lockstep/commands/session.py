"""Slash commands for broker sessions."""

from __future__ import annotations

from typing import List

from ..slash_commands import SlashCommand, SlashCommandContext
from .snapshot import render_reconcile_result


def _connect_handler(context: SlashCommandContext, _: List[str]) -> str:
    if context.sync is None:
        return "[connect] sync is not configured."
    client = context.sync.client
    if client.connect():
        return f"[connect] connected to {client.settings.server_url}."
    return f"[connect] could not reach {client.settings.server_url}; retrying in the background."


def _disconnect_handler(context: SlashCommandContext, _: List[str]) -> str:
    if context.sync is None:
        return "[disconnect] sync is not configured."
    context.sync.client.disconnect()
    return "[disconnect] disconnected."


def _start_handler(context: SlashCommandContext, args: List[str]) -> str:
    if context.sync is None:
        return "[start] sync is not configured."
    code = context.sync.start_session(args[0] if args else None)
    if code is None:
        return f"[start] {context.sync.state.last_message or 'could not start session'}."
    return f"[start] requested session {code}. Share this code with subscribers."


def _join_handler(context: SlashCommandContext, args: List[str]) -> str:
    if context.sync is None:
        return "[join] sync is not configured."
    if not args:
        return "[join] usage: /join CODE"
    if not context.sync.join_session(args[0]):
        return f"[join] {context.sync.state.last_message or 'could not join session'}."
    return f"[join] requested to join {context.sync.state.session_code}."


def _leave_handler(context: SlashCommandContext, _: List[str]) -> str:
    if context.sync is None:
        return "[leave] sync is not configured."
    if context.sync.state.session_code is None:
        return "[leave] not in a session."
    context.sync.leave_session()
    return "[leave] left session."


def _apply_handler(context: SlashCommandContext, _: List[str]) -> str:
    if context.sync is None:
        return "[apply] sync is not configured."
    result = context.sync.apply_pending()
    if result is None:
        return "[apply] no pending snapshot."
    return render_reconcile_result("apply", result)


COMMANDS = [
    SlashCommand(
        name="connect",
        description="Connect to the session broker.",
        handler=_connect_handler,
    ),
    SlashCommand(
        name="disconnect",
        description="Disconnect from the broker and stop reconnecting.",
        handler=_disconnect_handler,
    ),
    SlashCommand(
        name="start",
        description="Host a session; a code is generated when omitted.",
        handler=_start_handler,
        usage="[CODE]",
    ),
    SlashCommand(
        name="join",
        description="Join a session and follow its snapshots.",
        handler=_join_handler,
        usage="CODE",
    ),
    SlashCommand(
        name="leave",
        description="Leave the current session.",
        handler=_leave_handler,
    ),
    SlashCommand(
        name="apply",
        description="Apply the pending snapshot to the workspace.",
        handler=_apply_handler,
        requires_ready=True,
    ),
]

__all__ = ["COMMANDS"]
