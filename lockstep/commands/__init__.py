"""Slash command registry."""

from __future__ import annotations

from .help import COMMAND as HELP_COMMAND
from .session import COMMANDS as SESSION_COMMANDS
from .snapshot import COMMANDS as SNAPSHOT_COMMANDS
from .status import COMMAND as STATUS_COMMAND

COMMANDS = [
    STATUS_COMMAND,
    HELP_COMMAND,
    *SNAPSHOT_COMMANDS,
    *SESSION_COMMANDS,
]

__all__ = ["COMMANDS"]
