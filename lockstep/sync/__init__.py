"""Client side of snapshot sessions."""

from __future__ import annotations

from .client import ClientSettings, ConnectionState, SyncClient, backoff_delay
from .session import SessionState, WorkspaceSync, generate_session_code

__all__ = [
    "ClientSettings",
    "ConnectionState",
    "SyncClient",
    "backoff_delay",
    "SessionState",
    "WorkspaceSync",
    "generate_session_code",
]
