"""Session broker relaying snapshots from publishers to subscribers."""

from __future__ import annotations

from .server import BrokerServerState, BrokerSettings, LockstepBrokerServer
from .sessions import (
    AlreadyInSessionError,
    BrokerConnection,
    BrokerError,
    DuplicateSessionError,
    NotSessionOwnerError,
    Role,
    Session,
    SessionBroker,
    UnknownSessionError,
)

__all__ = [
    # Server
    "LockstepBrokerServer",
    "BrokerServerState",
    "BrokerSettings",
    # Sessions
    "SessionBroker",
    "Session",
    "BrokerConnection",
    "Role",
    "BrokerError",
    "DuplicateSessionError",
    "UnknownSessionError",
    "NotSessionOwnerError",
    "AlreadyInSessionError",
]
