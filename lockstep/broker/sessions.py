"""In-memory session registry of the broker."""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Set, Union

from ..protocol import (
    ErrorMessage,
    JoinSession,
    Joined,
    LeaveSession,
    Left,
    MalformedMessageError,
    Message,
    SessionClosed,
    SessionStarted,
    SnapshotMessage,
    StartSession,
    StudentCount,
    TeacherSnapshot,
    UnknownMessageTypeError,
    decode_message,
)
from ..snapshot.models import Snapshot

logger = logging.getLogger("lockstep.broker.sessions")

_connection_ids = itertools.count(1)


class Role(str, Enum):
    """Role a connection holds inside a session."""
    PUBLISHER = "publisher"
    SUBSCRIBER = "subscriber"


class BrokerError(Exception):
    """An operation the broker rejects; reported to the caller as ERROR."""


class DuplicateSessionError(BrokerError):
    def __init__(self, code: str):
        super().__init__("Session code already exists")
        self.code = code


class UnknownSessionError(BrokerError):
    def __init__(self, code: str):
        super().__init__("Invalid session code")
        self.code = code


class NotSessionOwnerError(BrokerError):
    def __init__(self) -> None:
        super().__init__("Only the session owner can publish snapshots")


class AlreadyInSessionError(BrokerError):
    def __init__(self, code: str):
        super().__init__(f"Already in session {code}; leave it first")
        self.code = code


class BrokerConnection:
    """A transport peer as seen by the broker.

    Subclasses implement :meth:`_deliver`; it must not block. ``send`` on a
    connection that is no longer open does nothing.
    """

    def __init__(self) -> None:
        self.connection_id = next(_connection_ids)
        self.session_code: Optional[str] = None
        self.role: Optional[Role] = None

    @property
    def is_open(self) -> bool:
        raise NotImplementedError

    def send(self, message: Message) -> None:
        if not self.is_open:
            return
        self._deliver(message)

    def _deliver(self, message: Message) -> None:
        raise NotImplementedError

    def _assign(self, code: Optional[str], role: Optional[Role]) -> None:
        self.session_code = code
        self.role = role

    def __repr__(self) -> str:
        return f"<{type(self).__name__} #{self.connection_id} {self.role or '-'}@{self.session_code or '-'}>"


@dataclass(eq=False)
class Session:
    """A publisher and its subscribers under one code."""

    code: str
    owner: BrokerConnection
    subscribers: Set[BrokerConnection] = field(default_factory=set)
    snapshot: Optional[Snapshot] = None
    closed: bool = False
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    def broadcast_count(self) -> None:
        self.owner.send(StudentCount(count=len(self.subscribers)))


class SessionBroker:
    """Routes snapshots from session owners to subscribers.

    The session map is guarded by a registry lock; each session's fields are
    guarded by that session's own lock, so unrelated sessions never contend.
    """

    def __init__(self) -> None:
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()

    def get(self, code: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(code)

    def _require(self, code: str) -> Session:
        session = self.get(code)
        if session is None:
            raise UnknownSessionError(code)
        return session

    def start(self, code: str, connection: BrokerConnection) -> Session:
        if connection.session_code is not None:
            raise AlreadyInSessionError(connection.session_code)

        with self._lock:
            if code in self._sessions:
                raise DuplicateSessionError(code)
            session = Session(code=code, owner=connection)
            self._sessions[code] = session

        with session.lock:
            connection._assign(code, Role.PUBLISHER)
            connection.send(SessionStarted(message="Session started successfully"))
        logger.info(
            "Session started: %s by %r",
            code,
            connection,
            extra={"session_code": code, "connection_id": connection.connection_id},
        )
        return session

    def join(self, code: str, connection: BrokerConnection) -> Session:
        if connection.session_code is not None:
            raise AlreadyInSessionError(connection.session_code)

        session = self._require(code)
        with session.lock:
            if session.closed:
                raise UnknownSessionError(code)
            session.subscribers.add(connection)
            connection._assign(code, Role.SUBSCRIBER)
            connection.send(Joined(message="Successfully joined session"))
            if session.snapshot is not None:
                connection.send(SnapshotMessage(snapshot=session.snapshot))
                logger.debug("Sent existing snapshot %s to %r", session.snapshot.id, connection)
            session.broadcast_count()
        logger.info(
            "Subscriber %r joined session %s",
            connection,
            code,
            extra={"session_code": code, "connection_id": connection.connection_id},
        )
        return session

    def publish(self, connection: BrokerConnection, snapshot: Snapshot) -> None:
        code = connection.session_code
        if code is None or connection.role is not Role.PUBLISHER:
            raise NotSessionOwnerError()

        session = self._require(code)
        with session.lock:
            if session.closed or session.owner is not connection:
                raise NotSessionOwnerError()
            session.snapshot = snapshot
            message = SnapshotMessage(snapshot=snapshot)
            for subscriber in list(session.subscribers):
                subscriber.send(message)
            session.broadcast_count()
        logger.info(
            "Snapshot %s broadcast in session %s to %d subscribers",
            snapshot.id,
            code,
            len(session.subscribers),
            extra={"session_code": code, "snapshot_id": snapshot.id},
        )

    def leave(self, connection: BrokerConnection) -> None:
        self._detach(connection)
        connection.send(Left(message="Left session"))

    def disconnect(self, connection: BrokerConnection) -> None:
        self._detach(connection)
        logger.debug("Connection closed: %r", connection)

    def _detach(self, connection: BrokerConnection) -> None:
        code, role = connection.session_code, connection.role
        connection._assign(None, None)
        if code is None:
            return

        session = self.get(code)
        if session is None:
            return

        with session.lock:
            if session.closed:
                return
            if role is Role.PUBLISHER and session.owner is connection:
                self._close(session)
            elif role is Role.SUBSCRIBER and connection in session.subscribers:
                session.subscribers.discard(connection)
                session.broadcast_count()
                logger.info("Subscriber %r left session %s", connection, code)

    def _close(self, session: Session) -> None:
        # Caller holds session.lock.
        session.closed = True
        with self._lock:
            if self._sessions.get(session.code) is session:
                del self._sessions[session.code]

        closed = SessionClosed(message="Teacher ended the session.")
        for subscriber in list(session.subscribers):
            subscriber._assign(None, None)
            subscriber.send(closed)
        session.subscribers.clear()
        logger.info("Session %s closed by its owner", session.code, extra={"session_code": session.code})

    def dispatch(self, connection: BrokerConnection, message: Message) -> None:
        """Apply one decoded client message, reporting rejections as ERROR."""
        try:
            if isinstance(message, StartSession):
                self.start(message.code, connection)
            elif isinstance(message, JoinSession):
                self.join(message.code, connection)
            elif isinstance(message, TeacherSnapshot):
                self.publish(connection, message.snapshot)
            elif isinstance(message, LeaveSession):
                self.leave(connection)
            else:
                logger.warning("Ignoring %s sent by client %r", message.type.value, connection)
        except BrokerError as e:
            logger.info("Rejected %s from %r: %s", message.type.value, connection, e)
            connection.send(ErrorMessage(message=str(e)))

    def handle_frame(self, connection: BrokerConnection, raw: Union[str, bytes]) -> None:
        """Decode and dispatch a raw frame; bad frames are logged and dropped."""
        try:
            message = decode_message(raw)
        except UnknownMessageTypeError as e:
            logger.warning("Unknown message type from %r: %s", connection, e.message_type)
            return
        except MalformedMessageError as e:
            logger.error("Invalid message from %r: %s", connection, e)
            return
        self.dispatch(connection, message)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            sessions = list(self._sessions.values())
        return {
            "sessions": len(sessions),
            "subscribers": sum(len(s.subscribers) for s in sessions),
            "with_snapshot": sum(1 for s in sessions if s.snapshot is not None),
        }


__all__ = [
    "AlreadyInSessionError",
    "BrokerConnection",
    "BrokerError",
    "DuplicateSessionError",
    "NotSessionOwnerError",
    "Role",
    "Session",
    "SessionBroker",
    "UnknownSessionError",
]
