"""Wire protocol between sync clients and the session broker.

Frames are JSON objects carried as WebSocket text messages. The ``type``
field selects one of the message classes below; decoding checks the
discriminant first and then parses exactly the fields of that variant.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Dict, Mapping, Type, Union

from .snapshot.models import Snapshot


class MessageType(str, Enum):
    """Discriminant values of protocol frames."""
    START_SESSION = "START_SESSION"
    SESSION_STARTED = "SESSION_STARTED"
    JOIN_SESSION = "JOIN_SESSION"
    JOINED = "JOINED"
    SNAPSHOT = "SNAPSHOT"
    STUDENT_COUNT = "STUDENT_COUNT"
    TEACHER_SNAPSHOT = "TEACHER_SNAPSHOT"
    LEAVE_SESSION = "LEAVE_SESSION"
    LEFT = "LEFT"
    SESSION_CLOSED = "SESSION_CLOSED"
    ERROR = "ERROR"


class ProtocolError(Exception):
    """Base class for frames that cannot be turned into a message."""


class MalformedMessageError(ProtocolError):
    """The frame is not JSON, not an object, or lacks required fields."""


class UnknownMessageTypeError(ProtocolError):
    """The frame carries a ``type`` this protocol does not define."""

    def __init__(self, message_type: str):
        super().__init__(f"Unknown message type: {message_type!r}")
        self.message_type = message_type


def _require_str(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise MalformedMessageError(f"'{key}' must be a non-empty string")
    return value


def _message_text(data: Mapping[str, Any]) -> str:
    value = data.get("message", "")
    if not isinstance(value, str):
        raise MalformedMessageError("'message' must be a string")
    return value


def _require_snapshot(data: Mapping[str, Any]) -> Snapshot:
    if "snapshot" not in data:
        raise MalformedMessageError("'snapshot' is required")
    try:
        return Snapshot.from_dict(data["snapshot"])
    except ValueError as e:
        raise MalformedMessageError(f"Invalid snapshot: {e}") from e


@dataclass(frozen=True)
class _CodeMessage:
    code: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, "code": self.code}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]):
        return cls(code=_require_str(data, "code"))


@dataclass(frozen=True)
class _TextMessage:
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, "message": self.message}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]):
        return cls(message=_message_text(data))


@dataclass(frozen=True)
class _SnapshotPayload:
    snapshot: Snapshot

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, "snapshot": self.snapshot.to_dict()}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]):
        return cls(snapshot=_require_snapshot(data))


@dataclass(frozen=True)
class StartSession(_CodeMessage):
    """Create a session; the sender becomes its owner."""
    type: ClassVar[MessageType] = MessageType.START_SESSION


@dataclass(frozen=True)
class JoinSession(_CodeMessage):
    """Subscribe to an existing session."""
    type: ClassVar[MessageType] = MessageType.JOIN_SESSION


@dataclass(frozen=True)
class SessionStarted(_TextMessage):
    type: ClassVar[MessageType] = MessageType.SESSION_STARTED


@dataclass(frozen=True)
class Joined(_TextMessage):
    type: ClassVar[MessageType] = MessageType.JOINED


@dataclass(frozen=True)
class Left(_TextMessage):
    type: ClassVar[MessageType] = MessageType.LEFT


@dataclass(frozen=True)
class SessionClosed(_TextMessage):
    """Sent to subscribers when the owner leaves or disconnects."""
    type: ClassVar[MessageType] = MessageType.SESSION_CLOSED


@dataclass(frozen=True)
class ErrorMessage(_TextMessage):
    """A rejected operation."""
    type: ClassVar[MessageType] = MessageType.ERROR


@dataclass(frozen=True)
class SnapshotMessage(_SnapshotPayload):
    """Snapshot delivered to a subscriber."""
    type: ClassVar[MessageType] = MessageType.SNAPSHOT


@dataclass(frozen=True)
class TeacherSnapshot(_SnapshotPayload):
    """Snapshot published by the session owner."""
    type: ClassVar[MessageType] = MessageType.TEACHER_SNAPSHOT


@dataclass(frozen=True)
class StudentCount:
    """Current number of subscribers, sent to the owner."""
    type: ClassVar[MessageType] = MessageType.STUDENT_COUNT

    count: int

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, "count": self.count}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StudentCount":
        count = data.get("count")
        if isinstance(count, bool) or not isinstance(count, int) or count < 0:
            raise MalformedMessageError("'count' must be a non-negative integer")
        return cls(count=count)


@dataclass(frozen=True)
class LeaveSession:
    type: ClassVar[MessageType] = MessageType.LEAVE_SESSION

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LeaveSession":
        return cls()


Message = Union[
    StartSession,
    SessionStarted,
    JoinSession,
    Joined,
    SnapshotMessage,
    StudentCount,
    TeacherSnapshot,
    LeaveSession,
    Left,
    SessionClosed,
    ErrorMessage,
]

MESSAGE_CLASSES: Dict[MessageType, Type[Any]] = {
    cls.type: cls
    for cls in (
        StartSession,
        SessionStarted,
        JoinSession,
        Joined,
        SnapshotMessage,
        StudentCount,
        TeacherSnapshot,
        LeaveSession,
        Left,
        SessionClosed,
        ErrorMessage,
    )
}


def decode_message(raw: Union[str, bytes]) -> Message:
    """Parse one frame into its message class."""
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MalformedMessageError(f"Frame is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise MalformedMessageError("Frame must be a JSON object")

    raw_type = data.get("type")
    if not isinstance(raw_type, str):
        raise MalformedMessageError("Frame is missing a string 'type'")

    try:
        message_type = MessageType(raw_type)
    except ValueError:
        raise UnknownMessageTypeError(raw_type) from None

    return MESSAGE_CLASSES[message_type].from_dict(data)


def encode_message(message: Message) -> str:
    """Serialize a message to a JSON text frame."""
    return json.dumps(message.to_dict(), ensure_ascii=False)


__all__ = [
    "MessageType",
    "Message",
    "MESSAGE_CLASSES",
    "ProtocolError",
    "MalformedMessageError",
    "UnknownMessageTypeError",
    "StartSession",
    "SessionStarted",
    "JoinSession",
    "Joined",
    "SnapshotMessage",
    "StudentCount",
    "TeacherSnapshot",
    "LeaveSession",
    "Left",
    "SessionClosed",
    "ErrorMessage",
    "decode_message",
    "encode_message",
]
