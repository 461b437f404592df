"""Broker client with automatic reconnection."""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Protocol, Union

from websockets.exceptions import ConnectionClosed, WebSocketException
from websockets.sync.client import connect as websocket_connect

from ..protocol import (
    JoinSession,
    LeaveSession,
    MalformedMessageError,
    Message,
    SnapshotMessage,
    StartSession,
    TeacherSnapshot,
    UnknownMessageTypeError,
    decode_message,
    encode_message,
)
from ..snapshot.models import Snapshot

logger = logging.getLogger("lockstep.sync.client")

TRANSPORT_ERRORS = (OSError, WebSocketException)


class Transport(Protocol):
    """What the client needs from an open connection."""

    def send(self, message: str) -> None: ...

    def close(self) -> None: ...

    def __iter__(self) -> Iterable[Union[str, bytes]]: ...


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


ConnectFactory = Callable[[str, float], Transport]
TimerFactory = Callable[[float, Callable[[], None]], TimerHandle]

ConnectionHandler = Callable[[bool], None]
SnapshotHandler = Callable[[Snapshot], None]
MessageHandler = Callable[[Message], None]


class ConnectionState(str, Enum):
    """Client connection lifecycle."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass
class ClientSettings:
    """Settings for the broker connection."""

    server_url: str = "ws://127.0.0.1:8080/ws"
    base_delay: float = 1.0
    max_delay: float = 30.0
    max_attempts: int = 10
    open_timeout: float = 10.0
    auto_apply: bool = False
    auto_rejoin: bool = True
    connect_on_start: bool = True

    @classmethod
    def from_config(
        cls,
        config: Dict[str, Any],
        env: Optional[Mapping[str, str]] = None,
    ) -> "ClientSettings":
        raw = config.get("client", {}) if config else {}
        env_source = env if env is not None else os.environ
        return cls(
            server_url=str(env_source.get("LOCKSTEP_SERVER_URL") or raw.get("server_url", cls.server_url)),
            base_delay=float(raw.get("base_delay", 1.0)),
            max_delay=float(raw.get("max_delay", 30.0)),
            max_attempts=int(raw.get("max_attempts", 10)),
            open_timeout=float(raw.get("open_timeout", 10.0)),
            auto_apply=bool(raw.get("auto_apply", False)),
            auto_rejoin=bool(raw.get("auto_rejoin", True)),
            connect_on_start=bool(raw.get("connect_on_start", True)),
        )


def backoff_delay(attempt: int, base_delay: float = 1.0, max_delay: float = 30.0) -> float:
    """Delay before retry number ``attempt`` (zero-based), capped at ``max_delay``."""
    return min(base_delay * (2 ** attempt), max_delay)


def _default_connect(url: str, timeout: float) -> Transport:
    return websocket_connect(url, open_timeout=timeout)


def _default_timer(delay: float, callback: Callable[[], None]) -> TimerHandle:
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    timer.start()
    return timer


class SyncClient:
    """Keeps one connection to the broker open and relays protocol events.

    An unexpected drop schedules a reconnect with exponential backoff, up to
    ``settings.max_attempts`` retries; after that the client stays
    disconnected until :meth:`connect` is called again. :meth:`disconnect`
    closes the connection for good and cancels any pending retry.
    """

    def __init__(
        self,
        settings: Optional[ClientSettings] = None,
        connect_factory: Optional[ConnectFactory] = None,
        timer_factory: Optional[TimerFactory] = None,
    ):
        self.settings = settings or ClientSettings()
        self._connect_factory = connect_factory or _default_connect
        self._timer_factory = timer_factory or _default_timer

        self._lock = threading.RLock()
        self._state = ConnectionState.DISCONNECTED
        self._transport: Optional[Transport] = None
        self._reader: Optional[threading.Thread] = None
        self._timer: Optional[TimerHandle] = None
        self._manually_closed = False
        self._reconnect_attempts = 0

        self._connection_handlers: List[ConnectionHandler] = []
        self._snapshot_handlers: List[SnapshotHandler] = []
        self._message_handlers: List[MessageHandler] = []

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def manually_closed(self) -> bool:
        return self._manually_closed

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    # ------------------------------------------------------------------
    # Subscriptions

    def on_connection_change(self, handler: ConnectionHandler) -> None:
        self._connection_handlers.append(handler)

    def on_snapshot(self, handler: SnapshotHandler) -> None:
        self._snapshot_handlers.append(handler)

    def on_message(self, handler: MessageHandler) -> None:
        self._message_handlers.append(handler)

    # ------------------------------------------------------------------
    # Connection lifecycle

    def connect(self) -> bool:
        """Open the connection if it is not already open."""
        with self._lock:
            self._manually_closed = False
            self._cancel_timer()
        return self._open()

    def disconnect(self) -> None:
        """Close the connection and stop reconnecting."""
        with self._lock:
            self._manually_closed = True
            self._cancel_timer()
            transport = self._transport
            was_connected = self._state is ConnectionState.CONNECTED
            self._transport = None
            self._state = ConnectionState.DISCONNECTED

        if transport is not None:
            try:
                transport.close()
            except TRANSPORT_ERRORS as e:
                logger.debug("Error while closing transport: %s", e)
        if was_connected:
            self._emit(self._connection_handlers, False)
        logger.info("Disconnected from %s", self.settings.server_url)

    def _open(self) -> bool:
        with self._lock:
            if self._state is not ConnectionState.DISCONNECTED:
                return self._state is ConnectionState.CONNECTED
            self._state = ConnectionState.CONNECTING

        try:
            transport = self._connect_factory(self.settings.server_url, self.settings.open_timeout)
        except TRANSPORT_ERRORS as e:
            logger.warning("Connection to %s failed: %s", self.settings.server_url, e)
            with self._lock:
                self._state = ConnectionState.DISCONNECTED
            self._emit(self._connection_handlers, False)
            self._schedule_reconnect()
            return False

        with self._lock:
            if self._manually_closed:
                # disconnect() won the race while the handshake was in flight
                self._state = ConnectionState.DISCONNECTED
                transport.close()
                return False
            self._transport = transport
            self._state = ConnectionState.CONNECTED
            self._reconnect_attempts = 0
            self._reader = threading.Thread(
                target=self._read_loop,
                args=(transport,),
                daemon=True,
                name="lockstep-sync-reader",
            )
            self._reader.start()

        logger.info("Connected to %s", self.settings.server_url)
        self._emit(self._connection_handlers, True)
        return True

    def _schedule_reconnect(self) -> None:
        with self._lock:
            if self._manually_closed:
                return
            if self._reconnect_attempts >= self.settings.max_attempts:
                logger.warning("Max reconnect attempts reached.")
                return

            delay = backoff_delay(
                self._reconnect_attempts,
                self.settings.base_delay,
                self.settings.max_delay,
            )
            self._reconnect_attempts += 1
            logger.info("Reconnecting in %.1fs (attempt %d)", delay, self._reconnect_attempts)
            self._timer = self._timer_factory(delay, self._reconnect)

    def _reconnect(self) -> None:
        with self._lock:
            self._timer = None
            if self._manually_closed:
                return
        self._open()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _read_loop(self, transport: Transport) -> None:
        try:
            for raw in transport:
                self._handle_frame(raw)
        except ConnectionClosed as e:
            logger.info("Connection closed: %s", e)
        except TRANSPORT_ERRORS as e:
            logger.warning("Connection error: %s", e)
        finally:
            self._handle_close(transport)

    def _handle_close(self, transport: Transport) -> None:
        with self._lock:
            if transport is not self._transport:
                return
            self._transport = None
            self._state = ConnectionState.DISCONNECTED
            manual = self._manually_closed

        self._emit(self._connection_handlers, False)
        if not manual:
            self._schedule_reconnect()

    # ------------------------------------------------------------------
    # Inbound

    def _handle_frame(self, raw: Union[str, bytes]) -> None:
        try:
            message = decode_message(raw)
        except UnknownMessageTypeError as e:
            logger.warning("Unknown message type: %s", e.message_type)
            return
        except MalformedMessageError as e:
            logger.error("Invalid message from broker: %s", e)
            return

        if isinstance(message, SnapshotMessage):
            self._emit(self._snapshot_handlers, message.snapshot)
        else:
            self._emit(self._message_handlers, message)

    def _emit(self, handlers: List[Callable[[Any], None]], value: Any) -> None:
        for handler in list(handlers):
            try:
                handler(value)
            except Exception:
                logger.exception("Handler %r failed", handler)

    # ------------------------------------------------------------------
    # Outbound

    def start_session(self, code: str) -> bool:
        return self._send(StartSession(code=code))

    def join_session(self, code: str) -> bool:
        return self._send(JoinSession(code=code))

    def leave_session(self) -> bool:
        return self._send(LeaveSession())

    def publish_snapshot(self, snapshot: Snapshot) -> bool:
        return self._send(TeacherSnapshot(snapshot=snapshot))

    def _send(self, message: Message) -> bool:
        """Send a message; returns False instead of raising when offline."""
        with self._lock:
            transport = self._transport if self._state is ConnectionState.CONNECTED else None

        if transport is None:
            logger.warning("Not connected; dropping %s", message.type.value)
            return False

        try:
            transport.send(encode_message(message))
        except TRANSPORT_ERRORS as e:
            logger.warning("Failed to send %s: %s", message.type.value, e)
            return False
        return True


__all__ = [
    "ClientSettings",
    "ConnectionState",
    "SyncClient",
    "Transport",
    "backoff_delay",
]
