"""Tie a workspace's snapshot store to a broker session."""

from __future__ import annotations

import logging
import secrets
import string
import threading
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Callable, List, Optional

from ..broker.sessions import Role
from ..protocol import ErrorMessage, Joined, Left, Message, SessionClosed, SessionStarted, StudentCount
from ..snapshot import (
    ReconcileController,
    ReconcileResult,
    Snapshot,
    SnapshotBuilder,
    SnapshotSettings,
    SnapshotStore,
    SnapshotStoreError,
)
from .client import SyncClient

logger = logging.getLogger("lockstep.sync.session")

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 6

Decision = Callable[[Snapshot], bool]
StateObserver = Callable[["SessionState"], None]


def generate_session_code(length: int = CODE_LENGTH) -> str:
    """Random uppercase alphanumeric session code."""
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


@dataclass(frozen=True)
class SessionState:
    """What the front end shows about the current session."""

    connected: bool = False
    role: Optional[Role] = None
    session_code: Optional[str] = None
    pending_version: Optional[int] = None
    subscriber_count: int = 0
    last_message: Optional[str] = None


class WorkspaceSync:
    """Coordinates local snapshots with a broker session.

    Publishers save a base snapshot and push it to their session. Subscribers
    receive newer snapshots, keep them pending, and apply them when
    ``decide`` says so (or straight away with ``auto_apply``).
    """

    def __init__(
        self,
        workspace_dir: Path,
        client: SyncClient,
        snapshot_settings: Optional[SnapshotSettings] = None,
        auto_apply: bool = False,
        auto_rejoin: bool = True,
        decide: Optional[Decision] = None,
    ):
        self.workspace_dir = Path(workspace_dir)
        self.client = client
        self.snapshot_settings = snapshot_settings or SnapshotSettings()
        self.auto_apply = auto_apply
        self.auto_rejoin = auto_rejoin
        self.decide = decide

        self.store = SnapshotStore(
            self.workspace_dir,
            protected_folder=self.snapshot_settings.protected_folder,
            filename=self.snapshot_settings.snapshot_file,
        )
        self.reconciler = ReconcileController(
            self.workspace_dir,
            excludes=self.snapshot_settings.excludes,
            protected_folder=self.snapshot_settings.protected_folder,
        )

        self._lock = threading.RLock()
        self._state = SessionState(connected=client.connected)
        self._pending: Optional[Snapshot] = None
        # Role requested by start/join and not yet acknowledged.
        self._awaiting: Optional[Role] = None
        self._observers: List[StateObserver] = []

        client.on_connection_change(self._on_connection_change)
        client.on_snapshot(self._on_snapshot)
        client.on_message(self._on_message)

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def pending(self) -> Optional[Snapshot]:
        return self._pending

    def on_change(self, observer: StateObserver) -> None:
        self._observers.append(observer)

    # ------------------------------------------------------------------
    # Local snapshots

    def create_snapshot(self) -> Snapshot:
        """Capture the workspace, save it as the base, and publish it if we own the session."""
        builder = SnapshotBuilder(
            self.workspace_dir,
            excludes=self.snapshot_settings.excludes,
            protected_folder=self.snapshot_settings.protected_folder,
        )
        snapshot = builder.create_snapshot()
        self.store.save(snapshot)

        if self._state.role is Role.PUBLISHER and self._state.session_code:
            if self.client.publish_snapshot(snapshot):
                self._update(last_message=f"Published snapshot {snapshot.id}")
            else:
                self._update(last_message=f"Saved snapshot {snapshot.id} (not published)")
        else:
            self._update(last_message=f"Saved snapshot {snapshot.id}")
        return snapshot

    def reset_workspace(self) -> ReconcileResult:
        """Restore the workspace to the stored base snapshot."""
        result = self.reconciler.reset_to_base(self.store)
        self._update(last_message=f"Reset: {result.summary()}")
        return result

    def apply_pending(self) -> Optional[ReconcileResult]:
        """Reconcile to the pending snapshot, then adopt it as the base."""
        with self._lock:
            snapshot = self._pending
            if snapshot is None:
                return None
            self._pending = None

        try:
            result = self.reconciler.reconcile(snapshot)
        except Exception:
            with self._lock:
                if self._pending is None:
                    self._pending = snapshot
            raise
        self.store.save(snapshot)
        logger.info("Applied snapshot %s: %s", snapshot.id, result.summary(), extra={"snapshot_id": snapshot.id})
        self._update(pending_version=None, last_message=f"Applied snapshot {snapshot.id}: {result.summary()}")
        return result

    # ------------------------------------------------------------------
    # Session control

    def start_session(self, code: Optional[str] = None) -> Optional[str]:
        """Ask the broker to open a session; returns the code sent, or None when offline."""
        if not self.client.connected:
            self._update(last_message="Not connected to the broker")
            return None

        code = (code or generate_session_code()).strip().upper()
        with self._lock:
            self._awaiting = Role.PUBLISHER
            self._update(role=Role.PUBLISHER, session_code=code, subscriber_count=0)
        if not self.client.start_session(code):
            self._clear_session("Could not send start request")
            return None
        return code

    def join_session(self, code: str) -> bool:
        if not self.client.connected:
            self._update(last_message="Not connected to the broker")
            return False

        code = code.strip().upper()
        with self._lock:
            self._awaiting = Role.SUBSCRIBER
            self._update(role=Role.SUBSCRIBER, session_code=code, subscriber_count=0)
        if not self.client.join_session(code):
            self._clear_session("Could not send join request")
            return False
        return True

    def leave_session(self) -> bool:
        if self._state.session_code is None:
            return False
        sent = self.client.leave_session()
        self._clear_session("Left session")
        return sent

    def _clear_session(self, message: Optional[str] = None) -> None:
        with self._lock:
            self._awaiting = None
            self._pending = None
            self._update(
                role=None,
                session_code=None,
                pending_version=None,
                subscriber_count=0,
                last_message=message,
            )

    # ------------------------------------------------------------------
    # Client events

    def _on_connection_change(self, connected: bool) -> None:
        self._update(connected=connected)
        if not connected or not self.auto_rejoin:
            return

        role, code = self._state.role, self._state.session_code
        if role is None or not code:
            return

        logger.info("Rejoining session %s as %s", code, role.value)
        with self._lock:
            self._awaiting = role
        if role is Role.PUBLISHER:
            self.client.start_session(code)
        else:
            self.client.join_session(code)

    def _on_snapshot(self, snapshot: Snapshot) -> None:
        try:
            base = self.store.load()
        except SnapshotStoreError as e:
            logger.warning("Stored base unreadable, accepting incoming snapshot: %s", e)
            base = None
        if base is not None and not snapshot.is_newer_than(base):
            logger.debug("Ignoring snapshot %s; base is %s", snapshot.id, base.id)
            return

        with self._lock:
            self._pending = snapshot
        self._update(pending_version=snapshot.id, last_message=f"New snapshot {snapshot.id} available")

        if self.auto_apply or (self.decide is not None and self.decide(snapshot)):
            self.apply_pending()

    def _on_message(self, message: Message) -> None:
        if isinstance(message, StudentCount):
            self._update(subscriber_count=message.count)
        elif isinstance(message, (SessionStarted, Joined)):
            with self._lock:
                self._awaiting = None
            self._update(last_message=message.message)
        elif isinstance(message, SessionClosed):
            self._clear_session(message.message or "Session closed")
        elif isinstance(message, Left):
            self._update(last_message=message.message)
        elif isinstance(message, ErrorMessage):
            logger.warning("Broker error: %s", message.message)
            if self._awaiting is not None:
                self._clear_session(message.message)
            else:
                self._update(last_message=message.message)

    def _update(self, **changes) -> None:
        with self._lock:
            self._state = replace(self._state, **changes)
            state = self._state
        for observer in list(self._observers):
            try:
                observer(state)
            except Exception:
                logger.exception("State observer %r failed", observer)


__all__ = ["SessionState", "WorkspaceSync", "generate_session_code"]
