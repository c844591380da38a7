from __future__ import annotations

# Connection sessions.
#
# One Session per connected display or operator console:
#   CONNECTING -> ACTIVE -> TERMINATED
#
# Connecting: classify the client (privileged operator vs plain observer).
# Active: send one atomic snapshot, then forward every broadcast.
# Terminated: unsubscribe. Shared state is never touched by a session.
#
# The session joins the broadcaster *before* the snapshot read and holds
# incoming broadcasts back until the snapshot is out, so an update committed
# while the snapshot is in flight is delivered instead of lost.
#
# A connect for an id that is already registered replaces (and terminates)
# the registered session; a replaced session never activates.

import enum
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable

from .auth import Authorizer, Identity
from .broadcast import PRIVILEGED_TYPES, Broadcaster
from .errors import AuthorizationError, StoreUnavailableError
from .store import StateStore

log = logging.getLogger("ticket_display.session")

Sender = Callable[[dict[str, Any]], None]

POLICY_DOWNGRADE = "downgrade"
POLICY_REJECT = "reject"


class SessionState(enum.Enum):
    CONNECTING = "connecting"
    ACTIVE = "active"
    TERMINATED = "terminated"


@dataclass(eq=False)
class Session:
    """Transient per-connection state. Holds no authoritative data."""

    session_id: str
    send: Sender
    identity: Identity | None = None
    state: SessionState = SessionState.CONNECTING
    _backlog: list[dict[str, Any]] = field(default_factory=list, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    @property
    def privileged(self) -> bool:
        return self.identity is not None

    def deliver(self, message: dict[str, Any]) -> None:
        """Broadcaster callback."""
        if message.get("type") in PRIVILEGED_TYPES and not self.privileged:
            return
        with self._lock:
            if self.state is SessionState.CONNECTING:
                self._backlog.append(message)
                return
            if self.state is not SessionState.ACTIVE:
                return
            self.send(message)

    def activate(self, snapshot_message: dict[str, Any]) -> None:
        with self._lock:
            if self.state is not SessionState.CONNECTING:
                return
            self.send(snapshot_message)
            backlog, self._backlog = self._backlog, []
            for message in backlog:
                self.send(message)
            self.state = SessionState.ACTIVE

    def terminate(self) -> None:
        with self._lock:
            self.state = SessionState.TERMINATED
            self._backlog = []


class SessionManager:
    """Creates, tracks and tears down sessions."""

    def __init__(
        self,
        *,
        store: StateStore,
        broadcaster: Broadcaster,
        authorizer: Authorizer | None,
        policy: str = POLICY_DOWNGRADE,
    ) -> None:
        if policy not in (POLICY_DOWNGRADE, POLICY_REJECT):
            raise ValueError(f"unknown auth policy {policy!r}")
        self.store = store
        self.broadcaster = broadcaster
        self.authorizer = authorizer
        self.policy = policy

        self._lock = threading.Lock()
        self._sessions: dict[str, Session] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def get(self, session_id: str) -> Session | None:
        with self._lock:
            return self._sessions.get(session_id)

    def _classify(self, credential: str | None) -> Identity | None:
        """Return the operator identity, or None for a plain observer.

        Observers without a credential are always accepted. A bad credential
        is downgraded to observer unless the policy says reject.
        """
        if credential is None or self.authorizer is None:
            return None
        try:
            return self.authorizer.authorize(credential)
        except AuthorizationError:
            if self.policy == POLICY_REJECT:
                raise
            log.warning("invalid credential, downgrading to observer")
            return None

    def connect(self, session_id: str, send: Sender, credential: str | None = None) -> Session:
        """Run the connect handshake and return the new session.

        Raises AuthorizationError only under the reject policy. If the
        snapshot cannot be read the client gets `state_unavailable` and the
        returned session is already TERMINATED.
        """
        identity = self._classify(credential)
        session = Session(session_id=session_id, send=send, identity=identity)

        # Register under the id in one step so concurrent connects with the
        # same id always leave exactly one subscribed session behind.
        self.broadcaster.subscribe(session.deliver)
        with self._lock:
            previous = self._sessions.get(session_id)
            self._sessions[session_id] = session
        if previous is not None:
            self._retire(previous)

        try:
            snapshot = self.store.snapshot(include_admin_log=session.privileged)
        except StoreUnavailableError as e:
            with self._lock:
                if self._sessions.get(session_id) is session:
                    del self._sessions[session_id]
            self._retire(session)
            log.error("session %s: snapshot failed: %s", session_id, e)
            send({"type": "state_unavailable", "message": "could not load state, please reconnect"})
            return session

        session.activate(snapshot.to_message())
        if session.state is SessionState.ACTIVE:
            log.info(
                "session %s connected as %s",
                session_id,
                identity if identity is not None else "observer",
            )
        return session

    def disconnect(self, session_id: str) -> bool:
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        self._retire(session)
        log.info("session %s disconnected", session_id)
        return True

    def _retire(self, session: Session) -> None:
        self.broadcaster.unsubscribe(session.deliver)
        session.terminate()

    def close_all(self) -> None:
        with self._lock:
            session_ids = list(self._sessions)
        for session_id in session_ids:
            self.disconnect(session_id)
