"""Live client sessions and the registry that owns them.

SessionState — per-connection lifecycle
Session — one connected client and its transport
SessionRegistry — maps session_id → Session
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from .relay_errors import TransportError
from .transport import Transport

logger = logging.getLogger(__name__)

DEFAULT_SEND_TIMEOUT = 5.0


class SessionState(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"
    CLOSED = "closed"


_TRANSITIONS = {
    SessionState.CONNECTING: {SessionState.CONNECTED, SessionState.DISCONNECTING},
    SessionState.CONNECTED: {SessionState.DISCONNECTING},
    SessionState.DISCONNECTING: {SessionState.CLOSED},
    SessionState.CLOSED: set(),
}


@dataclass(eq=False)
class Session:
    """A live client connection and its server-side state."""
    transport: Transport
    session_id: str = field(default_factory=lambda: str(uuid4()))
    state: SessionState = SessionState.CONNECTING
    send_timeout: float = DEFAULT_SEND_TIMEOUT
    created_at: float = field(default_factory=time.monotonic)
    last_activity: float = field(default_factory=time.monotonic)

    @property
    def is_connected(self) -> bool:
        return self.state == SessionState.CONNECTED

    def transition(self, new_state: SessionState) -> bool:
        """Move to ``new_state`` if the lifecycle allows it. Returns False otherwise."""
        if new_state not in _TRANSITIONS[self.state]:
            return False
        logger.debug(f"[SESSION] {self.session_id}: {self.state.value} -> {new_state.value}")
        self.state = new_state
        return True

    def touch(self) -> None:
        self.last_activity = time.monotonic()

    async def send(self, msg: dict) -> None:
        """Push one event to the client within ``send_timeout``.

        :raises TransportError: if the session is not connected or the send fails
        """
        if not self.is_connected:
            raise TransportError(f"Session is {self.state.value}", self.session_id)
        try:
            await asyncio.wait_for(self.transport.send_json(msg), timeout=self.send_timeout)
        except asyncio.TimeoutError:
            raise TransportError(f"Send timed out after {self.send_timeout}s", self.session_id)
        except Exception as e:
            raise TransportError(f"{type(e).__name__}: {e}", self.session_id) from e


class SessionRegistry:
    """Maps session_id → Session. Used from a single event loop."""

    def __init__(self):
        self._sessions: Dict[str, Session] = {}

    def add(self, session: Session) -> Session:
        """Register a session. A second add with the same id replaces the first."""
        previous = self._sessions.get(session.session_id)
        self._sessions[session.session_id] = session
        if previous is not None and previous is not session:
            logger.info(f"[REGISTRY] Replaced session {session.session_id}")
        else:
            logger.info(f"[REGISTRY] Registered session {session.session_id}")
        return session

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def remove(self, session_id: str) -> Optional[Session]:
        session = self._sessions.pop(session_id, None)
        if session:
            logger.info(f"[REGISTRY] Removed session {session_id}")
        return session

    def discard(self, session: Session) -> bool:
        """Remove ``session`` only if it is still the entry registered under its id."""
        if self._sessions.get(session.session_id) is not session:
            return False
        self.remove(session.session_id)
        return True

    def for_each(self, fn: Callable[[Session], Any]) -> int:
        """Apply ``fn`` to every session registered at call time.

        Sessions added or removed while iterating do not affect this pass. An
        exception from ``fn`` is logged and the remaining sessions still get
        their call. Returns the number of sessions visited.
        """
        snapshot = list(self._sessions.values())
        for session in snapshot:
            try:
                fn(session)
            except Exception as e:
                logger.error(f"[REGISTRY] Callback failed for session {session.session_id}: {type(e).__name__}: {e}")
        return len(snapshot)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    @property
    def session_ids(self) -> List[str]:
        return list(self._sessions)

    @property
    def active_count(self) -> int:
        return len(self._sessions)
