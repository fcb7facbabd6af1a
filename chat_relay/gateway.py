import logging
from typing import Optional

from .broadcast import BroadcastCoordinator
from .relay_errors import TransportError
from .relay_models import EventType, error_event, heartbeat_ack_event, session_init_event
from .session_registry import DEFAULT_SEND_TIMEOUT, Session, SessionRegistry, SessionState
from .transport import Transport, TransportClosed, parse_frame

logger = logging.getLogger(__name__)

DEFAULT_MAX_HISTORY = 100


class ConnectionGateway:
    """Accepts client transports and drives each session through its lifecycle.

    Each connection is served by its own task; frames from one connection are
    handled strictly one after another.
    """

    def __init__(
        self,
        coordinator: BroadcastCoordinator,
        *,
        send_timeout: float = DEFAULT_SEND_TIMEOUT,
        max_history: int = DEFAULT_MAX_HISTORY,
    ):
        self.coordinator = coordinator
        self.send_timeout = send_timeout
        self.max_history = max_history

    @property
    def registry(self) -> SessionRegistry:
        return self.coordinator.registry

    async def on_connect(self, transport: Transport) -> Optional[Session]:
        """Accept ``transport``, register a new session and greet the client.

        Returns None if the handshake or the greeting fails.
        """
        session = Session(transport=transport, send_timeout=self.send_timeout)
        try:
            await transport.accept()
        except Exception as e:
            logger.warning(f"[GATEWAY] Handshake with {transport.peer} failed: {type(e).__name__}: {e}")
            session.transition(SessionState.DISCONNECTING)
            session.transition(SessionState.CLOSED)
            return None

        session.transition(SessionState.CONNECTED)
        self.registry.add(session)
        logger.info(f"[GATEWAY] A user connected: session {session.session_id} from {transport.peer} "
                    f"(active sessions: {self.registry.active_count})")

        try:
            await session.send(session_init_event(session.session_id))
        except TransportError as e:
            logger.warning(f"[GATEWAY] Could not greet session {session.session_id}: {e}")
            await self._close(session)
            return None
        return session

    async def on_disconnect(self, session_id: str) -> None:
        """Remove a session and release its transport. Unknown ids are ignored."""
        session = self.registry.get(session_id)
        if session is not None:
            await self._close(session)

    async def serve(self, transport: Transport) -> None:
        """Run one connection from handshake to close."""
        session = await self.on_connect(transport)
        if session is None:
            return

        try:
            while session.is_connected:
                try:
                    raw = await transport.receive_text()
                except TransportClosed:
                    break
                if not session.is_connected:
                    break

                session.touch()
                msg = parse_frame(raw)
                if msg is None:
                    await self._reply(session, error_event("InvalidJSON", "Invalid JSON"))
                    continue
                await self.dispatch(session, msg)
        except Exception as e:
            logger.error(f"[GATEWAY] Error in session {session.session_id}: {type(e).__name__}: {e}")
        finally:
            await self._close(session)

    async def dispatch(self, session: Session, msg: dict) -> None:
        """Route one client frame to its handler."""
        msg_type = msg.get("type", "")

        if msg_type == EventType.SEND_MESSAGE.value:
            # "user"/"message" are the field names used by the legacy client
            author = msg.get("author", msg.get("user"))
            body = msg.get("body", msg.get("message"))
            await self.coordinator.handle_incoming(session, author, body)

        elif msg_type == EventType.GET_HISTORY.value:
            limit = msg.get("limit", self.max_history)
            if not isinstance(limit, int) or isinstance(limit, bool):
                limit = self.max_history
            await self.coordinator.send_history(session, max(1, min(limit, self.max_history)))

        elif msg_type == EventType.HEARTBEAT.value:
            await self._reply(session, heartbeat_ack_event())

        else:
            logger.warning(f"[GATEWAY] Unknown message type from session {session.session_id}: {msg_type!r}")
            await self._reply(session, error_event("UnknownType", f"Unknown message type: {msg_type}"))

    async def _reply(self, session: Session, msg: dict) -> None:
        try:
            await session.send(msg)
        except TransportError as e:
            logger.warning(f"[GATEWAY] Reply to session {session.session_id} failed: {e}")
            await self._close(session)

    async def _close(self, session: Session) -> None:
        if session.state == SessionState.CLOSED:
            return
        session.transition(SessionState.DISCONNECTING)
        self.registry.discard(session)
        try:
            await session.transport.close()
        except Exception as e:
            logger.debug(f"[GATEWAY] Transport close for session {session.session_id} failed: {e}")
        if session.transition(SessionState.CLOSED):
            logger.info(f"[GATEWAY] A user disconnected: session {session.session_id} "
                        f"(active sessions: {self.registry.active_count})")
