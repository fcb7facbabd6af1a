import asyncio
import logging
from typing import List, Optional

from .relay_errors import RelayError, StoreError, TransportError, ValidationError
from .relay_models import ChatMessage, error_event_from, history_event, message_event
from .session_registry import Session, SessionRegistry, SessionState
from .store import MessageStore

logger = logging.getLogger(__name__)


class BroadcastCoordinator:
    """Persists inbound messages and fans them out to every registered session.

    Only one append-then-fan-out sequence runs at a time, so every session
    receives ``message`` events in the order the store assigned. The lock is
    held across fan-out, so a stalled client delays every broadcast by up to
    the session ``send_timeout`` before it is dropped.
    """

    def __init__(self, store: MessageStore, registry: SessionRegistry):
        self.store = store
        self.registry = registry
        self._sequence_lock = asyncio.Lock()

    async def handle_incoming(self, session: Session, author: str, body: str) -> Optional[ChatMessage]:
        """Persist a message from ``session`` and broadcast it to all sessions.

        Returns the stored message, or None if it was rejected or could not be
        stored. In that case only ``session`` is told, and nothing is broadcast.
        """
        async with self._sequence_lock:
            try:
                message = await self.store.append(author, body)
            except ValidationError as e:
                logger.info(f"[BROADCAST] Rejected message from session {session.session_id}: {e}")
                await self._notify(session, e)
                return None
            except StoreError as e:
                logger.error(f"[BROADCAST] Failed to store message from session {session.session_id}: {e}")
                await self._notify(session, e, "Message could not be saved")
                return None

            delivered = await self.fan_out(message_event(message))
        logger.debug(f"[BROADCAST] Message {message.id} delivered to {delivered} session(s)")
        return message

    async def fan_out(self, event: dict) -> int:
        """Push ``event`` to every connected session. Returns the delivery count.

        A session whose push fails is dropped from the registry and its
        transport is closed. The other sessions are unaffected.
        """
        targets: List[Session] = []
        self.registry.for_each(targets.append)
        targets = [s for s in targets if s.is_connected]
        results = await asyncio.gather(
            *(target.send(event) for target in targets),
            return_exceptions=True,
        )

        delivered = 0
        for target, result in zip(targets, results):
            if result is None:
                delivered += 1
            elif isinstance(result, TransportError):
                await self._drop(target, result)
            else:
                logger.error(f"[BROADCAST] Unexpected error pushing to session {target.session_id}: {result!r}")
                await self._drop(target, TransportError(str(result), target.session_id))
        return delivered

    async def send_history(self, session: Session, limit: int) -> None:
        """Send the newest ``limit`` messages to ``session`` only."""
        try:
            messages = await self.store.recent(limit)
        except StoreError as e:
            logger.error(f"[BROADCAST] Failed to load history for session {session.session_id}: {e}")
            await self._notify(session, e, "History could not be loaded")
            return
        try:
            await session.send(history_event(messages))
        except TransportError as e:
            await self._drop(session, e)

    async def _notify(self, session: Session, error: RelayError, message: Optional[str] = None) -> None:
        try:
            await session.send(error_event_from(error, message))
        except TransportError as e:
            logger.debug(f"[BROADCAST] Could not report {error.error_type} to session {session.session_id}: {e}")

    async def _drop(self, session: Session, error: TransportError) -> None:
        logger.warning(f"[BROADCAST] Dropping session {session.session_id}: {error}")
        session.transition(SessionState.DISCONNECTING)
        self.registry.discard(session)
        try:
            await session.transport.close(code=1011, reason="Delivery failed")
        except Exception as e:
            logger.debug(f"[BROADCAST] Close failed for session {session.session_id}: {e}")
        session.transition(SessionState.CLOSED)
