import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Awaitable, List, Optional, TypeVar

from ..relay_errors import StoreError
from ..relay_models import (
    ChatMessage,
    DEFAULT_MAX_AUTHOR_LENGTH,
    DEFAULT_MAX_BODY_LENGTH,
    validate_message,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_STORE_TIMEOUT = 5.0


class MessageStore(ABC):
    """Base class for append-only chat message stores.

    Appends are serialized through a single lock so that ``seq`` and
    ``created_at`` always follow insertion order. Every backend call is bounded
    by ``timeout`` and fails with :class:`StoreError` on expiry.
    """

    def __init__(
        self,
        *,
        timeout: float = DEFAULT_STORE_TIMEOUT,
        max_author_length: int = DEFAULT_MAX_AUTHOR_LENGTH,
        max_body_length: int = DEFAULT_MAX_BODY_LENGTH,
    ):
        self.timeout = timeout
        self.max_author_length = max_author_length
        self.max_body_length = max_body_length
        self._append_lock = asyncio.Lock()
        self._last_seq = 0
        self._last_created_at: Optional[datetime] = None
        self._needs_resync = False

    # ── Backend hooks ─────────────────────────────────────────

    @abstractmethod
    async def _insert(self, message: ChatMessage) -> None:
        """Durably write a fully populated message."""
        raise NotImplementedError("Subclasses must implement _insert")

    @abstractmethod
    async def _fetch_recent(self, limit: int) -> List[ChatMessage]:
        """Return the newest ``limit`` messages, oldest first."""
        raise NotImplementedError("Subclasses must implement _fetch_recent")

    @abstractmethod
    async def _count(self) -> int:
        raise NotImplementedError("Subclasses must implement _count")

    @abstractmethod
    async def _load_last(self) -> Optional[ChatMessage]:
        """Return the most recently inserted message, if any."""
        raise NotImplementedError("Subclasses must implement _load_last")

    async def open(self) -> None:
        """Prepare the backend and pick up the last sequence number."""
        await self._resync()

    async def close(self) -> None:
        """Release backend resources. The default implementation does nothing."""
        pass

    # ── Public API ────────────────────────────────────────────

    async def append(self, author: str, body: str) -> ChatMessage:
        """Persist a new message and return it with its id and timestamp.

        :raises ValidationError: if author or body is missing, blank or too long
        :raises StoreError: if the write fails or exceeds the deadline
        """
        validate_message(
            author,
            body,
            max_author_length=self.max_author_length,
            max_body_length=self.max_body_length,
        )
        async with self._append_lock:
            if self._needs_resync:
                await self._resync()
            message = ChatMessage(
                author=author,
                body=body,
                created_at=self._next_timestamp(),
                seq=self._last_seq + 1,
            )
            try:
                await self._bounded(self._insert(message), "append")
            except StoreError:
                # the write may have landed after the deadline; re-read before the next seq
                self._needs_resync = True
                raise
            self._last_seq = message.seq
            self._last_created_at = message.created_at
        logger.debug(f"[STORE] Appended message {message.id} (seq {message.seq}) from '{author}'")
        return message

    async def recent(self, limit: int) -> List[ChatMessage]:
        """Return up to ``limit`` of the newest messages, oldest first."""
        if limit <= 0:
            return []
        return await self._bounded(self._fetch_recent(limit), "recent")

    async def count(self) -> int:
        return await self._bounded(self._count(), "count")

    # ── Helpers ───────────────────────────────────────────────

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    def _next_timestamp(self) -> datetime:
        now = self._now()
        if self._last_created_at is not None and now < self._last_created_at:
            return self._last_created_at
        return now

    async def _resync(self) -> None:
        last = await self._bounded(self._load_last(), "load last")
        self._last_seq = last.seq if last else 0
        self._last_created_at = last.created_at if last else None
        self._needs_resync = False
        logger.debug(f"[STORE] Resynced at seq {self._last_seq}")

    async def _bounded(self, awaitable: Awaitable[T], operation: str) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error(f"[STORE] {operation} exceeded {self.timeout}s deadline")
            raise StoreError(f"Message store {operation} timed out after {self.timeout}s")
