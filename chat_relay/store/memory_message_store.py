import logging
from typing import List, Optional

from ..relay_errors import StoreError
from ..relay_models import ChatMessage
from .message_store import MessageStore

logger = logging.getLogger(__name__)


class MemoryMessageStore(MessageStore):
    """Message store with in-memory tracking.

    Set ``available`` to False to simulate an unreachable backend: every
    operation then fails with :class:`StoreError` and nothing is written.
    """

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._messages: List[ChatMessage] = []
        self.available = True

    def _check_available(self) -> None:
        if not self.available:
            raise StoreError("Message store unavailable")

    async def _insert(self, message: ChatMessage) -> None:
        self._check_available()
        self._messages.append(message)

    async def _fetch_recent(self, limit: int) -> List[ChatMessage]:
        self._check_available()
        return list(self._messages[-limit:])

    async def _count(self) -> int:
        self._check_available()
        return len(self._messages)

    async def _load_last(self) -> Optional[ChatMessage]:
        self._check_available()
        return self._messages[-1] if self._messages else None

    @property
    def messages(self) -> List[ChatMessage]:
        """Snapshot of every stored message in insertion order."""
        return list(self._messages)
