"""Test configuration and fixtures."""
import asyncio
import json
from typing import List, Optional

import pytest

from chat_relay.broadcast import BroadcastCoordinator
from chat_relay.gateway import ConnectionGateway
from chat_relay.session_registry import SessionRegistry
from chat_relay.store import MemoryMessageStore
from chat_relay.transport import Transport, TransportClosed


class FakeTransport(Transport):
    """In-process transport recording everything the server pushes."""

    def __init__(self, name: str = "client", fail_accept: bool = False):
        self.name = name
        self.fail_accept = fail_accept
        self.fail_sends = False
        self.sent: List[dict] = []
        self.closed = False
        self.close_code: Optional[int] = None
        self._inbox: asyncio.Queue = asyncio.Queue()

    @property
    def peer(self) -> str:
        return self.name

    async def accept(self) -> None:
        if self.fail_accept:
            raise ConnectionError("handshake failed")

    async def receive_text(self) -> str:
        frame = await self._inbox.get()
        if frame is None:
            raise TransportClosed(1000)
        return frame

    async def send_json(self, msg: dict) -> None:
        if self.closed:
            raise TransportClosed()
        if self.fail_sends:
            raise ConnectionResetError("client gone")
        self.sent.append(msg)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if not self.closed:
            self.closed = True
            self.close_code = code
        self._inbox.put_nowait(None)

    # ── Test helpers ──────────────────────────────────────────

    def feed(self, msg) -> None:
        """Queue an inbound frame; dicts are JSON-encoded, strings sent as-is."""
        self._inbox.put_nowait(msg if isinstance(msg, str) else json.dumps(msg))

    def hang_up(self) -> None:
        self._inbox.put_nowait(None)

    def events(self, event_type: str) -> List[dict]:
        return [m for m in self.sent if m.get("type") == event_type]

    def bodies(self) -> List[str]:
        return [m["body"] for m in self.events("message")]


@pytest.fixture
def store():
    return MemoryMessageStore()


@pytest.fixture
def registry():
    return SessionRegistry()


@pytest.fixture
def coordinator(store, registry):
    return BroadcastCoordinator(store, registry)


@pytest.fixture
def gateway(coordinator):
    return ConnectionGateway(coordinator, send_timeout=1.0, max_history=10)
