"""Transport abstraction for one bidirectional JSON connection.

Transport — what the gateway and sessions talk to
WebSocketTransport — Starlette WebSocket implementation
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState

logger = logging.getLogger(__name__)


class TransportClosed(Exception):
    """Raised by ``receive`` once the peer has gone away."""
    def __init__(self, code: Optional[int] = None):
        self.code = code
        super().__init__(f"Transport closed (code {code})")


class Transport(ABC):
    """Base class for client connections."""

    @property
    @abstractmethod
    def peer(self) -> str:
        """Printable description of the remote end, for logging."""
        raise NotImplementedError("Subclasses must implement peer")

    @abstractmethod
    async def accept(self) -> None:
        """Complete the transport-level handshake."""
        raise NotImplementedError("Subclasses must implement accept")

    @abstractmethod
    async def receive_text(self) -> str:
        """Wait for the next inbound text frame.

        :raises TransportClosed: once the connection is gone
        """
        raise NotImplementedError("Subclasses must implement receive_text")

    @abstractmethod
    async def send_json(self, msg: dict) -> None:
        """Send one JSON frame. Any failure propagates to the caller."""
        raise NotImplementedError("Subclasses must implement send_json")

    @abstractmethod
    async def close(self, code: int = 1000, reason: str = "") -> None:
        """Close the connection. Safe to call more than once."""
        raise NotImplementedError("Subclasses must implement close")


class WebSocketTransport(Transport):
    """Transport over a Starlette/FastAPI WebSocket."""

    def __init__(self, ws: WebSocket):
        self._ws = ws

    @property
    def peer(self) -> str:
        client = self._ws.client
        return f"{client.host}:{client.port}" if client else "unknown"

    async def accept(self) -> None:
        await self._ws.accept()

    async def receive_text(self) -> str:
        try:
            return await self._ws.receive_text()
        except WebSocketDisconnect as e:
            raise TransportClosed(e.code)
        except RuntimeError as e:
            # raised by starlette when receiving after the socket was closed
            raise TransportClosed() from e

    async def send_json(self, msg: dict) -> None:
        if self._ws.client_state != WebSocketState.CONNECTED:
            raise TransportClosed()
        await self._ws.send_text(json.dumps(msg))

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self._ws.application_state == WebSocketState.DISCONNECTED:
            return
        if self._ws.client_state == WebSocketState.DISCONNECTED:
            return
        try:
            await self._ws.close(code=code, reason=reason)
        except RuntimeError as e:
            logger.debug(f"[WS] Close after disconnect ignored: {e}")


def parse_frame(raw: str) -> Optional[dict[str, Any]]:
    """Decode a text frame into a JSON object, or None if it is not one."""
    try:
        msg = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return msg if isinstance(msg, dict) else None
