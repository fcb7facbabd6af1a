"""Server integration helpers.

Host apps build a gateway and include the router returned here.
"""

import logging

from .gateway import ConnectionGateway

logger = logging.getLogger(__name__)

# Path constants
WS_PATH = "/ws"
HEALTH_PATH = "/health"


def build_ws_router(gateway: ConnectionGateway, prefix: str = ""):
    """Build the FastAPI APIRouter with the relay WebSocket and health endpoints."""
    from fastapi import APIRouter
    from starlette.websockets import WebSocket

    from .transport import WebSocketTransport

    router = APIRouter(prefix=prefix)

    @router.get(HEALTH_PATH)
    async def health():
        return {"status": "ok", "active_sessions": gateway.registry.active_count}

    @router.websocket(WS_PATH)
    async def websocket_relay(ws: WebSocket):
        """One relay connection; returns when the client goes away."""
        logger.debug(f"[WS] Connection attempt from {ws.client}")
        await gateway.serve(WebSocketTransport(ws))

    return router
