"""chat-relay — real-time message relay with a durable message log."""

from chat_relay.relay_errors import RelayError, ValidationError, StoreError, TransportError
from chat_relay.relay_models import ChatMessage, EventType
from chat_relay.session_registry import Session, SessionRegistry, SessionState
from chat_relay.broadcast import BroadcastCoordinator
from chat_relay.gateway import ConnectionGateway
from chat_relay.transport import Transport, WebSocketTransport
from chat_relay.store import MessageStore, MemoryMessageStore
from chat_relay.config import RelayConfig

__all__ = [
    "RelayError",
    "ValidationError",
    "StoreError",
    "TransportError",
    "ChatMessage",
    "EventType",
    "Session",
    "SessionRegistry",
    "SessionState",
    "BroadcastCoordinator",
    "ConnectionGateway",
    "Transport",
    "WebSocketTransport",
    "MessageStore",
    "MemoryMessageStore",
    "MongoDBMessageStore",
    "RelayConfig",
]


def __getattr__(name: str):
    if name == "MongoDBMessageStore":
        from chat_relay.store.mongodb_message_store import MongoDBMessageStore
        return MongoDBMessageStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
