"""Models for relayed chat messages and the events sent to clients."""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from .relay_errors import ValidationError, RelayError

DEFAULT_MAX_AUTHOR_LENGTH = 64
DEFAULT_MAX_BODY_LENGTH = 2000


class EventType(str, Enum):
    """Frame types exchanged over a relay connection."""
    # client -> server
    SEND_MESSAGE = "send_message"
    GET_HISTORY = "get_history"
    HEARTBEAT = "heartbeat"
    # server -> client
    SESSION_INIT = "session_init"
    MESSAGE = "message"
    HISTORY = "history"
    HEARTBEAT_ACK = "heartbeat_ack"
    ERROR = "error"


class ChatMessage(BaseModel):
    """A persisted chat message. Never mutated after the store returns it."""
    id: str = Field(default_factory=lambda: uuid4().hex)
    author: str
    body: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    seq: int = Field(default=0, description="Insertion order assigned by the store, starting at 1")

    def to_payload(self) -> dict:
        """Wire form of the message, as pushed with the ``message`` event."""
        return {
            "id": self.id,
            "author": self.author,
            "body": self.body,
            "createdAt": self.created_at.isoformat(),
        }


def validate_message(
    author: Any,
    body: Any,
    *,
    max_author_length: int = DEFAULT_MAX_AUTHOR_LENGTH,
    max_body_length: int = DEFAULT_MAX_BODY_LENGTH,
) -> None:
    """Check author and body before anything is written.

    :raises ValidationError: if a field is missing, not text, blank, too long
        or holds characters that cannot be encoded (e.g. lone surrogates)
    """
    for name, value, limit in (("author", author, max_author_length), ("body", body, max_body_length)):
        if value is None:
            raise ValidationError(f"'{name}' is required", field=name)
        if not isinstance(value, str):
            raise ValidationError(f"'{name}' must be a string", field=name)
        if not value.strip():
            raise ValidationError(f"'{name}' must not be empty", field=name)
        if len(value) > limit:
            raise ValidationError(f"'{name}' exceeds {limit} characters", field=name)
        try:
            value.encode("utf-8")
        except UnicodeEncodeError:
            raise ValidationError(f"'{name}' is not valid UTF-8 text", field=name)


def message_event(message: ChatMessage) -> dict:
    return {"type": EventType.MESSAGE.value, **message.to_payload()}


def history_event(messages: List[ChatMessage]) -> dict:
    return {"type": EventType.HISTORY.value, "messages": [m.to_payload() for m in messages]}


def session_init_event(session_id: str) -> dict:
    return {"type": EventType.SESSION_INIT.value, "session_id": session_id}


def heartbeat_ack_event() -> dict:
    return {"type": EventType.HEARTBEAT_ACK.value}


def error_event(error_type: str, message: str) -> dict:
    return {"type": EventType.ERROR.value, "error_type": error_type, "message": message}


def error_event_from(error: RelayError, message: Optional[str] = None) -> dict:
    """Build an ``error`` event for a relay error, using its wire type."""
    return error_event(error.error_type, message or str(error))
