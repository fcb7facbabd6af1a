class RelayError(Exception):
    """Base class for errors reported back to a single session."""
    error_type: str = "RelayError"


class ValidationError(RelayError):
    """Raised when an inbound payload is missing or has an empty field."""
    error_type = "ValidationError"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class StoreError(RelayError):
    """Raised when the message store is unavailable or a write fails."""
    error_type = "StoreError"


class TransportError(RelayError):
    """Raised when a push to one session fails."""
    error_type = "TransportError"

    def __init__(self, message: str, session_id: str):
        self.session_id = session_id
        super().__init__(message)
