from .message_store import MessageStore, DEFAULT_STORE_TIMEOUT
from .memory_message_store import MemoryMessageStore


def __getattr__(name):
    """Lazy imports for optional dependencies."""
    if name == "MongoDBMessageStore":
        from .mongodb_message_store import MongoDBMessageStore
        return MongoDBMessageStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    'MessageStore',
    'MemoryMessageStore',
    'MongoDBMessageStore',
    'DEFAULT_STORE_TIMEOUT',
]
