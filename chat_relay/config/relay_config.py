import os
from dataclasses import dataclass
from typing import Mapping, Optional

from ..relay_models import DEFAULT_MAX_AUTHOR_LENGTH, DEFAULT_MAX_BODY_LENGTH


def _env_float(env: Mapping[str, str], key: str, default: float) -> float:
    value = env.get(key)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{key} must be a number, got {value!r}")


def _env_int(env: Mapping[str, str], key: str, default: int) -> int:
    value = env.get(key)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {value!r}")


@dataclass
class RelayConfig:
    """Process configuration for the standalone relay server."""
    host: str = "0.0.0.0"
    """Bind address."""
    port: int = 5000
    """Listen port."""
    store_backend: str = "mongodb"
    """Either "mongodb" or "memory"."""
    mongo_uri: str = "mongodb://localhost:27017"
    """MongoDB connection string."""
    mongo_db: str = "chat"
    mongo_collection: str = "chatmessages"
    store_timeout: float = 5.0
    """Deadline in seconds for every message store call."""
    send_timeout: float = 5.0
    """Deadline in seconds for a push to one client."""
    max_author_length: int = DEFAULT_MAX_AUTHOR_LENGTH
    max_body_length: int = DEFAULT_MAX_BODY_LENGTH
    max_history: int = 100
    """Upper bound for the number of messages returned by get_history."""
    https: bool = False
    """Serve over TLS with a self-signed certificate unless one is configured."""
    ssl_certfile: Optional[str] = None
    ssl_keyfile: Optional[str] = None

    def __post_init__(self):
        if self.store_backend not in ("mongodb", "memory"):
            raise ValueError(f"Unknown store backend {self.store_backend!r}, expected 'mongodb' or 'memory'")
        if self.store_timeout <= 0 or self.send_timeout <= 0:
            raise ValueError("Timeouts must be positive")
        if self.max_history < 1:
            raise ValueError("max_history must be at least 1")

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "RelayConfig":
        """Build a config from environment variables.

        :param env: Mapping to read from, defaults to ``os.environ``
        :raises ValueError: if a numeric variable cannot be parsed or a value is out of range
        """
        env = os.environ if env is None else env
        defaults = cls()
        return cls(
            host=env.get("HOST", defaults.host),
            port=_env_int(env, "PORT", defaults.port),
            store_backend=env.get("STORE_BACKEND", defaults.store_backend).lower(),
            mongo_uri=env.get("MONGODB_CONNECTION", defaults.mongo_uri),
            mongo_db=env.get("MONGODB_DB", defaults.mongo_db),
            mongo_collection=env.get("MONGODB_COLLECTION", defaults.mongo_collection),
            store_timeout=_env_float(env, "STORE_TIMEOUT", defaults.store_timeout),
            send_timeout=_env_float(env, "SEND_TIMEOUT", defaults.send_timeout),
            max_author_length=_env_int(env, "MAX_AUTHOR_LENGTH", defaults.max_author_length),
            max_body_length=_env_int(env, "MAX_BODY_LENGTH", defaults.max_body_length),
            max_history=_env_int(env, "MAX_HISTORY", defaults.max_history),
            https=env.get("HTTPS", "0") not in ("0", "", "false", "False"),
            ssl_certfile=env.get("SSL_CERTFILE") or None,
            ssl_keyfile=env.get("SSL_KEYFILE") or None,
        )
