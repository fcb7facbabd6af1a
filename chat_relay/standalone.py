"""Standalone relay server — run chat-relay as its own process.

Usage::

    cd samples/relay
    poetry run python app.py

    # Or via script entry point from anywhere:
    poetry run chat-relay

    # Custom port / in-memory store / HTTPS:
    PORT=9000 poetry run chat-relay
    STORE_BACKEND=memory poetry run chat-relay
    HTTPS=1 poetry run chat-relay

Environment variables:
    PORT                — Server port (default: 5000)
    HOST                — Bind address (default: 0.0.0.0)
    STORE_BACKEND       — "mongodb" or "memory" (default: mongodb)
    MONGODB_CONNECTION  — MongoDB connection string (default: mongodb://localhost:27017)
    MONGODB_DB          — Database name (default: chat)
    MONGODB_COLLECTION  — Collection name (default: chatmessages)
    STORE_TIMEOUT       — Deadline for store calls in seconds (default: 5)
    SEND_TIMEOUT        — Deadline for pushes to one client in seconds (default: 5)
    MAX_HISTORY         — Largest get_history page (default: 100)
    HTTPS               — Enable HTTPS with a self-signed development cert (default: 0)
    SSL_CERTFILE        — Path to TLS certificate (auto-generated if missing)
    SSL_KEYFILE         — Path to TLS private key (auto-generated if missing)

Loads .env from the current working directory or any parent directory.
"""

import ipaddress
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from .broadcast import BroadcastCoordinator
from .config import RelayConfig
from .gateway import ConnectionGateway
from .session_registry import SessionRegistry
from .store import MemoryMessageStore, MessageStore

logger = logging.getLogger(__name__)


# ── Development TLS certificate ──────────────────────────────────

DEV_CERT_VALIDITY = timedelta(days=90)


def _subject_alt_names(host: str) -> list:
    """DNS and IP names a browser on this machine may use to reach ``host``."""
    from cryptography import x509

    names = [x509.DNSName("localhost"), x509.IPAddress(ipaddress.ip_address("127.0.0.1"))]
    try:
        bound = ipaddress.ip_address(host)
    except ValueError:
        # a hostname, not a literal address
        if host and host != "localhost":
            names.append(x509.DNSName(host))
        return names
    if not bound.is_unspecified and not bound.is_loopback:
        names.append(x509.IPAddress(bound))
    return names


def _ensure_dev_certificate(cert_path: Path, key_path: Path, host: str = "localhost") -> bool:
    """Write a short-lived self-signed certificate for ``host`` unless both files exist.

    Returns True if new files were written. The key is a P-256 EC key stored
    as unencrypted PKCS#8 and readable only by the current user.
    """
    if cert_path.exists() and key_path.exists():
        return False

    from cryptography import x509
    from cryptography.hazmat.primitives import hashes, serialization
    from cryptography.hazmat.primitives.asymmetric import ec
    from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "chat-relay development")])
    issued = datetime.now(timezone.utc)
    builder = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(issued - timedelta(minutes=5))
        .not_valid_after(issued + DEV_CERT_VALIDITY)
        .add_extension(x509.SubjectAlternativeName(_subject_alt_names(host)), critical=False)
        .add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False)
    )
    cert = builder.sign(key, hashes.SHA256())

    for path in (cert_path, key_path):
        path.parent.mkdir(parents=True, exist_ok=True)
    key_path.write_bytes(key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ))
    key_path.chmod(0o600)
    cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    logger.info(f"Wrote development certificate {cert_path} for {host}, valid until {issued + DEV_CERT_VALIDITY:%Y-%m-%d}")
    return True


# ── Store factory ────────────────────────────────────────────────

def create_store(config: RelayConfig) -> MessageStore:
    """Build the message store selected by ``config.store_backend``."""
    limits = dict(
        timeout=config.store_timeout,
        max_author_length=config.max_author_length,
        max_body_length=config.max_body_length,
    )
    if config.store_backend == "memory":
        logger.warning("Using in-memory message store; messages are lost on restart")
        return MemoryMessageStore(**limits)

    from .store import MongoDBMessageStore
    return MongoDBMessageStore(
        mongo_uri=config.mongo_uri,
        mongo_db=config.mongo_db,
        mongo_collection=config.mongo_collection,
        **limits,
    )


# ── FastAPI app factory ──────────────────────────────────────────

def create_app(config: Optional[RelayConfig] = None, store: Optional[MessageStore] = None):
    """Create the FastAPI application.

    The store is opened before the app accepts connections and closed after
    it stops. Also called by uvicorn in reload mode via the factory=True flag.
    """
    from dotenv import load_dotenv, find_dotenv
    load_dotenv(find_dotenv(usecwd=True))

    from fastapi import FastAPI

    from .server import build_ws_router

    config = config or RelayConfig.from_env()
    store = store or create_store(config)
    registry = SessionRegistry()
    coordinator = BroadcastCoordinator(store, registry)
    gateway = ConnectionGateway(
        coordinator,
        send_timeout=config.send_timeout,
        max_history=config.max_history,
    )

    @asynccontextmanager
    async def lifespan(_a):
        await store.open()
        logger.info(f"Message store ready ({type(store).__name__})")
        try:
            yield
        finally:
            await store.close()
            logger.info("Message store closed")

    _app = FastAPI(title="chat-relay", docs_url=None, redoc_url=None, lifespan=lifespan)
    _app.state.gateway = gateway
    _app.include_router(build_ws_router(gateway))
    return _app


# ── Entry point ──────────────────────────────────────────────────

def main():
    """Load .env, configure HTTPS, and start the server."""
    # find_dotenv() searches upward through parent directories
    from dotenv import load_dotenv, find_dotenv
    load_dotenv(find_dotenv(usecwd=True))

    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s — %(message)s",
        datefmt="%H:%M:%S",
    )

    config = RelayConfig.from_env()

    ssl_kwargs = {}
    if config.https:
        cert_dir = Path.home() / ".chat-relay" / "certs"
        cert_path = Path(config.ssl_certfile or str(cert_dir / "localhost.pem"))
        key_path = Path(config.ssl_keyfile or str(cert_dir / "localhost-key.pem"))
        _ensure_dev_certificate(cert_path, key_path, config.host)
        ssl_kwargs = {"ssl_certfile": str(cert_path), "ssl_keyfile": str(key_path)}
        proto = "https"
    else:
        proto = "http"

    print(f"\n  chat-relay → {proto}://localhost:{config.port}  (ws: {proto.replace('http', 'ws')}://localhost:{config.port}/ws)\n")
    uvicorn.run(
        "chat_relay.standalone:create_app",
        factory=True,
        host=config.host,
        port=config.port,
        **ssl_kwargs,
    )


if __name__ == "__main__":
    main()
