#!/usr/bin/env python3
"""Standalone relay app — run chat-relay as a WebSocket server.

    cd samples/relay
    poetry run python app.py

Needs a reachable MongoDB (MONGODB_CONNECTION), or STORE_BACKEND=memory.
Starts on http://localhost:5000 with the relay socket at ws://localhost:5000/ws.

Environment variables:
    PORT                — Server port (default: 5000)
    STORE_BACKEND       — "mongodb" or "memory" (default: mongodb)
    MONGODB_CONNECTION  — MongoDB connection string
    HTTPS               — Set to 1 for a self-signed TLS certificate (default: 0)
"""
from chat_relay.standalone import main

if __name__ == "__main__":
    main()
