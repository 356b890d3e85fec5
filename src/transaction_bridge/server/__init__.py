"""FastAPI server adapter for transaction-bridge.

Design intent:
- Keep dispatch logic in `transaction_bridge.dispatcher`, `scheduler` and `workers`
- Keep server-specific concerns (routing, CORS, token check, WebSocket) here
"""

from __future__ import annotations

__all__ = ["create_app"]

from transaction_bridge.server.app import create_app
