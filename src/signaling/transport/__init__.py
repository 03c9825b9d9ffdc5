"""Transport layer for signaling client connections."""

from src.signaling.transport.base import Transport
from src.signaling.transport.websocket_transport import (
    ConnectRequest,
    WebSocketChannel,
    WebSocketTransport,
)

__all__ = [
    "ConnectRequest",
    "Transport",
    "WebSocketChannel",
    "WebSocketTransport",
]
