"""Integration test fixtures and utilities.

Provides shared fixtures for:
- A real signaling server bound to ephemeral ports
- WebSocket clients that are closed when the test ends
- Helpers for waiting on specific server events
"""

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import AsyncExitStack
from typing import Any

import pytest_asyncio
from websockets.asyncio.client import ClientConnection, connect

from src.client.cli_client import build_room_url
from src.signaling.config import (
    HealthConfig,
    SignalingConfig,
    TransportConfig,
    WebSocketConfig,
)
from src.signaling.metrics import MetricsCollector
from src.signaling.server import SignalingServer

logger = logging.getLogger(__name__)

RECV_TIMEOUT_S = 2.0

Connect = Callable[..., Awaitable[ClientConnection]]


@pytest_asyncio.fixture
async def signaling_server(metrics: MetricsCollector) -> AsyncIterator[SignalingServer]:
    """Start a signaling server on ephemeral WebSocket and health ports."""
    config = SignalingConfig(
        transport=TransportConfig(websocket=WebSocketConfig(host="127.0.0.1", port=0)),
        health=HealthConfig(host="127.0.0.1", port=0),
        graceful_shutdown_timeout_s=2,
    )
    server = SignalingServer(config, metrics=metrics)
    await server.start()
    logger.info(f"Signaling server listening on port {server.port}")

    try:
        yield server
    finally:
        await server.stop()


@pytest_asyncio.fixture
async def connect_client(signaling_server: SignalingServer) -> AsyncIterator[Connect]:
    """Open WebSocket clients against the test server.

    Usage: ``ws = await connect_client("studio", name="Ana", role="director", password="abc")``
    """
    async with AsyncExitStack() as stack:

        async def _connect(room: str, **params: Any) -> ClientConnection:
            url = build_room_url(f"ws://127.0.0.1:{signaling_server.port}", room, **params)
            return await stack.enter_async_context(connect(url))

        yield _connect


def http_url(server: SignalingServer, path: str, health: bool = False) -> str:
    port = server.health_port if health else server.port
    return f"http://127.0.0.1:{port}{path}"


async def recv_json(ws: ClientConnection, timeout_s: float = RECV_TIMEOUT_S) -> dict[str, Any]:
    """Receive one JSON message.

    Raises:
        asyncio.TimeoutError: If nothing arrives within timeout
    """
    raw = await asyncio.wait_for(ws.recv(), timeout=timeout_s)
    data: dict[str, Any] = json.loads(raw)
    return data


async def recv_until(
    ws: ClientConnection, msg_type: str, timeout_s: float = RECV_TIMEOUT_S
) -> dict[str, Any]:
    """Receive messages until one of ``msg_type`` arrives, skipping others."""
    while True:
        data = await recv_json(ws, timeout_s)
        if data.get("type") == msg_type:
            return data
        logger.debug(f"Skipping {data.get('type')} while waiting for {msg_type}")


async def sync(ws: ClientConnection) -> list[dict[str, Any]]:
    """Round-trip get-guests so the server has processed everything before it.

    Returns:
        The guests list from the reply
    """
    await ws.send(json.dumps({"type": "get-guests"}))
    reply = await recv_until(ws, "guests-list")
    guests: list[dict[str, Any]] = reply["guests"]
    return guests


async def wait_for(predicate: Callable[[], bool], timeout_s: float = RECV_TIMEOUT_S) -> None:
    """Poll until ``predicate`` holds.

    Raises:
        asyncio.TimeoutError: If it never holds within timeout
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout_s
    while not predicate():
        if loop.time() > deadline:
            raise asyncio.TimeoutError("Condition not met in time")
        await asyncio.sleep(0.01)
