"""WebSocket transport implementation.

Serves ``ws://host:port/signal/<room>?name=&role=&password=``. Admission is
answered at HTTP level before the upgrade (400/401/403/404/426/503); admitted
connections are attached to their room's coordinator and every inbound text
frame is handed to it.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import parse_qs, unquote, urlsplit

import websockets
from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.frames import CloseCode
from websockets.http11 import Request, Response
from websockets.protocol import State

from src.signaling.config import WebSocketConfig
from src.signaling.coordinator import resolve_role
from src.signaling.errors import (
    AdmissionError,
    BadRequestError,
    NotFoundError,
    ProtocolError,
    ServerBusyError,
    SignalingError,
    reason_label,
)
from src.signaling.metrics import MetricsCollector, get_metrics_collector
from src.signaling.registry import RoomRegistry
from src.signaling.session import Channel, Role
from src.signaling.transport.base import Transport

logger = logging.getLogger(__name__)

_CLOSE = object()


@dataclass(frozen=True)
class ConnectRequest:
    """Connection parameters parsed from the upgrade request."""

    room: str
    name: str
    role: Role
    password: str

    @staticmethod
    def room_from_path(path: str, prefix: str = "/signal/") -> str:
        """Return the room named by ``<prefix><room>``.

        Raises:
            NotFoundError: Path is outside the signaling prefix
            BadRequestError: Room name missing
        """
        parts = urlsplit(path)
        if not parts.path.startswith(prefix):
            raise NotFoundError()

        room = unquote(parts.path[len(prefix):])
        if not room:
            raise BadRequestError("Room required")
        return room

    @classmethod
    def from_path(cls, path: str, prefix: str = "/signal/") -> "ConnectRequest":
        """Parse ``<prefix><room>?name=&role=&password=``.

        Raises:
            NotFoundError: Path is outside the signaling prefix
            BadRequestError: Room name missing or role unknown
        """
        room = cls.room_from_path(path, prefix)
        query = parse_qs(urlsplit(path).query)

        def first(key: str) -> str:
            values = query.get(key)
            return values[0] if values else ""

        return cls(
            room=room,
            name=first("name"),
            role=resolve_role(first("role")),
            password=first("password"),
        )


class WebSocketChannel(Channel):
    """Queue-backed outbound channel for one WebSocket connection.

    ``send`` only enqueues; a writer task drains the queue in order, so the
    coordinator never waits on a slow peer. ``close`` enqueues a close marker,
    so messages queued before it (e.g. ``kicked``) are flushed first.
    """

    def __init__(
        self,
        websocket: ServerConnection,
        label: str = "",
        max_queue: int = 256,
    ) -> None:
        """Initialize channel and start its writer task.

        Args:
            websocket: WebSocket connection
            label: Identifier used in log records
            max_queue: Outbound queue limit; sends beyond it fail
        """
        self._websocket = websocket
        self.label = label
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=max_queue + 1)
        self._max_queue = max_queue
        self._closing = False
        self._close_args: tuple[int, str] = (CloseCode.NORMAL_CLOSURE, "")
        self._writer = asyncio.create_task(self._write_loop())

    @property
    def is_open(self) -> bool:
        return not self._closing and self._websocket.state is State.OPEN

    def send(self, message: dict[str, Any]) -> None:
        """Enqueue a message for delivery.

        Raises:
            ConnectionError: If the channel is closed or its queue is full
        """
        if not self.is_open:
            raise ConnectionError("WebSocket channel is closed")
        if self._queue.qsize() >= self._max_queue:
            raise ConnectionError("WebSocket outbound queue is full")
        self._queue.put_nowait(json.dumps(message))

    def close(self, code: int = CloseCode.NORMAL_CLOSURE, reason: str = "") -> None:
        """Request a close after queued messages are flushed. Idempotent."""
        if self._closing:
            return
        self._closing = True
        self._close_args = (code, reason)
        # One slot is reserved for the marker, so this never overflows.
        self._queue.put_nowait(_CLOSE)

    async def wait_closed(self, code: int = CloseCode.NORMAL_CLOSURE, reason: str = "") -> None:
        """Close the channel and wait for the writer task to finish."""
        self.close(code, reason)
        await self._writer

    async def _write_loop(self) -> None:
        while True:
            item = await self._queue.get()

            if item is _CLOSE:
                try:
                    await self._websocket.close(*self._close_args)
                except Exception as e:
                    logger.debug(
                        "Error closing WebSocket",
                        extra={"session_id": self.label, "error": str(e)},
                    )
                return

            try:
                await self._websocket.send(item)
            except websockets.exceptions.ConnectionClosed:
                self._closing = True
                logger.debug(
                    "WebSocket closed with messages pending, dropping",
                    extra={"session_id": self.label, "pending": self._queue.qsize()},
                )
                return
            except Exception as e:
                logger.warning(
                    "Failed to send message",
                    extra={"session_id": self.label, "error": str(e)},
                )


class WebSocketTransport(Transport):
    """WebSocket signaling server.

    Routes each connection to its room, enforces admission and drives the
    per-session receive loop until the connection closes.
    """

    def __init__(
        self,
        registry: RoomRegistry,
        config: WebSocketConfig | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        """Initialize WebSocket transport.

        Args:
            registry: Room registry connections are attached to
            config: WebSocket settings (host, port, limits)
            metrics: Metrics collector (defaults to the global collector)
        """
        self._registry = registry
        self._config = config or WebSocketConfig()
        self._metrics = metrics or get_metrics_collector()
        self._server: Server | None = None
        self._running = False
        self._connections = 0

        logger.info(
            "WebSocket transport initialized",
            extra={
                "host": self._config.host,
                "port": self._config.port,
                "max_connections": self._config.max_connections,
            },
        )

    @property
    def transport_type(self) -> str:
        return "websocket"

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def connection_count(self) -> int:
        return self._connections

    @property
    def port(self) -> int:
        """Bound port (resolves port 0 to the OS-assigned port).

        Raises:
            RuntimeError: If the transport is not running
        """
        if self._server is None:
            raise RuntimeError("WebSocket transport is not running")
        port: int = next(iter(self._server.sockets)).getsockname()[1]
        return port

    async def start(self) -> None:
        """Start the WebSocket server.

        Raises:
            RuntimeError: If already running or the server fails to start
            OSError: If port binding fails
        """
        if self._running:
            raise RuntimeError("WebSocket transport is already running")

        logger.info(
            "Starting WebSocket server",
            extra={"host": self._config.host, "port": self._config.port},
        )

        try:
            self._server = await serve(
                self._handle_connection,
                self._config.host,
                self._config.port,
                process_request=self._process_request,
                max_size=self._config.max_message_size,
                ping_interval=self._config.ping_interval_s,
                ping_timeout=self._config.ping_timeout_s,
            )
            self._running = True

        except OSError as e:
            logger.error(
                "Failed to bind WebSocket server",
                extra={"host": self._config.host, "port": self._config.port, "error": str(e)},
            )
            raise
        except Exception as e:
            logger.error("Failed to start WebSocket server", extra={"error": str(e)})
            raise RuntimeError(f"Failed to start WebSocket transport: {e}") from e

        logger.info(
            "WebSocket server started",
            extra={"host": self._config.host, "port": self.port},
        )

    async def stop(self) -> None:
        """Stop the WebSocket server, closing every session."""
        if not self._running:
            return

        logger.info("Stopping WebSocket server")
        self._running = False

        self._registry.close_all()

        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

        logger.info("WebSocket server stopped")

    def _process_request(
        self, connection: ServerConnection, request: Request
    ) -> Response | None:
        """Answer rejected connections before the upgrade.

        Returns:
            An HTTP error response, or None to continue the handshake
        """
        try:
            ConnectRequest.room_from_path(request.path, self._config.path_prefix)

            if "websocket" not in request.headers.get("Upgrade", "").lower():
                raise ProtocolError()

            connect = ConnectRequest.from_path(request.path, self._config.path_prefix)

            if self._connections >= self._config.max_connections:
                raise ServerBusyError()

            room = self._registry.get(connect.room)
            if room is not None:
                room.check_admission(connect.role, connect.password)

        except SignalingError as e:
            self._metrics.record_rejection(reason_label(e))
            logger.info(
                "Connection rejected",
                extra={
                    "path": urlsplit(request.path).path,
                    "status": int(e.status_code),
                    "reason": e.reason,
                },
            )
            return connection.respond(e.status_code, f"{e.reason}\n")

        return None

    async def _handle_connection(self, websocket: ServerConnection) -> None:
        """Run one admitted connection until it closes."""
        path = websocket.request.path if websocket.request is not None else ""
        try:
            connect = ConnectRequest.from_path(path, self._config.path_prefix)
        except SignalingError as e:
            await websocket.close(CloseCode.POLICY_VIOLATION, e.reason)
            return

        room = self._registry.get_or_create(connect.room)
        channel = WebSocketChannel(websocket, max_queue=self._config.outbound_queue_size)

        # Admission re-runs here: another connection may have taken the last
        # guest slot or set the password since process_request.
        try:
            session = room.admit(channel, connect.name, connect.role, connect.password)
        except AdmissionError as e:
            await channel.wait_closed(CloseCode.POLICY_VIOLATION, e.reason)
            self._registry.release(connect.room)
            return

        channel.label = session.id
        self._connections += 1

        try:
            async for raw_message in websocket:
                if not isinstance(raw_message, str):
                    logger.warning(
                        "Received non-text WebSocket message, skipping",
                        extra={"session_id": session.id},
                    )
                    continue
                room.handle_message(session, raw_message)

        except websockets.exceptions.ConnectionClosed as e:
            logger.info(
                "WebSocket connection closed abnormally",
                extra={"session_id": session.id, "code": e.rcvd.code if e.rcvd else None},
            )
        finally:
            self._connections -= 1
            room.on_close(session)
            self._registry.release(connect.room)
            await channel.wait_closed()
            logger.info(
                "WebSocket connection closed",
                extra={"room": connect.room, "session_id": session.id},
            )
