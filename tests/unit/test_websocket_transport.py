"""Unit tests for WebSocket transport implementation.

Tests connect-path parsing, the queue-backed outbound channel, HTTP-level
admission answers and transport lifecycle.
"""

import asyncio
import json
from http import HTTPStatus
from unittest.mock import AsyncMock, MagicMock, sentinel

import pytest
from websockets.datastructures import Headers
from websockets.exceptions import ConnectionClosed
from websockets.frames import CloseCode
from websockets.http11 import Request
from websockets.protocol import State

from src.signaling.config import RoomConfig, WebSocketConfig
from src.signaling.errors import BadRequestError, NotFoundError
from src.signaling.metrics import MetricsCollector
from src.signaling.registry import RoomRegistry
from src.signaling.session import Role
from src.signaling.transport.websocket_transport import (
    ConnectRequest,
    WebSocketChannel,
    WebSocketTransport,
)
from tests.helpers.channels import FakeChannel


class TestConnectRequest:
    """Test connect path parsing."""

    def test_full_request(self) -> None:
        """Test every connect parameter is read from the query string."""
        request = ConnectRequest.from_path("/signal/studio?name=Ana&role=director&password=abc")

        assert request == ConnectRequest(
            room="studio", name="Ana", role=Role.DIRECTOR, password="abc"
        )

    def test_defaults(self) -> None:
        """Test omitted parameters fall back to guest with no name or password."""
        request = ConnectRequest.from_path("/signal/studio")

        assert request.role is Role.GUEST
        assert request.name == ""
        assert request.password == ""

    def test_encoded_room_and_name(self) -> None:
        request = ConnectRequest.from_path("/signal/late%20show?name=Jos%C3%A9")

        assert request.room == "late show"
        assert request.name == "José"

    def test_room_required(self) -> None:
        with pytest.raises(BadRequestError, match="Room required"):
            ConnectRequest.from_path("/signal/?role=guest")

    def test_invalid_role(self) -> None:
        with pytest.raises(BadRequestError, match="Invalid role"):
            ConnectRequest.from_path("/signal/studio?role=admin")

    @pytest.mark.parametrize("path", ["/", "/index.html", "/signal", "/other/studio"])
    def test_outside_prefix(self, path: str) -> None:
        with pytest.raises(NotFoundError):
            ConnectRequest.from_path(path)

    def test_custom_prefix(self) -> None:
        request = ConnectRequest.from_path("/rooms/studio", prefix="/rooms/")
        assert request.room == "studio"


class TestWebSocketChannel:
    """Test the queue-backed outbound channel."""

    @pytest.fixture
    def mock_websocket(self) -> MagicMock:
        """Create mock WebSocket connection."""
        ws = MagicMock()
        ws.state = State.OPEN
        ws.send = AsyncMock()
        ws.close = AsyncMock()
        return ws

    @pytest.mark.asyncio
    async def test_send_is_flushed_in_order(self, mock_websocket: MagicMock) -> None:
        """Test queued messages are written as JSON text in send order."""
        channel = WebSocketChannel(mock_websocket, "s1")

        channel.send({"type": "guest-joined", "guestId": "s2", "name": "Ana"})
        channel.send({"type": "program-connected"})
        await channel.wait_closed()

        sent = [json.loads(call.args[0]) for call in mock_websocket.send.await_args_list]
        assert sent == [
            {"type": "guest-joined", "guestId": "s2", "name": "Ana"},
            {"type": "program-connected"},
        ]

    @pytest.mark.asyncio
    async def test_close_after_pending_messages(self, mock_websocket: MagicMock) -> None:
        """Test a message queued before close is delivered before the close frame."""
        order: list[str] = []
        mock_websocket.send.side_effect = lambda data: order.append(json.loads(data)["type"])
        mock_websocket.close.side_effect = lambda *args: order.append("close")
        channel = WebSocketChannel(mock_websocket, "s1")

        channel.send({"type": "kicked"})
        channel.close()
        await channel.wait_closed()

        assert order == ["kicked", "close"]
        mock_websocket.close.assert_awaited_once_with(CloseCode.NORMAL_CLOSURE, "")

    @pytest.mark.asyncio
    async def test_close_code_and_reason(self, mock_websocket: MagicMock) -> None:
        channel = WebSocketChannel(mock_websocket)

        await channel.wait_closed(CloseCode.POLICY_VIOLATION, "Room full")

        mock_websocket.close.assert_awaited_once_with(CloseCode.POLICY_VIOLATION, "Room full")

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, mock_websocket: MagicMock) -> None:
        channel = WebSocketChannel(mock_websocket)

        channel.close()
        channel.close()
        await channel.wait_closed()

        assert mock_websocket.close.await_count == 1

    @pytest.mark.asyncio
    async def test_send_after_close(self, mock_websocket: MagicMock) -> None:
        channel = WebSocketChannel(mock_websocket)
        channel.close()

        assert channel.is_open is False
        with pytest.raises(ConnectionError, match="closed"):
            channel.send({"type": "kicked"})

        await channel.wait_closed()

    @pytest.mark.asyncio
    async def test_send_on_closed_socket(self, mock_websocket: MagicMock) -> None:
        mock_websocket.state = State.CLOSED
        channel = WebSocketChannel(mock_websocket)

        with pytest.raises(ConnectionError):
            channel.send({"type": "kicked"})

        await channel.wait_closed()

    @pytest.mark.asyncio
    async def test_queue_limit(self, mock_websocket: MagicMock) -> None:
        """Test sends fail once the outbound queue is full instead of blocking."""
        channel = WebSocketChannel(mock_websocket, max_queue=2)

        channel.send({"type": "a"})
        channel.send({"type": "b"})
        with pytest.raises(ConnectionError, match="full"):
            channel.send({"type": "c"})

        # Close marker still fits behind a full queue.
        await channel.wait_closed()
        assert mock_websocket.send.await_count == 2
        mock_websocket.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_peer_gone_stops_writer(self, mock_websocket: MagicMock) -> None:
        """Test a closed connection ends the writer and marks the channel closed."""
        mock_websocket.send.side_effect = ConnectionClosed(None, None)
        channel = WebSocketChannel(mock_websocket)

        channel.send({"type": "offer"})
        await channel.wait_closed()

        assert channel.is_open is False
        mock_websocket.close.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_send_error_does_not_stop_writer(self, mock_websocket: MagicMock) -> None:
        mock_websocket.send.side_effect = [RuntimeError("boom"), None]
        channel = WebSocketChannel(mock_websocket)

        channel.send({"type": "a"})
        channel.send({"type": "b"})
        await channel.wait_closed()

        assert mock_websocket.send.await_count == 2


class TestProcessRequest:
    """Test admission answers sent before the WebSocket upgrade."""

    @pytest.fixture
    def registry(self, metrics: MetricsCollector) -> RoomRegistry:
        return RoomRegistry(RoomConfig(max_guests=1), metrics=metrics)

    @pytest.fixture
    def transport(self, registry: RoomRegistry, metrics: MetricsCollector) -> WebSocketTransport:
        return WebSocketTransport(registry, WebSocketConfig(max_connections=2), metrics=metrics)

    @pytest.fixture
    def connection(self) -> MagicMock:
        conn = MagicMock()
        conn.respond.return_value = sentinel.response
        return conn

    @staticmethod
    def upgrade(path: str, websocket: bool = True) -> Request:
        headers = Headers()
        if websocket:
            headers["Upgrade"] = "websocket"
        return Request(path, headers)

    def test_accepts_new_room(self, transport: WebSocketTransport, connection: MagicMock) -> None:
        """Test a valid upgrade continues the handshake."""
        assert transport._process_request(connection, self.upgrade("/signal/studio")) is None
        connection.respond.assert_not_called()

    def test_not_found(self, transport: WebSocketTransport, connection: MagicMock) -> None:
        response = transport._process_request(connection, self.upgrade("/favicon.ico"))

        assert response is sentinel.response
        connection.respond.assert_called_once_with(HTTPStatus.NOT_FOUND, "Not found\n")

    def test_bad_request(self, transport: WebSocketTransport, connection: MagicMock) -> None:
        transport._process_request(connection, self.upgrade("/signal/studio?role=admin"))
        connection.respond.assert_called_once_with(HTTPStatus.BAD_REQUEST, "Invalid role\n")

    def test_plain_http(self, transport: WebSocketTransport, connection: MagicMock) -> None:
        """Test a non-upgrade request to the signaling path is told to upgrade."""
        transport._process_request(connection, self.upgrade("/signal/studio", websocket=False))
        connection.respond.assert_called_once_with(
            HTTPStatus.UPGRADE_REQUIRED, "Expected WebSocket\n"
        )

    def test_plain_http_with_bad_role(
        self, transport: WebSocketTransport, connection: MagicMock
    ) -> None:
        """Test the missing upgrade is reported before query parameters are checked."""
        transport._process_request(
            connection, self.upgrade("/signal/studio?role=bogus", websocket=False)
        )
        connection.respond.assert_called_once_with(
            HTTPStatus.UPGRADE_REQUIRED, "Expected WebSocket\n"
        )

    def test_plain_http_outside_prefix(
        self, transport: WebSocketTransport, connection: MagicMock
    ) -> None:
        transport._process_request(connection, self.upgrade("/index.html", websocket=False))
        connection.respond.assert_called_once_with(HTTPStatus.NOT_FOUND, "Not found\n")

    def test_wrong_director_password(
        self,
        transport: WebSocketTransport,
        registry: RoomRegistry,
        connection: MagicMock,
        metrics: MetricsCollector,
    ) -> None:
        room = registry.get_or_create("studio")
        room.admit(FakeChannel(), name="D", role=Role.DIRECTOR, password="abc")

        transport._process_request(
            connection, self.upgrade("/signal/studio?role=director&password=xyz")
        )

        connection.respond.assert_called_once_with(HTTPStatus.UNAUTHORIZED, "Unauthorized\n")
        assert metrics.get_summary()["rejections_unauthorized"] == 1
        assert len(room.directors) == 1

    def test_room_full(
        self, transport: WebSocketTransport, registry: RoomRegistry, connection: MagicMock
    ) -> None:
        registry.get_or_create("studio").admit(FakeChannel(), name="G1")

        transport._process_request(connection, self.upgrade("/signal/studio?name=G2"))

        connection.respond.assert_called_once_with(HTTPStatus.FORBIDDEN, "Room full\n")

    def test_full_room_still_admits_program(
        self, transport: WebSocketTransport, registry: RoomRegistry, connection: MagicMock
    ) -> None:
        registry.get_or_create("studio").admit(FakeChannel(), name="G1")

        result = transport._process_request(
            connection, self.upgrade("/signal/studio?role=program")
        )

        assert result is None

    def test_server_busy(self, transport: WebSocketTransport, connection: MagicMock) -> None:
        transport._connections = 2

        transport._process_request(connection, self.upgrade("/signal/studio"))

        connection.respond.assert_called_once_with(
            HTTPStatus.SERVICE_UNAVAILABLE, "Server busy\n"
        )


class TestWebSocketTransport:
    """Test WebSocket transport server lifecycle."""

    @pytest.fixture
    def transport(self, metrics: MetricsCollector) -> WebSocketTransport:
        return WebSocketTransport(
            RoomRegistry(metrics=metrics),
            WebSocketConfig(host="127.0.0.1", port=0),
            metrics=metrics,
        )

    def test_transport_initialization(self, transport: WebSocketTransport) -> None:
        assert transport.transport_type == "websocket"
        assert transport.is_running is False
        assert transport.connection_count == 0

    def test_port_before_start(self, transport: WebSocketTransport) -> None:
        with pytest.raises(RuntimeError, match="not running"):
            _ = transport.port

    @pytest.mark.asyncio
    async def test_transport_start_stop(self, transport: WebSocketTransport) -> None:
        """Test transport binds an ephemeral port and releases it on stop."""
        await transport.start()
        assert transport.is_running is True
        assert transport.port > 0

        await transport.stop()
        assert transport.is_running is False

    @pytest.mark.asyncio
    async def test_transport_double_start(self, transport: WebSocketTransport) -> None:
        await transport.start()

        with pytest.raises(RuntimeError, match="already running"):
            await transport.start()

        await transport.stop()

    @pytest.mark.asyncio
    async def test_stop_when_not_running(self, transport: WebSocketTransport) -> None:
        await transport.stop()
        assert transport.is_running is False

    @pytest.mark.asyncio
    async def test_stop_closes_sessions(self, transport: WebSocketTransport) -> None:
        channel = FakeChannel()
        transport._registry.get_or_create("studio").admit(channel)
        await transport.start()

        await transport.stop()
        await asyncio.sleep(0)

        assert channel.close_calls == 1
