"""Unit tests for the aiohttp websocket connection."""

from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from mkts_client.errors import ConnectionClosedError, TransportError
from mkts_client.transport import Frame, FrameType, WebSocketConnection, open_connection


def _msg(msg_type: aiohttp.WSMsgType, data: object = None, extra: object = None) -> MagicMock:
    msg = MagicMock()
    msg.type = msg_type
    msg.data = data
    msg.extra = extra
    return msg


class TestWebSocketConnection:
    """Tests for WebSocketConnection."""

    @pytest.fixture
    def mock_ws(self) -> MagicMock:
        """Create a mock aiohttp websocket."""
        ws = MagicMock(spec=aiohttp.ClientWebSocketResponse)
        ws.closed = False
        ws.close_code = None
        ws.receive = AsyncMock()
        ws.send_bytes = AsyncMock()
        ws.send_str = AsyncMock()
        ws.ping = AsyncMock()
        ws.pong = AsyncMock()
        ws.close = AsyncMock()
        return ws

    @pytest.mark.parametrize(
        ("msg_type", "data", "expected"),
        [
            (aiohttp.WSMsgType.BINARY, b"\x81\xa1k", Frame(FrameType.BINARY, b"\x81\xa1k")),
            (aiohttp.WSMsgType.TEXT, "hello", Frame(FrameType.TEXT, b"hello")),
            (aiohttp.WSMsgType.PING, b"hb", Frame(FrameType.PING, b"hb")),
            (aiohttp.WSMsgType.PONG, None, Frame(FrameType.PONG, b"")),
        ],
    )
    async def test_receive_maps_frames(
        self,
        mock_ws: MagicMock,
        msg_type: aiohttp.WSMsgType,
        data: object,
        expected: Frame,
    ) -> None:
        """Test aiohttp message types map onto frames."""
        mock_ws.receive.return_value = _msg(msg_type, data)
        conn = WebSocketConnection(mock_ws)

        assert await conn.receive() == expected

    async def test_receive_close_frame(self, mock_ws: MagicMock) -> None:
        """Test a close message carries its code and reason."""
        mock_ws.receive.return_value = _msg(aiohttp.WSMsgType.CLOSE, 1011, "server error")
        conn = WebSocketConnection(mock_ws)

        frame = await conn.receive()

        assert frame.type is FrameType.CLOSE
        assert frame.close_code == 1011
        assert frame.data == b"server error"

    async def test_receive_error_raises(self, mock_ws: MagicMock) -> None:
        """Test an error message raises TransportError chained to the cause."""
        cause = ConnectionResetError("reset by peer")
        mock_ws.receive.return_value = _msg(aiohttp.WSMsgType.ERROR, cause)
        conn = WebSocketConnection(mock_ws)

        with pytest.raises(TransportError, match="read failed") as exc_info:
            await conn.receive()

        assert exc_info.value.__cause__ is cause

    async def test_receive_closed_by_peer(self, mock_ws: MagicMock) -> None:
        """Test a closed socket reports the peer's close code."""
        mock_ws.close_code = 1006
        mock_ws.receive.return_value = _msg(aiohttp.WSMsgType.CLOSED)
        conn = WebSocketConnection(mock_ws)

        with pytest.raises(ConnectionClosedError) as exc_info:
            await conn.receive()

        assert exc_info.value.code == 1006
        assert not exc_info.value.is_normal

    async def test_receive_after_local_close_is_normal(self, mock_ws: MagicMock) -> None:
        """Test a read interrupted by our own close reports a normal closure."""
        mock_ws.receive.return_value = _msg(aiohttp.WSMsgType.CLOSING)
        conn = WebSocketConnection(mock_ws)
        await conn.close()

        with pytest.raises(ConnectionClosedError) as exc_info:
            await conn.receive()

        assert exc_info.value.is_normal

    async def test_send_maps_frames(self, mock_ws: MagicMock) -> None:
        """Test frames map onto aiohttp send calls."""
        conn = WebSocketConnection(mock_ws)

        await conn.send(Frame(FrameType.BINARY, b"req"))
        await conn.send(Frame(FrameType.TEXT, b"txt"))
        await conn.send(Frame(FrameType.PING))
        await conn.send(Frame(FrameType.PONG))

        mock_ws.send_bytes.assert_awaited_once_with(b"req")
        mock_ws.send_str.assert_awaited_once_with("txt")
        mock_ws.ping.assert_awaited_once_with(b"")
        mock_ws.pong.assert_awaited_once_with(b"")

    async def test_send_failure_raises(self, mock_ws: MagicMock) -> None:
        """Test write failures surface as TransportError."""
        mock_ws.send_bytes.side_effect = ConnectionResetError("reset")
        conn = WebSocketConnection(mock_ws)

        with pytest.raises(TransportError, match="write failed"):
            await conn.send(Frame(FrameType.BINARY, b"req"))

    async def test_close_is_idempotent(self, mock_ws: MagicMock) -> None:
        """Test close sends one close frame and releases the session once."""
        session = MagicMock()
        session.close = AsyncMock()
        conn = WebSocketConnection(mock_ws, session)

        await conn.close()
        await conn.close()

        assert conn.closed
        mock_ws.close.assert_awaited_once_with(code=1000)
        session.close.assert_awaited_once()


class TestOpenConnection:
    """Tests for open_connection."""

    async def test_opens_without_autoping(self) -> None:
        """Test control frames are left to the caller."""
        with patch("mkts_client.transport.aiohttp.ClientSession") as mock_session_class:
            session = MagicMock()
            session.ws_connect = AsyncMock(return_value=MagicMock())
            session.close = AsyncMock()
            mock_session_class.return_value = session

            conn = await open_connection("ws://localhost:5993/ws")

            assert isinstance(conn, WebSocketConnection)
            session.ws_connect.assert_awaited_once_with(
                "ws://localhost:5993/ws", autoping=False, autoclose=False
            )
            session.close.assert_not_called()

    async def test_connect_failure(self) -> None:
        """Test a dial failure raises TransportError and closes the session."""
        with patch("mkts_client.transport.aiohttp.ClientSession") as mock_session_class:
            session = MagicMock()
            session.ws_connect = AsyncMock(side_effect=OSError("connection refused"))
            session.close = AsyncMock()
            mock_session_class.return_value = session

            with pytest.raises(TransportError, match="failed to connect"):
                await open_connection("ws://localhost:1/ws")

            session.close.assert_awaited_once()
