"""Message-oriented socket transport for the streaming endpoint.

This module defines the :class:`Connection` protocol consumed by the stream
core, plus :class:`WebSocketConnection`, the aiohttp-backed implementation.

The stream core answers ping and pong frames itself, so the websocket is
opened with ``autoping=False`` and ``autoclose=False``: every control frame is
surfaced to the reader instead of being handled inside aiohttp.
"""

# pylint: disable=unnecessary-ellipsis  # Ellipsis required for Protocol method stubs

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

import aiohttp

from mkts_client.errors import CLOSE_NORMAL, ConnectionClosedError, TransportError

logger = logging.getLogger(__name__)


class FrameType(Enum):
    """Kinds of frames exchanged on a connection."""

    TEXT = "text"
    BINARY = "binary"
    PING = "ping"
    PONG = "pong"
    CLOSE = "close"

    @property
    def is_data(self) -> bool:
        """Return True for frames carrying an application payload."""
        return self in (FrameType.TEXT, FrameType.BINARY)


@dataclass(frozen=True)
class Frame:
    """A single frame read from or written to a connection.

    Attributes:
        type: Frame kind.
        data: Frame body; text frames are carried as UTF-8 bytes.
        close_code: Close code for CLOSE frames, None otherwise.
    """

    type: FrameType
    data: bytes = b""
    close_code: int | None = None


class Connection(Protocol):
    """Protocol for a bidirectional message-oriented connection.

    Implementations must allow ``close()`` to be called from a task other
    than the one blocked in ``receive()``; the pending ``receive()`` then
    raises :class:`ConnectionClosedError`.
    """

    async def receive(self) -> Frame:
        """Read the next frame.

        Returns:
            The next frame, including control frames.

        Raises:
            ConnectionClosedError: If the connection is closing or closed.
            TransportError: If the read fails.
        """
        ...

    async def send(self, frame: Frame) -> None:
        """Write a frame.

        Raises:
            TransportError: If the write fails.
        """
        ...

    async def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        ...

    @property
    def closed(self) -> bool:
        """Return True once the connection has been closed."""
        ...


class WebSocketConnection:
    """Connection backed by an aiohttp client websocket.

    Example:
        >>> conn = await open_connection("ws://localhost:5993/ws")
        >>> await conn.send(Frame(FrameType.BINARY, request))
        >>> frame = await conn.receive()
        >>> await conn.close()
    """

    def __init__(
        self,
        ws: aiohttp.ClientWebSocketResponse,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        """Wrap an open websocket.

        Args:
            ws: The open aiohttp websocket.
            session: Session owned by this connection, closed along with it.
        """
        self._ws = ws
        self._session = session
        self._closed_locally = False

    @property
    def closed(self) -> bool:
        """Return True once the websocket has been closed by either side."""
        return self._closed_locally or self._ws.closed

    async def receive(self) -> Frame:
        """Read the next frame, mapping aiohttp message types to frames."""
        msg = await self._ws.receive()

        if msg.type == aiohttp.WSMsgType.BINARY:
            return Frame(FrameType.BINARY, msg.data)
        if msg.type == aiohttp.WSMsgType.TEXT:
            return Frame(FrameType.TEXT, msg.data.encode("utf-8"))
        if msg.type == aiohttp.WSMsgType.PING:
            return Frame(FrameType.PING, msg.data or b"")
        if msg.type == aiohttp.WSMsgType.PONG:
            return Frame(FrameType.PONG, msg.data or b"")
        if msg.type == aiohttp.WSMsgType.CLOSE:
            reason = msg.extra.encode("utf-8") if isinstance(msg.extra, str) else b""
            return Frame(FrameType.CLOSE, reason, close_code=msg.data)
        if msg.type == aiohttp.WSMsgType.ERROR:
            cause = msg.data if isinstance(msg.data, BaseException) else None
            raise TransportError(f"websocket read failed: {msg.data}") from cause

        # CLOSING / CLOSED: the socket is going away
        if self._closed_locally:
            raise ConnectionClosedError(CLOSE_NORMAL)
        raise ConnectionClosedError(self._ws.close_code)

    async def send(self, frame: Frame) -> None:
        """Write a frame, mapping frame types to aiohttp send calls."""
        try:
            if frame.type is FrameType.BINARY:
                await self._ws.send_bytes(frame.data)
            elif frame.type is FrameType.TEXT:
                await self._ws.send_str(frame.data.decode("utf-8"))
            elif frame.type is FrameType.PING:
                await self._ws.ping(frame.data)
            elif frame.type is FrameType.PONG:
                await self._ws.pong(frame.data)
            else:
                await self.close()
        except (aiohttp.ClientError, ConnectionError, RuntimeError) as e:
            raise TransportError(f"websocket write failed: {e}") from e

    async def close(self) -> None:
        """Send a normal close frame and release the owned session."""
        if self._closed_locally:
            return
        self._closed_locally = True
        try:
            await self._ws.close(code=CLOSE_NORMAL)
        except (aiohttp.ClientError, ConnectionError) as e:
            logger.warning("Error closing websocket: %s", e)
        finally:
            if self._session is not None:
                await self._session.close()
                self._session = None


async def open_connection(url: str) -> WebSocketConnection:
    """Dial a websocket endpoint.

    Args:
        url: Endpoint URL with a ws/wss scheme.

    Returns:
        An open connection that owns its HTTP session.

    Raises:
        TransportError: If the connection cannot be established.
    """
    session = aiohttp.ClientSession()
    try:
        ws = await session.ws_connect(url, autoping=False, autoclose=False)
    except (aiohttp.ClientError, OSError) as e:
        await session.close()
        raise TransportError(f"failed to connect to {url}: {e}") from e
    logger.debug("Connected to %s", url)
    return WebSocketConnection(ws, session)
