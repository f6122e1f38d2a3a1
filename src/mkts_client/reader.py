"""Frame reader for streaming connections.

The reader is the only task that reads from a connection. It answers
keepalive frames inline and forwards data frames over a single-slot
:class:`FrameChannel`, so a slow consumer applies backpressure to the socket
instead of frames piling up in memory.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

from mkts_client.errors import CLOSE_NORMAL, ConnectionClosedError, TransportError
from mkts_client.transport import Connection, Frame, FrameType

logger = logging.getLogger(__name__)

# Keepalive is reactive in both directions: a ping is answered with a pong
# and a pong with a ping.
_KEEPALIVE_REPLIES = {
    FrameType.PING: FrameType.PONG,
    FrameType.PONG: FrameType.PING,
}


class FrameChannel:
    """Single-producer, single-consumer channel holding at most one frame.

    The producer closes the channel when it stops; the consumer then drains
    whatever is buffered and receives None.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[bytes] = asyncio.Queue(maxsize=1)
        self._closed = asyncio.Event()

    @property
    def closed(self) -> bool:
        """Return True once the producer has closed the channel."""
        return self._closed.is_set()

    async def put(self, data: bytes) -> None:
        """Forward a frame, waiting while the slot is occupied."""
        if self._closed.is_set():
            raise RuntimeError("put on a closed channel")
        await self._queue.put(data)

    def close(self) -> None:
        """Mark the end of the stream. Safe to call more than once."""
        self._closed.set()

    async def get(self) -> bytes | None:
        """Return the next frame, or None once closed and drained."""
        if not self._queue.empty():
            return self._queue.get_nowait()
        if self._closed.is_set():
            return None

        getter = asyncio.ensure_future(self._queue.get())
        closer = asyncio.ensure_future(self._closed.wait())
        try:
            await asyncio.wait({getter, closer}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            closer.cancel()
            if not getter.done():
                getter.cancel()

        if getter.done() and not getter.cancelled():
            return getter.result()
        # A frame forwarded just before close is still delivered.
        if not self._queue.empty():
            return self._queue.get_nowait()
        return None


class FrameReader:
    """Reads frames from a connection in a dedicated task.

    In bounded mode (``count > 0``) the reader stops after forwarding that many
    data frames; control frames do not count. In unbounded mode it runs until
    a close frame, a read error, or the connection being closed.

    Example:
        >>> reader = FrameReader(conn)
        >>> reader.start()
        >>> while (data := await reader.frames.get()) is not None:
        ...     process(data)
        >>> await reader.stop()
    """

    def __init__(self, connection: Connection, count: int = -1) -> None:
        """Initialize the reader.

        Args:
            connection: Connection to read from.
            count: Number of data frames to forward before stopping;
                zero or negative means unbounded.
        """
        self._connection = connection
        self._count = count
        self._task: asyncio.Task[None] | None = None
        self.frames = FrameChannel()
        self.error: Exception | None = None

    @property
    def is_running(self) -> bool:
        """Return True while the reader task is active."""
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task[None]:
        """Start the reader task.

        Raises:
            RuntimeError: If the reader was already started.
        """
        if self._task is not None:
            raise RuntimeError("Reader already started")
        self._task = asyncio.create_task(self._run(), name="mkts-frame-reader")
        return self._task

    async def stop(self) -> None:
        """Wait for the reader task to retire.

        A reader still parked on the transport or on a full channel slot is
        cancelled. Call after the connection is closed.
        """
        if self._task is None:
            return
        if not self._task.done():
            self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task

    async def _run(self) -> None:
        forwarded = 0
        try:
            while self._count <= 0 or forwarded < self._count:
                try:
                    frame = await self._connection.receive()
                except ConnectionClosedError as e:
                    if not e.is_normal:
                        self.error = e
                        logger.error("unexpected websocket closure (%s)", e)
                    return
                except TransportError as e:
                    self.error = e
                    logger.error("websocket read failed (%s)", e)
                    return

                if frame.type in _KEEPALIVE_REPLIES:
                    await self._reply_keepalive(frame)
                elif frame.type is FrameType.CLOSE:
                    self._on_close_frame(frame)
                    return
                else:
                    await self.frames.put(frame.data)
                    forwarded += 1
        finally:
            self.frames.close()
            logger.debug("Frame reader stopped after %d data frames", forwarded)

    async def _reply_keepalive(self, frame: Frame) -> None:
        reply = _KEEPALIVE_REPLIES[frame.type]
        try:
            await self._connection.send(Frame(reply))
        except TransportError as e:
            logger.warning("Failed to send %s reply: %s", reply.value, e)

    def _on_close_frame(self, frame: Frame) -> None:
        code = frame.close_code if frame.close_code is not None else CLOSE_NORMAL
        if code == CLOSE_NORMAL:
            logger.debug("Server closed the stream")
            return
        self.error = ConnectionClosedError(code, frame.data.decode("utf-8", "replace"))
        logger.error("unexpected websocket closure (%s)", self.error)
