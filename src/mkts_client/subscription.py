"""Streaming subscriptions.

A :class:`Subscription` owns one connection and two tasks: the frame reader
and the dispatch loop. Both start only after the server acknowledges the
subscribe request; after that, failures are logged and end the stream instead
of propagating to the caller.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Sequence, Union

import msgspec

from mkts_client.config import SUBSCRIBE_TIMEOUT
from mkts_client.handshake import Connector, negotiate
from mkts_client.messages import Payload, decode_payload
from mkts_client.reader import FrameReader
from mkts_client.transport import Connection, open_connection

logger = logging.getLogger(__name__)

PayloadHandler = Callable[[Payload], Union[Awaitable[Any], Any]]


class SubscriptionState(Enum):
    """Lifecycle of a subscription. TERMINATED is final."""

    UNSTARTED = "unstarted"
    HANDSHAKING = "handshaking"
    STREAMING = "streaming"
    TERMINATED = "terminated"


class Subscription:
    """A live stream subscription and its completion signal.

    Payloads are handed to ``handler`` one at a time, in arrival order. A
    payload that fails to decode, or a handler that raises, is logged and
    skipped. The stream ends when the server closes it, the connection fails,
    or the caller sets ``cancel``; :attr:`done` is set once cleanup is complete.

    Example:
        >>> cancel = asyncio.Event()
        >>> sub = Subscription(url, ["AAPL/1Min/OHLCV"], on_payload, cancel)
        >>> await sub.start()
        >>> ...
        >>> cancel.set()
        >>> await sub.wait()
    """

    def __init__(
        self,
        url: str,
        streams: Sequence[str],
        handler: PayloadHandler,
        cancel: asyncio.Event,
        *,
        timeout: float = SUBSCRIBE_TIMEOUT,
        connect: Connector = open_connection,
    ) -> None:
        """Initialize the subscription.

        Args:
            url: Streaming endpoint URL.
            streams: Ordered topic list to subscribe to.
            handler: Called with each decoded payload; may be a coroutine function.
            cancel: Caller-owned event; setting it ends the stream. Never
                set or cleared by the subscription.
            timeout: Seconds to wait for the subscribe acknowledgment.
            connect: Coroutine function that dials the endpoint.
        """
        self._url = url
        self._streams = tuple(streams)
        self._handler = handler
        self._cancel = cancel
        self._timeout = timeout
        self._connect = connect
        self._state = SubscriptionState.UNSTARTED
        self._done = asyncio.Event()
        self._dispatch_task: asyncio.Task[None] | None = None
        self._last_error: Exception | None = None

    @property
    def streams(self) -> tuple[str, ...]:
        """The requested topics, in request order."""
        return self._streams

    @property
    def state(self) -> SubscriptionState:
        """Current lifecycle state."""
        return self._state

    @property
    def done(self) -> asyncio.Event:
        """Event set exactly once, after cleanup, when the subscription terminates."""
        return self._done

    @property
    def is_done(self) -> bool:
        """Return True once the stream has ended."""
        return self._done.is_set()

    @property
    def last_error(self) -> Exception | None:
        """Transport error that ended the stream, if it ended abnormally."""
        return self._last_error

    async def wait(self, timeout: float | None = None) -> None:
        """Wait for the stream to end.

        Args:
            timeout: Maximum time to wait in seconds, or None for no timeout.

        Raises:
            TimeoutError: If the stream is still running when the timeout expires.
        """
        try:
            await asyncio.wait_for(self._done.wait(), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise TimeoutError("Timed out waiting for subscription to end") from e

    async def start(self) -> None:
        """Perform the handshake and start streaming.

        Raises:
            RuntimeError: If the subscription was already started.
            TransportError: If the connection cannot be opened or written.
            SerializationError: If the subscribe request cannot be encoded.
            SubscribeError: If the handshake fails or times out.
        """
        if self._state is not SubscriptionState.UNSTARTED:
            raise RuntimeError(f"Subscription already {self._state.value}")

        self._state = SubscriptionState.HANDSHAKING
        try:
            connection = await negotiate(
                self._url, self._streams, timeout=self._timeout, connect=self._connect
            )
        except BaseException:
            self._state = SubscriptionState.TERMINATED
            self._done.set()
            raise

        reader = FrameReader(connection)
        reader.start()
        self._state = SubscriptionState.STREAMING
        self._dispatch_task = asyncio.create_task(
            self._dispatch(connection, reader), name="mkts-dispatch"
        )

    async def _dispatch(self, connection: Connection, reader: FrameReader) -> None:
        cancelled = asyncio.ensure_future(self._cancel.wait())
        delivered = 0
        try:
            while not self._cancel.is_set():
                next_frame = asyncio.ensure_future(reader.frames.get())
                await asyncio.wait({next_frame, cancelled}, return_when=asyncio.FIRST_COMPLETED)
                if self._cancel.is_set():
                    next_frame.cancel()
                    break

                data = next_frame.result()
                if data is None:
                    break
                if await self._deliver(data):
                    delivered += 1
        finally:
            cancelled.cancel()
            try:
                await self._teardown(connection, reader)
            finally:
                self._state = SubscriptionState.TERMINATED
                self._done.set()
            logger.info(
                "Stream %s ended after %d payloads%s",
                ", ".join(self._streams),
                delivered,
                " (cancelled)" if self._cancel.is_set() else "",
            )

    async def _teardown(self, connection: Connection, reader: FrameReader) -> None:
        # The reader must retire even if the close fails.
        try:
            await connection.close()
        except Exception:  # pylint: disable=broad-exception-caught
            logger.exception("error closing stream connection")
        try:
            await reader.stop()
        except Exception:  # pylint: disable=broad-exception-caught
            logger.exception("frame reader failed")
        self._last_error = reader.error

    async def _deliver(self, data: bytes) -> bool:
        try:
            payload = decode_payload(data)
        except msgspec.DecodeError as e:
            logger.error("error unmarshaling stream message (%s)", e)
            return False

        try:
            result = self._handler(payload)
            if inspect.isawaitable(result):
                await result
        except Exception:  # pylint: disable=broad-exception-caught
            logger.exception("error handling stream message for %s", payload.key)
            return False
        return True


async def subscribe(
    url: str,
    handler: PayloadHandler,
    cancel: asyncio.Event,
    *streams: str,
    timeout: float = SUBSCRIBE_TIMEOUT,
    connect: Connector = open_connection,
) -> Subscription:
    """Subscribe to streams and start dispatching payloads to ``handler``.

    Returns once the server has acknowledged the subscription. Errors before
    that point are raised; errors after it end the stream and are logged.

    Returns:
        The running subscription; await ``subscription.wait()`` for completion.
    """
    subscription = Subscription(url, streams, handler, cancel, timeout=timeout, connect=connect)
    await subscription.start()
    return subscription
