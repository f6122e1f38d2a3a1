"""Subscribe handshake for the streaming endpoint."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Sequence

import msgspec

from mkts_client.config import SUBSCRIBE_TIMEOUT
from mkts_client.errors import SubscribeError, SubscribeTimeoutError
from mkts_client.messages import decode_subscribe, encode_subscribe, streams_equal
from mkts_client.reader import FrameReader
from mkts_client.transport import Connection, Frame, FrameType, open_connection

logger = logging.getLogger(__name__)

Connector = Callable[[str], Awaitable[Connection]]


async def negotiate(
    url: str,
    streams: Sequence[str],
    *,
    timeout: float = SUBSCRIBE_TIMEOUT,
    connect: Connector = open_connection,
) -> Connection:
    """Open a connection and subscribe to the given streams.

    The server must answer with exactly one acknowledgment frame naming the
    same streams, in the same order, ignoring case.

    Args:
        url: Streaming endpoint URL.
        streams: Ordered topic list to subscribe to.
        timeout: Seconds to wait for the acknowledgment.
        connect: Coroutine function that dials the endpoint.

    Returns:
        An open connection with the subscription acknowledged.

    Raises:
        TransportError: If the connection cannot be opened or written.
        SerializationError: If the request cannot be encoded.
        SubscribeTimeoutError: If no acknowledgment arrives within the timeout.
        SubscribeError: If the acknowledgment is undecodable or mismatched.
    """
    connection = await connect(url)
    try:
        await connection.send(Frame(FrameType.BINARY, encode_subscribe(streams)))
        ack = await _read_ack(connection, timeout)

        try:
            reply = decode_subscribe(ack)
        except msgspec.DecodeError as e:
            raise SubscribeError(f"marketstore stream subscribe failed ({e})") from e

        if not streams_equal(streams, reply.streams or []):
            logger.debug("Subscribe acknowledged %s, requested %s", reply.streams, list(streams))
            raise SubscribeError("marketstore stream subscribe failed")
    except BaseException:
        await connection.close()
        raise

    logger.info("Subscribed to %s", ", ".join(streams))
    return connection


async def _read_ack(connection: Connection, timeout: float) -> bytes:
    reader = FrameReader(connection, count=1)
    reader.start()
    try:
        ack = await asyncio.wait_for(reader.frames.get(), timeout=timeout)
    except asyncio.TimeoutError as e:
        raise SubscribeTimeoutError("marketstore stream subscribe timed out") from e
    finally:
        await reader.stop()

    if ack is None:
        detail = f" ({reader.error})" if reader.error is not None else ""
        raise SubscribeError(f"marketstore stream subscribe failed{detail}: no acknowledgment")
    return ack
