"""MessagePack wire messages exchanged with the server.

Stream messages travel over the websocket endpoint; the request/response
structures travel inside the batch RPC envelope (see mkts_client.rpc).
"""

from __future__ import annotations

from typing import Any, Optional, Sequence

import msgspec

from mkts_client.errors import SerializationError


class SubscribeMessage(msgspec.Struct):
    """Subscribe request, echoed back by the server as its acknowledgment."""

    streams: Optional[list[str]] = None


class Payload(msgspec.Struct):
    """A single streamed update.

    Attributes:
        key: Time bucket key the update belongs to (e.g., "AAPL/1Min/OHLCV").
        data: Decoded body; its shape depends on the bucket's columns.
    """

    key: str
    data: Any = None


class NumpyMultiDataset(msgspec.Struct):
    """Column buffers for one or more time buckets packed back to back.

    Each entry in ``data`` is the raw little-endian buffer for the column of
    the same index in ``names``/``types``. ``startindex`` and ``lengths``
    locate each bucket's rows inside those buffers.
    """

    types: list[str]
    names: list[str]
    data: list[bytes]
    length: int
    startindex: dict[str, int] = msgspec.field(default_factory=dict)
    lengths: dict[str, int] = msgspec.field(default_factory=dict)


class QueryRequest(msgspec.Struct, omit_defaults=True):
    """A single query; either a bucket/time-range query or an SQL statement."""

    destination: str = ""
    epoch_start: Optional[int] = None
    epoch_end: Optional[int] = None
    limit_record_count: Optional[int] = None
    limit_from_start: Optional[bool] = None
    functions: Optional[list[str]] = None
    is_sqlstatement: bool = False
    sql_statement: str = ""


class MultiQueryRequest(msgspec.Struct):
    requests: list[QueryRequest]


class QueryResponse(msgspec.Struct):
    result: Optional[NumpyMultiDataset] = None


class MultiQueryResponse(msgspec.Struct):
    responses: list[QueryResponse] = msgspec.field(default_factory=list)
    version: str = ""
    timezone: str = ""


class WriteRequest(msgspec.Struct):
    data: NumpyMultiDataset = msgspec.field(name="dataset")
    is_variable_length: bool = False


class MultiWriteRequest(msgspec.Struct):
    requests: list[WriteRequest]


class WriteResponse(msgspec.Struct):
    error: str = ""
    version: str = ""


class MultiWriteResponse(msgspec.Struct):
    responses: list[WriteResponse] = msgspec.field(default_factory=list)


_encoder = msgspec.msgpack.Encoder()
_subscribe_decoder = msgspec.msgpack.Decoder(SubscribeMessage)
_payload_decoder = msgspec.msgpack.Decoder(Payload)


def encode(message: Any) -> bytes:
    """Serialize a message to MessagePack.

    Raises:
        SerializationError: If the message holds unsupported types.
    """
    try:
        return _encoder.encode(message)
    except (TypeError, ValueError, OverflowError) as e:
        raise SerializationError(f"failed to encode {type(message).__name__}: {e}") from e


def encode_subscribe(streams: Sequence[str]) -> bytes:
    """Serialize a subscribe request for the given streams."""
    return encode(SubscribeMessage(streams=list(streams)))


def decode_subscribe(buf: bytes) -> SubscribeMessage:
    """Decode a subscribe acknowledgment.

    Raises:
        msgspec.DecodeError: If the bytes are not a valid acknowledgment.
    """
    return _subscribe_decoder.decode(buf)


def decode_payload(buf: bytes) -> Payload:
    """Decode a streamed data frame.

    Raises:
        msgspec.DecodeError: If the bytes are not a valid payload.
    """
    return _payload_decoder.decode(buf)


def _fold_equal(x: str, y: str) -> bool:
    # Simple per-character folding: "ß" never matches "SS".
    if len(x) != len(y):
        return False
    return all(
        c == d or c.lower() == d.lower() or c.upper() == d.upper() for c, d in zip(x, y)
    )


def streams_equal(a: Sequence[str], b: Sequence[str]) -> bool:
    """Return True if both topic lists match in order, ignoring case."""
    if len(a) != len(b):
        return False
    return all(_fold_equal(x, y) for x, y in zip(a, b))
