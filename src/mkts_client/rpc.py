"""MessagePack RPC envelope.

Requests are ``{"method": ..., "params": [args], "id": ...}``; responses are
``{"result": ..., "error": ..., "id": ...}``. The result is kept raw until the
caller names the type it expects.
"""

from __future__ import annotations

import random
from typing import Any, TypeVar

import msgspec

from mkts_client.errors import RpcError, SerializationError
from mkts_client.messages import encode

T = TypeVar("T")

CONTENT_TYPE = "application/x-msgpack"

_NIL = b"\xc0"


class ClientRequest(msgspec.Struct):
    method: str
    params: tuple[Any]
    id: int


class ClientResponse(msgspec.Struct):
    result: msgspec.Raw = msgspec.Raw(_NIL)
    error: Any = None
    id: Any = None


_response_decoder = msgspec.msgpack.Decoder(ClientResponse)


def encode_client_request(method: str, args: Any) -> bytes:
    """Encode an RPC call to ``method`` with a single argument.

    Raises:
        SerializationError: If ``args`` cannot be encoded.
    """
    return encode(ClientRequest(method=method, params=(args,), id=random.getrandbits(63)))


def decode_client_response(body: bytes, result_type: type[T]) -> T:
    """Decode an RPC response body into ``result_type``.

    Raises:
        SerializationError: If the envelope or result cannot be decoded.
        RpcError: If the server reported an error or returned no result.
    """
    try:
        response = _response_decoder.decode(body)
    except msgspec.DecodeError as e:
        raise SerializationError(f"malformed RPC response: {e}") from e

    if response.error is not None:
        raise RpcError(str(response.error))
    if bytes(response.result) == _NIL:
        raise RpcError("unexpected null result")

    try:
        return msgspec.msgpack.decode(response.result, type=result_type)
    except msgspec.DecodeError as e:
        raise SerializationError(
            f"malformed {getattr(result_type, '__name__', result_type)} result: {e}"
        ) from e
