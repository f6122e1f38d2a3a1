"""Unit tests for wire messages."""

import msgspec
import pytest

from mkts_client.errors import SerializationError
from mkts_client.messages import (
    NumpyMultiDataset,
    Payload,
    QueryRequest,
    WriteRequest,
    decode_payload,
    decode_subscribe,
    encode,
    encode_subscribe,
    streams_equal,
)


class TestStreamsEqual:
    """Tests for streams_equal."""

    @pytest.mark.parametrize(
        ("a", "b"),
        [
            ([], []),
            (["trades/XYZ"], ["trades/XYZ"]),
            (["trades/XYZ", "quotes/XYZ"], ["TRADES/xyz", "Quotes/XYZ"]),
            (["Ärger/1Min"], ["ärger/1MIN"]),
            (["ẞ"], ["ß"]),
        ],
    )
    def test_equal(self, a: list[str], b: list[str]) -> None:
        """Test same-order lists match ignoring case."""
        assert streams_equal(a, b)

    @pytest.mark.parametrize(
        ("a", "b"),
        [
            (["a", "b"], ["b", "a"]),
            (["a"], ["a", "b"]),
            (["a", "b"], ["a"]),
            (["a"], []),
            (["a/1Min"], ["a/5Min"]),
            (["straße"], ["STRASSE"]),
        ],
    )
    def test_not_equal(self, a: list[str], b: list[str]) -> None:
        """Test order, length, topic and multi-character fold differences."""
        assert not streams_equal(a, b)


class TestSubscribeMessage:
    """Tests for subscribe message encoding."""

    def test_encode_subscribe(self) -> None:
        """Test the request body is a streams map."""
        body = encode_subscribe(("AAPL/1Min/OHLCV", "*/1Min/OHLCV"))

        assert msgspec.msgpack.decode(body) == {"streams": ["AAPL/1Min/OHLCV", "*/1Min/OHLCV"]}

    def test_decode_nil_streams(self) -> None:
        """Test a nil stream list decodes as None."""
        reply = decode_subscribe(msgspec.msgpack.encode({"streams": None}))

        assert reply.streams is None

    def test_decode_wrong_shape(self) -> None:
        """Test a non-map acknowledgment is a decode error."""
        with pytest.raises(msgspec.DecodeError):
            decode_subscribe(msgspec.msgpack.encode([1, 2, 3]))


class TestPayload:
    """Tests for payload decoding."""

    def test_decode(self) -> None:
        """Test a payload map decodes with its key and body."""
        body = msgspec.msgpack.encode(
            {"key": "AAPL/1Min/OHLCV", "data": {"Open": 1.5, "Epoch": 1700000000}}
        )

        pl = decode_payload(body)

        assert pl == Payload(key="AAPL/1Min/OHLCV", data={"Open": 1.5, "Epoch": 1700000000})

    def test_decode_ignores_unknown_fields(self) -> None:
        """Test extra fields sent by newer servers are ignored."""
        pl = decode_payload(msgspec.msgpack.encode({"key": "k", "data": 1, "seq": 9}))

        assert pl.key == "k"

    def test_missing_key_is_error(self) -> None:
        """Test a payload without a key is rejected."""
        with pytest.raises(msgspec.DecodeError):
            decode_payload(msgspec.msgpack.encode({"data": 1}))


class TestEncode:
    """Tests for encode."""

    def test_query_request_omits_defaults(self) -> None:
        """Test unset query fields are not sent."""
        body = encode(QueryRequest(destination="AAPL/1Min/OHLCV", epoch_start=10))

        assert msgspec.msgpack.decode(body) == {
            "destination": "AAPL/1Min/OHLCV",
            "epoch_start": 10,
        }

    def test_unsupported_type(self) -> None:
        """Test unsupported values raise SerializationError."""
        with pytest.raises(SerializationError, match="failed to encode"):
            encode({"bad": object()})

    def test_write_request_sends_dataset_key(self) -> None:
        """Test write data travels under the server's "dataset" key."""
        dataset = NumpyMultiDataset(types=["i8"], names=["Epoch"], data=[b"\x00" * 8], length=1)

        wire = msgspec.msgpack.decode(encode(WriteRequest(data=dataset)))

        assert sorted(wire) == ["dataset", "is_variable_length"]
        assert wire["dataset"]["names"] == ["Epoch"]
