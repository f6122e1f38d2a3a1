"""Async client for the Marketstore time-series service.

This package provides batch queries and writes over the MessagePack RPC
endpoint, and real-time subscriptions over the streaming endpoint.

Example usage:

    from mkts_client import Client, QueryRequest

    async with Client("http://localhost:5993") as client:
        csm = await client.query([QueryRequest(destination="AAPL/1Min/OHLCV")])

        cancel = asyncio.Event()
        sub = await client.subscribe(handle_payload, cancel, "AAPL/1Min/OHLCV")
        ...
        cancel.set()
        await sub.wait()
"""

from mkts_client.client import Client
from mkts_client.columns import (
    ColumnSeries,
    ColumnSeriesMap,
    DataShape,
    TimeBucketKey,
    column_series_from_result,
    convert_multi_query_reply,
)
from mkts_client.config import ClientConfig, load_client_config
from mkts_client.errors import (
    ConnectionClosedError,
    MarketstoreError,
    RpcError,
    SerializationError,
    SubscribeError,
    SubscribeTimeoutError,
    TransportError,
)
from mkts_client.messages import Payload, QueryRequest, SubscribeMessage
from mkts_client.subscription import Subscription, SubscriptionState, subscribe
from mkts_client.transport import Connection, Frame, FrameType, WebSocketConnection

__all__ = [
    "Client",
    "ClientConfig",
    "ColumnSeries",
    "ColumnSeriesMap",
    "Connection",
    "ConnectionClosedError",
    "DataShape",
    "Frame",
    "FrameType",
    "MarketstoreError",
    "Payload",
    "QueryRequest",
    "RpcError",
    "SerializationError",
    "SubscribeError",
    "SubscribeMessage",
    "SubscribeTimeoutError",
    "Subscription",
    "SubscriptionState",
    "TimeBucketKey",
    "TransportError",
    "WebSocketConnection",
    "column_series_from_result",
    "convert_multi_query_reply",
    "load_client_config",
    "subscribe",
]
