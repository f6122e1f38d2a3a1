"""Async client for a Marketstore server.

Provides batch queries and writes over the MessagePack RPC endpoint, and
real-time subscriptions over the streaming endpoint.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping, Optional, Sequence

import httpx

from mkts_client.columns import (
    ColumnSeries,
    ColumnSeriesMap,
    TimeBucketKey,
    convert_multi_query_reply,
    to_numpy_dataset,
)
from mkts_client.config import ClientConfig
from mkts_client.errors import RpcError
from mkts_client.handshake import Connector
from mkts_client.messages import (
    MultiQueryRequest,
    MultiQueryResponse,
    MultiWriteRequest,
    MultiWriteResponse,
    QueryRequest,
    WriteRequest,
)
from mkts_client.rpc import CONTENT_TYPE, decode_client_response, encode_client_request
from mkts_client.subscription import PayloadHandler, Subscription, subscribe
from mkts_client.transport import open_connection

logger = logging.getLogger(__name__)


class Client:
    """Async client for the Marketstore RPC and streaming endpoints.

    Each call to :meth:`subscribe` opens its own connection; the client holds
    no shared streaming state.

    Example:
        >>> async with Client("http://localhost:5993") as client:
        ...     csm = await client.query([QueryRequest(destination="AAPL/1Min/OHLCV")])
        ...     cancel = asyncio.Event()
        ...     sub = await client.subscribe(print, cancel, "AAPL/1Min/OHLCV")
        ...     await sub.wait()
    """

    def __init__(
        self,
        base_url: str | ClientConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
        connector: Connector = open_connection,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Server base URL or a complete configuration.
            http_client: Optional httpx client (for testing).
            connector: Coroutine function that dials the streaming endpoint.

        Raises:
            ValueError: If the base URL is invalid.
        """
        if isinstance(base_url, ClientConfig):
            self._config = base_url
        else:
            self._config = ClientConfig.from_url(base_url)
        self._http = http_client
        self._owns_http = http_client is None
        self._connector = connector

    @property
    def config(self) -> ClientConfig:
        """Return the configuration."""
        return self._config

    @property
    def base_url(self) -> str:
        return self._config.base_url

    async def __aenter__(self) -> Client:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the HTTP client if this client created it."""
        if self._owns_http and self._http is not None:
            await self._http.aclose()
            self._http = None

    def _get_http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self._config.rpc_timeout)
        return self._http

    # -------------------------------------------------------------------------
    # Batch RPC
    # -------------------------------------------------------------------------

    async def do_rpc(self, function_name: str, args: Any) -> Optional[ColumnSeriesMap]:
        """Call a DataService method and decode its response.

        Args:
            function_name: "Query", "SQLStatement" or "Write".
            args: The single request argument (a request struct or mapping).

        Returns:
            Column series keyed by time bucket for queries, None for writes.

        Raises:
            ValueError: If args is None.
            SerializationError: If the request or response cannot be (de)serialized.
            RpcError: If the server rejects the call or the method is unsupported.
            httpx.HTTPError: If the HTTP request fails.
        """
        if args is None:
            raise ValueError("args must be non-nil")

        message = encode_client_request(f"{self._config.rpc_service}.{function_name}", args)
        response = await self._get_http().post(
            self._config.rpc_url,
            content=message,
            headers={"Content-Type": CONTENT_TYPE},
        )

        if response.status_code != 200:
            raise RpcError(
                f"response error ({response.status_code}): {response.text}",
                status_code=response.status_code,
            )

        if function_name in ("Query", "SQLStatement"):
            result = decode_client_response(response.content, MultiQueryResponse)
            return convert_multi_query_reply(result)
        if function_name == "Write":
            write_result = decode_client_response(response.content, MultiWriteResponse)
            errors = [r.error for r in write_result.responses if r.error]
            if errors:
                raise RpcError(f"write failed: {'; '.join(errors)}")
            return None
        raise RpcError("unsupported RPC response")

    async def query(self, requests: Sequence[QueryRequest]) -> ColumnSeriesMap:
        """Run one or more bucket queries."""
        csm = await self.do_rpc("Query", MultiQueryRequest(requests=list(requests)))
        return csm or {}

    async def sql(self, statement: str) -> ColumnSeriesMap:
        """Run an SQL statement."""
        request = QueryRequest(is_sqlstatement=True, sql_statement=statement)
        csm = await self.do_rpc("SQLStatement", MultiQueryRequest(requests=[request]))
        return csm or {}

    async def write(
        self,
        csm: Mapping[TimeBucketKey, ColumnSeries],
        *,
        is_variable_length: bool = False,
    ) -> None:
        """Write column series, one request per time bucket."""
        requests = [
            WriteRequest(data=to_numpy_dataset(tbk, series), is_variable_length=is_variable_length)
            for tbk, series in csm.items()
        ]
        await self.do_rpc("Write", MultiWriteRequest(requests=requests))
        logger.debug("Wrote %d buckets", len(requests))

    # -------------------------------------------------------------------------
    # Streaming
    # -------------------------------------------------------------------------

    async def subscribe(
        self,
        handler: PayloadHandler,
        cancel: asyncio.Event,
        *streams: str,
    ) -> Subscription:
        """Subscribe to streams and dispatch each payload to ``handler``.

        Returns once the server has acknowledged the subscription.

        Args:
            handler: Called with each decoded payload; exceptions are logged.
            cancel: Caller-owned event; setting it ends the stream.
            *streams: Topics such as "AAPL/1Min/OHLCV" or "*/1Min/OHLCV".

        Returns:
            The running subscription; ``await sub.wait()`` until it ends.

        Raises:
            TransportError: If the streaming endpoint cannot be reached.
            SerializationError: If the subscribe request cannot be encoded.
            SubscribeError: If the handshake fails or times out.
        """
        return await subscribe(
            self._config.ws_url,
            handler,
            cancel,
            *streams,
            timeout=self._config.subscribe_timeout,
            connect=self._connector,
        )
