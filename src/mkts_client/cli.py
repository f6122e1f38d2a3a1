"""Command-line interface for mkts-client.

Usage:
    # Print streamed updates until interrupted
    mkts-client --url http://localhost:5993 stream "AAPL/1Min/OHLCV" "*/1Min/OHLCV"

    # Query a bucket
    mkts-client query AAPL/1Min/OHLCV --start 1700000000 --limit 10

    # Use a YAML config file instead of --url
    mkts-client --config client.yaml stream "AAPL/1Min/OHLCV"
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
from typing import Sequence

import httpx

from mkts_client.client import Client
from mkts_client.config import ClientConfig, default_base_url, load_client_config
from mkts_client.errors import MarketstoreError
from mkts_client.messages import Payload, QueryRequest


def setup_logging(debug: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def build_config(args: argparse.Namespace) -> ClientConfig:
    """Resolve the client configuration from --config or --url."""
    if args.config:
        return load_client_config(args.config)
    return ClientConfig.from_url(args.url or default_base_url())


def print_payload(payload: Payload) -> None:
    print(f"{payload.key}: {payload.data}", flush=True)


async def run_stream(config: ClientConfig, streams: Sequence[str]) -> int:
    """Subscribe and print payloads until interrupted or the stream ends."""
    cancel = asyncio.Event()
    loop = asyncio.get_running_loop()
    with contextlib.suppress(NotImplementedError):
        loop.add_signal_handler(signal.SIGINT, cancel.set)

    async with Client(config) as client:
        subscription = await client.subscribe(print_payload, cancel, *streams)
        await subscription.wait()

    if subscription.last_error is not None:
        print(f"Stream ended: {subscription.last_error}")
        return 1
    return 0


async def run_query(config: ClientConfig, args: argparse.Namespace) -> int:
    """Run a single bucket query and print each column."""
    request = QueryRequest(
        destination=args.destination,
        epoch_start=args.start,
        epoch_end=args.end,
        limit_record_count=args.limit,
        limit_from_start=True if args.limit is not None and args.from_start else None,
    )
    async with Client(config) as client:
        csm = await client.query([request])

    if not csm:
        print("No data")
        return 0

    for tbk, series in csm.items():
        print(f"{tbk.key} ({len(series)} rows)")
        for name in series:
            print(f"  {name}: {series[name].tolist()}")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Marketstore client CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--url", help="Server base URL (default: $MKTS_URL or http://localhost:5993)")
    parser.add_argument("--config", "-c", help="Client config YAML file")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    stream_parser = subparsers.add_parser("stream", help="Print streamed updates")
    stream_parser.add_argument("streams", nargs="+", help="Topics such as AAPL/1Min/OHLCV")

    query_parser = subparsers.add_parser("query", help="Query a time bucket")
    query_parser.add_argument("destination", help="Time bucket key (e.g., AAPL/1Min/OHLCV)")
    query_parser.add_argument("--start", type=int, help="Start epoch in seconds")
    query_parser.add_argument("--end", type=int, help="End epoch in seconds")
    query_parser.add_argument("--limit", type=int, help="Maximum number of records")
    query_parser.add_argument(
        "--from-start", action="store_true",
        help="Apply --limit from the start of the range instead of the end"
    )

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    setup_logging(args.debug)

    try:
        config = build_config(args)
        if args.command == "stream":
            return asyncio.run(run_stream(config, args.streams))
        if args.command == "query":
            return asyncio.run(run_query(config, args))
    except (MarketstoreError, httpx.HTTPError, ValueError, FileNotFoundError) as e:
        print(f"Error: {e}")
        return 1

    parser.print_help()
    return 1
