"""Shared fixtures for mkts-client unit tests."""

from __future__ import annotations

from typing import Any

import pytest

from stubs import StubConnection


@pytest.fixture
def stub_conn() -> StubConnection:
    """Create a stub connection."""
    return StubConnection()


@pytest.fixture
def connector(stub_conn: StubConnection) -> Any:
    """Create a connector that records the dialed URL and returns the stub."""

    async def connect(url: str) -> StubConnection:
        connect.urls.append(url)  # type: ignore[attr-defined]
        return stub_conn

    connect.urls = []  # type: ignore[attr-defined]
    return connect
