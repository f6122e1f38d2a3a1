"""Exception types for mkts-client.

All client exceptions inherit from MarketstoreError, allowing callers to catch
every client-specific failure with a single except clause.

Exception hierarchy:
    MarketstoreError (base)
    +-- TransportError: Socket open/read/write failures
    |   +-- ConnectionClosedError: The peer or the client closed the socket
    +-- SerializationError: MessagePack encode/decode failures
    +-- SubscribeError: Stream handshake rejected or undecodable
    |   +-- SubscribeTimeoutError: No acknowledgment within the timeout
    +-- RpcError: Batch RPC call failed
"""

from __future__ import annotations

# RFC 6455 close code for a normal closure.
CLOSE_NORMAL = 1000


class MarketstoreError(Exception):
    """Base exception for all mkts-client errors."""


class TransportError(MarketstoreError):
    """Raised when the underlying socket cannot be opened, read or written."""


class ConnectionClosedError(TransportError):
    """Raised when reading from a connection that is closing or closed.

    Attributes:
        code: The websocket close code, if known.
        reason: Optional close reason sent by the peer.
    """

    def __init__(self, code: int | None = None, reason: str = "") -> None:
        self.code = code
        self.reason = reason
        detail = f"connection closed (code={code})"
        if reason:
            detail = f"{detail}: {reason}"
        super().__init__(detail)

    @property
    def is_normal(self) -> bool:
        """Return True if the connection ended with a normal closure."""
        return self.code == CLOSE_NORMAL


class SerializationError(MarketstoreError):
    """Raised when a message cannot be serialized or deserialized."""


class SubscribeError(MarketstoreError):
    """Raised when the stream subscribe handshake fails."""


class SubscribeTimeoutError(SubscribeError):
    """Raised when the server does not acknowledge a subscribe in time."""


class RpcError(MarketstoreError):
    """Raised when a batch RPC call fails.

    Attributes:
        status_code: HTTP status code for transport-level failures, or None
            when the server answered but reported an error.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
