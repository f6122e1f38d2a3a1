"""Client configuration.

Configuration can be built directly, from a single URL, or from a YAML file.

Example YAML:
    client:
      url: "http://localhost:5993"
      subscribe_timeout: 10.0
      rpc_timeout: 30.0
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlsplit, urlunsplit

import yaml

DEFAULT_URL = "http://localhost:5993"
URL_ENV = "MKTS_URL"

# Seconds to wait for the server to acknowledge a stream subscribe.
SUBSCRIBE_TIMEOUT = 10.0

_WS_SCHEMES = {"http": "ws", "https": "wss"}


@dataclass(frozen=True)
class ClientConfig:
    """Configuration for connecting to a Marketstore server.

    Attributes:
        base_url: HTTP base URL of the server (e.g., "http://localhost:5993").
        subscribe_timeout: Seconds to wait for a subscribe acknowledgment.
        rpc_timeout: Timeout for batch RPC requests in seconds.
        rpc_service: RPC service name prefixed to every method.
    """

    base_url: str = DEFAULT_URL
    subscribe_timeout: float = SUBSCRIBE_TIMEOUT
    rpc_timeout: float = 30.0
    rpc_service: str = "DataService"

    def __post_init__(self) -> None:
        """Validate configuration."""
        parts = urlsplit(self.base_url)
        if parts.scheme not in _WS_SCHEMES:
            raise ValueError(f"base_url must use http or https: {self.base_url!r}")
        if not parts.netloc:
            raise ValueError(f"base_url has no host: {self.base_url!r}")
        if self.subscribe_timeout <= 0:
            raise ValueError("subscribe_timeout must be positive")
        if self.rpc_timeout <= 0:
            raise ValueError("rpc_timeout must be positive")
        object.__setattr__(self, "base_url", self.base_url.rstrip("/"))

    @classmethod
    def from_url(cls, url: str, **kwargs: object) -> ClientConfig:
        """Create config from a server URL.

        Args:
            url: Server base URL.
            **kwargs: Additional configuration options.

        Returns:
            ClientConfig instance.
        """
        return cls(base_url=url, **kwargs)  # type: ignore[arg-type]

    @property
    def ws_url(self) -> str:
        """Streaming endpoint, with the scheme rewritten to ws/wss."""
        parts = urlsplit(self.base_url + "/ws")
        return urlunsplit(parts._replace(scheme=_WS_SCHEMES[parts.scheme]))

    @property
    def rpc_url(self) -> str:
        """Batch RPC endpoint."""
        return self.base_url + "/rpc"


def default_base_url() -> str:
    """Return the server URL from the environment, or the local default."""
    return os.environ.get(URL_ENV, DEFAULT_URL)


def load_client_config(path: str | Path) -> ClientConfig:
    """Load client configuration from a YAML file.

    Args:
        path: Path to the configuration YAML file.

    Returns:
        Parsed ClientConfig.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        ValueError: If the file is not a mapping or a value is invalid.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Client config not found: {path}")

    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if not isinstance(data, dict):
        raise ValueError("Client config must be a YAML mapping")

    client_data = data.get("client", {})
    if not isinstance(client_data, dict):
        raise ValueError("client section must be a mapping")

    kwargs: dict[str, object] = {}
    for key in ("subscribe_timeout", "rpc_timeout"):
        if key in client_data:
            kwargs[key] = float(client_data[key])
    if "rpc_service" in client_data:
        kwargs["rpc_service"] = str(client_data["rpc_service"])

    return ClientConfig(base_url=client_data.get("url") or default_base_url(), **kwargs)  # type: ignore[arg-type]
