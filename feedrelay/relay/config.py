"""
Configuration types for the feed relay.

All values are fixed at build time; nothing here is loaded from disk or the
environment. The dataclasses exist so components receive validated, immutable
settings and tests can substitute their own.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from feedrelay.relay.errors import ConfigurationError

# Remote feed
FEED_HOST = "172.232.155.62"
FEED_PORT = 8000
FEED_PATH = "/ws"
FEED_SUBPROTOCOL = "mtp-protocol"
REGISTER_ROLE = "client"

# Local channel
CHANNEL_PATH = Path("/tmp/mtp_pipe")

# Timing and limits
RECONNECT_DELAY_S = 3.0
CHANNEL_RETRY_DELAY_S = 3.0
CONNECT_TIMEOUT_S = 30.0
MAX_FRAME_SIZE = 4096


@dataclass(frozen=True)
class FeedConfig:
    """Configuration for the remote feed connection."""

    host: str = FEED_HOST
    port: int = FEED_PORT
    path: str = FEED_PATH
    subprotocol: str = FEED_SUBPROTOCOL
    role: str = REGISTER_ROLE

    connect_timeout_s: float = CONNECT_TIMEOUT_S
    max_frame_size: int = MAX_FRAME_SIZE  # Frames of this size or larger are dropped

    def __post_init__(self) -> None:
        if not self.host:
            raise ConfigurationError("host must not be empty", field="host")
        if not (0 < self.port < 65536):
            raise ConfigurationError(
                "port must be between 1 and 65535",
                field="port",
                value=self.port,
            )
        if not self.path.startswith("/"):
            raise ConfigurationError(
                "path must start with '/'",
                field="path",
                value=self.path,
            )
        if not self.subprotocol:
            raise ConfigurationError("subprotocol must not be empty", field="subprotocol")
        if self.connect_timeout_s <= 0:
            raise ConfigurationError(
                "connect_timeout_s must be positive",
                field="connect_timeout_s",
                value=self.connect_timeout_s,
            )
        if self.max_frame_size <= 0:
            raise ConfigurationError(
                "max_frame_size must be positive",
                field="max_frame_size",
                value=self.max_frame_size,
            )

    @property
    def url(self) -> str:
        """Build the WebSocket URL."""
        return f"ws://{self.host}:{self.port}{self.path}"


@dataclass(frozen=True)
class ChannelConfig:
    """Configuration for the local forwarding channel."""

    path: Path = CHANNEL_PATH
    retry_delay_s: float = CHANNEL_RETRY_DELAY_S

    def __post_init__(self) -> None:
        if self.retry_delay_s < 0:
            raise ConfigurationError(
                "retry_delay_s must be non-negative",
                field="retry_delay_s",
                value=self.retry_delay_s,
            )


@dataclass(frozen=True)
class RelayConfig:
    """
    Immutable top-level configuration for the relay.

    Example:
        config = RelayConfig(
            feed=FeedConfig(host="127.0.0.1"),
            channel=ChannelConfig(path=Path("/tmp/test_pipe")),
        )
    """

    feed: FeedConfig = field(default_factory=FeedConfig)
    channel: ChannelConfig = field(default_factory=ChannelConfig)
    reconnect_delay_s: float = RECONNECT_DELAY_S

    def __post_init__(self) -> None:
        if self.reconnect_delay_s < 0:
            raise ConfigurationError(
                "reconnect_delay_s must be non-negative",
                field="reconnect_delay_s",
                value=self.reconnect_delay_s,
            )
