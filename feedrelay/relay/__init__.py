"""
Feed Relay Module.

This module keeps a persistent WebSocket connection to a remote alert feed,
answers its handshake and heartbeat, and relays alert and symbol_update
documents to a local named pipe for another process on the same machine.

Components:
- Supervisor: Event loop ownership, reconnect scheduling, shutdown
- FeedSession: One connection, registration, ping/pong, frame classification
- LocalChannel: Named pipe endpoint for the local consumer
- protocol: Frame decoding and encoding

Usage:
    from feedrelay.relay import LocalChannel, RelayConfig, Supervisor

    config = RelayConfig()
    channel = LocalChannel(config.channel)
    channel.open()  # blocks until a reader attaches
    await Supervisor(config, channel).run()
"""

from feedrelay.relay.channel import LocalChannel
from feedrelay.relay.config import ChannelConfig, FeedConfig, RelayConfig
from feedrelay.relay.errors import (
    ChannelError,
    ConfigurationError,
    FrameError,
    RelayError,
    TransportContextError,
)
from feedrelay.relay.session import FeedSession
from feedrelay.relay.supervisor import Supervisor
from feedrelay.relay.types import (
    ClientIdentity,
    MessageType,
    SessionState,
    SupervisorState,
)

__all__ = [
    # Main entry point
    "Supervisor",
    "RelayConfig",
    # Components
    "FeedSession",
    "LocalChannel",
    "FeedConfig",
    "ChannelConfig",
    # Types
    "ClientIdentity",
    "MessageType",
    "SessionState",
    "SupervisorState",
    # Errors
    "RelayError",
    "ConfigurationError",
    "TransportContextError",
    "ChannelError",
    "FrameError",
]
