"""
Shared types, enums, and data structures for the feed relay.

This module contains types that are used across multiple components
of the relay.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union


class SessionState(str, Enum):
    """State machine for a single feed session."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    ESTABLISHED = "established"
    CLOSED = "closed"
    ERRORED = "errored"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.CLOSED, SessionState.ERRORED)


class SupervisorState(str, Enum):
    """State machine for the Supervisor."""

    STOPPED = "stopped"
    RUNNING = "running"
    STOPPING = "stopping"


class MessageType(str, Enum):
    """Frame types exchanged with the remote feed."""

    # Inbound
    WELCOME = "welcome"
    PING = "ping"
    ALERT = "alert"
    SYMBOL_UPDATE = "symbol_update"
    UNKNOWN = "unknown"

    # Outbound
    REGISTER = "register"
    PONG = "pong"

    @classmethod
    def classify(cls, value: Any) -> MessageType:
        """Map a raw `type` field to an inbound MessageType."""
        inbound = {
            cls.WELCOME.value: cls.WELCOME,
            cls.PING.value: cls.PING,
            cls.ALERT.value: cls.ALERT,
            cls.SYMBOL_UPDATE.value: cls.SYMBOL_UPDATE,
        }
        if not isinstance(value, str):
            return cls.UNKNOWN
        return inbound.get(value, cls.UNKNOWN)

    @property
    def is_forwardable(self) -> bool:
        return self in (MessageType.ALERT, MessageType.SYMBOL_UPDATE)


# --- Transport events ---


@dataclass(frozen=True, slots=True)
class Connected:
    """Handshake with the remote feed completed."""


@dataclass(frozen=True, slots=True)
class Readable:
    """One inbound frame."""

    data: bytes


@dataclass(frozen=True, slots=True)
class WritableReady:
    """The connection can accept an outbound frame."""


@dataclass(frozen=True, slots=True)
class Closed:
    """The transport reported the connection closed."""

    reason: Optional[str] = None


@dataclass(frozen=True, slots=True)
class Error:
    """The transport reported a connection error."""

    exc: Optional[BaseException] = None


TransportEvent = Union[Connected, Readable, WritableReady, Closed, Error]


@dataclass(frozen=True, slots=True)
class InboundMessage:
    """Parsed inbound frame."""

    message_type: MessageType
    document: dict[str, Any]  # Full parsed document, forwarded verbatim

    @property
    def client_id(self) -> Optional[str]:
        """Client identifier carried by a welcome frame."""
        value = self.document.get("client_id")
        if value is None:
            return None
        return value if isinstance(value, str) else str(value)


class ClientIdentity:
    """
    Client identifier assigned by the remote feed.

    Owned by the Supervisor and shared by reference with every FeedSession, so
    an identifier assigned on one connection survives reconnects. Written only
    by the welcome handler; readers must tolerate the empty value.
    """

    __slots__ = ("_value",)

    def __init__(self, value: str = "") -> None:
        self._value = value

    @property
    def value(self) -> str:
        return self._value

    @property
    def is_assigned(self) -> bool:
        return bool(self._value)

    def assign(self, value: str) -> None:
        self._value = value

    def __repr__(self) -> str:
        return f"ClientIdentity({self._value!r})"


@dataclass
class SessionStats:
    """Statistics for one feed session."""

    frames_received: int = 0
    bytes_received: int = 0
    oversized_frames: int = 0
    malformed_frames: int = 0
    ignored_frames: int = 0
    forwarded: int = 0
    pongs_sent: int = 0
    pings_unanswered: int = 0
    by_type: dict[str, int] = field(default_factory=dict)


@dataclass
class ChannelStats:
    """Statistics for the local channel."""

    open_attempts: int = 0
    writes: int = 0
    bytes_written: int = 0
    write_failures: int = 0
    oversized_lines: int = 0
