"""
Feed Session - one physical connection to the remote feed.

Handles the connection lifecycle including:
- Transport context creation and the WebSocket handshake
- Registration once the session is established
- Frame classification (welcome, ping, alert, symbol_update)
- Ping/pong heartbeat using the assigned client identifier
- Exactly one close notification per session
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

import aiohttp

from feedrelay.relay.config import FeedConfig
from feedrelay.relay.errors import FrameError, TransportContextError
from feedrelay.relay.protocol import (
    decode_frame,
    encode_document,
    encode_pong,
    encode_register,
)
from feedrelay.relay.types import (
    ClientIdentity,
    Closed,
    Connected,
    Error,
    InboundMessage,
    MessageType,
    Readable,
    SessionState,
    SessionStats,
    TransportEvent,
    WritableReady,
)

logger = logging.getLogger(__name__)


class FeedSession:
    """
    Manages a single connection to the remote feed.

    State Machine:
        [DISCONNECTED] --connect()--> [CONNECTING] --handshake--> [ESTABLISHED]
                                           |                            |
                                       [ERRORED]               [CLOSED | ERRORED]

    CLOSED and ERRORED are terminal. The session never reconnects itself; it
    reports the disconnect through `on_closed` and the Supervisor builds a
    fresh session.

    Every transport notification is expressed as a TransportEvent and fed
    through `handle()`, so the protocol logic can be driven without a socket.

    Usage:
        session = FeedSession(
            config=FeedConfig(),
            identity=ClientIdentity(),
            on_forwardable=channel.send,
            on_closed=supervisor.on_session_closed,
        )
        await session.run()
    """

    def __init__(
        self,
        config: FeedConfig,
        identity: ClientIdentity,
        on_forwardable: Callable[[bytes], object],
        on_closed: Optional[Callable[[FeedSession], None]] = None,
        http_factory: Optional[Callable[[], aiohttp.ClientSession]] = None,
        name: str = "feed",
    ) -> None:
        """
        Initialize the session.

        Args:
            config: Remote feed configuration
            identity: Shared client identity, read by ping and written by welcome
            on_forwardable: Callback receiving encoded alert/symbol_update documents
            on_closed: Callback invoked once when the session reaches a terminal state
            http_factory: Creates the transport context; defaults to aiohttp.ClientSession
            name: Name for logging purposes
        """
        self._config = config
        self._identity = identity
        self._on_forwardable = on_forwardable
        self._on_closed = on_closed
        self._http_factory = http_factory or self._default_http_factory
        self._name = name

        self._state = SessionState.DISCONNECTED
        self._http: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None

        self._registered = False
        self._writable_requested = False
        self._stats = SessionStats()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def stats(self) -> SessionStats:
        return self._stats

    @property
    def identity(self) -> ClientIdentity:
        return self._identity

    @property
    def is_registered(self) -> bool:
        return self._registered

    def _set_state(self, new_state: SessionState) -> None:
        old_state = self._state
        self._state = new_state
        if old_state != new_state:
            logger.debug(f"[{self._name}] State: {old_state.value} -> {new_state.value}")

    def _default_http_factory(self) -> aiohttp.ClientSession:
        timeout = aiohttp.ClientTimeout(total=self._config.connect_timeout_s)
        return aiohttp.ClientSession(timeout=timeout)

    # --- Lifecycle ---

    async def connect(self) -> None:
        """
        Create the transport context and perform the handshake.

        A handshake failure moves the session to ERRORED and is reported via
        `on_closed`; it never raises.

        Raises:
            TransportContextError: If the transport context cannot be created
        """
        if self._state != SessionState.DISCONNECTED:
            logger.warning(f"[{self._name}] connect() called in state {self._state.value}")
            return

        self._set_state(SessionState.CONNECTING)

        try:
            self._http = self._http_factory()
        except Exception as e:
            self._set_state(SessionState.ERRORED)
            logger.critical(f"[{self._name}] Failed to create WS context: {e}")
            raise TransportContextError(
                f"Failed to create transport context: {e}",
                component="FeedSession",
            ) from e

        url = self._config.url
        logger.info(f"[{self._name}] Connecting to {url} ({self._config.subprotocol})")
        try:
            self._ws = await self._http.ws_connect(
                url,
                protocols=(self._config.subprotocol,),
            )
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            logger.error(f"[{self._name}] WebSocket connection failed: {e}")
            await self.handle(Error(e))
            return

        await self.handle(Connected())

    async def run(self) -> None:
        """
        Connect and service the connection until it ends.

        Returns once the session is terminal. Only TransportContextError and
        cancellation propagate.
        """
        await self.connect()
        ws = self._ws
        if self._state != SessionState.ESTABLISHED or ws is None:
            return

        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    await self.handle(Readable(msg.data.encode("utf-8")))
                elif msg.type == aiohttp.WSMsgType.BINARY:
                    await self.handle(Readable(bytes(msg.data)))
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    await self.handle(Error(ws.exception()))
                    return
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[{self._name}] Receive loop error: {e}")
            await self.handle(Error(e))
            return

        await self.handle(Closed(reason=f"close code {ws.close_code}"))

    async def close(self) -> None:
        """
        Release the connection and transport context.

        Local teardown: the session becomes CLOSED without notifying
        `on_closed`. Idempotent.
        """
        if not self._state.is_terminal:
            self._set_state(SessionState.CLOSED)

        if self._ws is not None and not self._ws.closed:
            try:
                await self._ws.close()
            except Exception as e:
                logger.warning(f"[{self._name}] Error closing WebSocket: {e}")
        self._ws = None

        if self._http is not None and not self._http.closed:
            await self._http.close()
        self._http = None

    # --- Event dispatch ---

    async def handle(self, event: TransportEvent) -> None:
        """Dispatch one transport event."""
        if isinstance(event, Readable):
            await self._on_readable(event.data)
        elif isinstance(event, WritableReady):
            await self._on_writable()
        elif isinstance(event, Connected):
            self._on_connected()
        elif isinstance(event, (Closed, Error)):
            self._on_disconnected(event)
        else:
            logger.debug(f"[{self._name}] Unhandled event: {event!r}")

        if self._writable_requested and self._state == SessionState.ESTABLISHED:
            self._writable_requested = False
            await self.handle(WritableReady())

    def _on_connected(self) -> None:
        if self._state != SessionState.CONNECTING:
            return
        self._set_state(SessionState.ESTABLISHED)
        logger.info(f"[{self._name}] WS connected")
        # Registration is the first obligation of an established session
        self._writable_requested = True

    async def _on_writable(self) -> None:
        if self._state != SessionState.ESTABLISHED or self._registered:
            return
        self._registered = True
        if await self._send(encode_register(self._config.role)):
            logger.info(f"[{self._name}] Registered as {self._config.role}")

    async def _on_readable(self, data: bytes) -> None:
        if self._state != SessionState.ESTABLISHED:
            logger.debug(f"[{self._name}] Frame ignored in state {self._state.value}")
            return

        self._stats.frames_received += 1
        self._stats.bytes_received += len(data)

        try:
            msg = decode_frame(data, self._config.max_frame_size)
        except FrameError as e:
            if e.reason == "oversized":
                self._stats.oversized_frames += 1
                logger.warning(f"[{self._name}] Oversized message ({e.frame_size} bytes)")
            else:
                self._stats.malformed_frames += 1
                logger.debug(f"[{self._name}] Dropped frame: {e}")
            return

        type_key = msg.message_type.value
        self._stats.by_type[type_key] = self._stats.by_type.get(type_key, 0) + 1

        if msg.message_type == MessageType.WELCOME:
            self._on_welcome(msg)
        elif msg.message_type == MessageType.PING:
            await self._on_ping()
        elif msg.message_type.is_forwardable:
            self._forward(msg)
        else:
            self._stats.ignored_frames += 1

    def _on_welcome(self, msg: InboundMessage) -> None:
        client_id = msg.client_id
        if not client_id:
            logger.warning(f"[{self._name}] Welcome without client_id")
            return
        self._identity.assign(client_id)
        logger.info(f"[{self._name}] Assigned client_id: {client_id}")

    async def _on_ping(self) -> None:
        if not self._identity.is_assigned:
            self._stats.pings_unanswered += 1
            logger.warning(f"[{self._name}] Can't respond to ping, client_id not assigned yet")
            return

        client_id = self._identity.value
        if await self._send(encode_pong(client_id)):
            self._stats.pongs_sent += 1
            logger.debug(f"[{self._name}] Responded with pong as {client_id}")

    def _forward(self, msg: InboundMessage) -> None:
        payload = encode_document(msg.document)
        try:
            self._on_forwardable(payload)
        except Exception as e:
            logger.error(f"[{self._name}] Forward callback error: {e}")
            return
        self._stats.forwarded += 1

    def _on_disconnected(self, event: TransportEvent) -> None:
        if self._state.is_terminal:
            return

        if isinstance(event, Error):
            self._set_state(SessionState.ERRORED)
            logger.warning(f"[{self._name}] WebSocket error: {event.exc}")
        else:
            self._set_state(SessionState.CLOSED)
            logger.warning(f"[{self._name}] WebSocket disconnected ({event.reason})")

        if self._on_closed:
            try:
                self._on_closed(self)
            except Exception as e:
                logger.error(f"[{self._name}] Close callback error: {e}")

    async def _send(self, frame: bytes) -> bool:
        """Send one text frame. Failures are logged; the receive loop sees the disconnect."""
        if self._ws is None or self._ws.closed:
            logger.warning(f"[{self._name}] Not connected, dropping outbound frame")
            return False
        try:
            await self._ws.send_str(frame.decode("utf-8"))
        except (aiohttp.ClientError, ConnectionError, RuntimeError) as e:
            logger.warning(f"[{self._name}] Send failed: {e}")
            return False
        return True

    def get_stats(self) -> dict[str, object]:
        """Get statistics summary."""
        return {
            "state": self._state.value,
            "registered": self._registered,
            "frames_received": self._stats.frames_received,
            "bytes_received": self._stats.bytes_received,
            "oversized_frames": self._stats.oversized_frames,
            "malformed_frames": self._stats.malformed_frames,
            "ignored_frames": self._stats.ignored_frames,
            "forwarded": self._stats.forwarded,
            "pongs_sent": self._stats.pongs_sent,
            "pings_unanswered": self._stats.pings_unanswered,
            "by_type": dict(self._stats.by_type),
        }
