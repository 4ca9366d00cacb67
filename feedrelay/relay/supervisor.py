"""
Session Supervisor - top-level orchestration.

Coordinates the relay components:
- FeedSession for the remote connection (one at a time)
- LocalChannel for delivery to the local consumer
- Reconnect scheduling after a disconnect
- Signal-driven graceful shutdown
"""

from __future__ import annotations

import asyncio
import logging
import signal
from typing import Any, Callable, Optional

import aiohttp

from feedrelay.relay.channel import LocalChannel
from feedrelay.relay.config import RelayConfig
from feedrelay.relay.errors import TransportContextError
from feedrelay.relay.session import FeedSession
from feedrelay.relay.types import ClientIdentity, SupervisorState

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class Supervisor:
    """
    Owns the event loop side of the relay.

    Responsibilities:
    - Run one FeedSession at a time on the asyncio loop
    - Schedule a single reconnect, after a fixed delay, when a session ends
    - Route alert/symbol_update documents into the LocalChannel
    - Stop promptly when shutdown() is called (from a signal handler)

    State Machine:
        [STOPPED] --run()--> [RUNNING] --shutdown()--> [STOPPING] --> [STOPPED]

    The client identity lives here rather than on a session so it survives
    reconnects; each new session receives it by reference.

    Usage:
        channel = LocalChannel(config.channel)
        channel.open()
        supervisor = Supervisor(config, channel)
        await supervisor.run()
    """

    def __init__(
        self,
        config: RelayConfig,
        channel: LocalChannel,
        http_factory: Optional[Callable[[], aiohttp.ClientSession]] = None,
        install_signal_handlers: bool = True,
        name: str = "supervisor",
    ) -> None:
        """
        Initialize the supervisor.

        Args:
            config: Relay configuration
            channel: Local channel, already opened by the caller
            http_factory: Transport context factory handed to each FeedSession
            install_signal_handlers: Route SIGINT/SIGTERM to shutdown() while running
            name: Name for logging purposes
        """
        self._config = config
        self._channel = channel
        self._http_factory = http_factory
        self._install_signal_handlers = install_signal_handlers
        self._name = name

        self._state = SupervisorState.STOPPED
        self._identity = ClientIdentity()

        self._session: Optional[FeedSession] = None
        self._session_task: Optional[asyncio.Task[None]] = None
        self._reconnect_handle: Optional[asyncio.TimerHandle] = None

        # Shutdown coordination
        self._running = False
        self._wake: Optional[asyncio.Event] = None
        self._fatal: Optional[BaseException] = None
        self._signals_installed: list[signal.Signals] = []

        # Statistics
        self._sessions_started = 0
        self._reconnects = 0

    @property
    def state(self) -> SupervisorState:
        return self._state

    @property
    def identity(self) -> ClientIdentity:
        return self._identity

    @property
    def session(self) -> Optional[FeedSession]:
        """Current feed session, if any."""
        return self._session

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_handle is not None

    async def run(self) -> None:
        """
        Run until shutdown() is called.

        Raises:
            TransportContextError: If a session cannot create its transport context
        """
        if self._state != SupervisorState.STOPPED:
            logger.warning(f"[{self._name}] Cannot run from state: {self._state.value}")
            return

        loop = asyncio.get_running_loop()
        self._wake = asyncio.Event()
        self._fatal = None
        self._running = True
        self._state = SupervisorState.RUNNING
        logger.info(f"[{self._name}] Starting relay to {self._config.feed.url}")

        if self._install_signal_handlers:
            self._add_signal_handlers(loop)

        try:
            self._start_session()
            while self._running:
                await self._wake.wait()
                self._wake.clear()
                if self._fatal is not None:
                    break
        finally:
            self._remove_signal_handlers(loop)
            await self._teardown()

        if self._fatal is not None:
            raise self._fatal

    def shutdown(self) -> None:
        """
        Request loop termination.

        Safe to call from a signal handler: one flag write and a wake-up.
        """
        self._running = False
        if self._wake is not None:
            self._wake.set()

    # --- Session management ---

    def _start_session(self, previous: Optional[FeedSession] = None) -> None:
        session = FeedSession(
            config=self._config.feed,
            identity=self._identity,
            on_forwardable=self.on_forwardable,
            on_closed=self.on_session_closed,
            http_factory=self._http_factory,
            name=f"{self._name}_feed",
        )
        self._session = session
        self._sessions_started += 1

        task = asyncio.create_task(
            self._run_session(session, previous), name=f"{self._name}_session"
        )
        task.add_done_callback(self._on_session_task_done)
        self._session_task = task

    async def _run_session(
        self, session: FeedSession, previous: Optional[FeedSession]
    ) -> None:
        if previous is not None:
            # Destroy the old transport context before building the new one
            await previous.close()
        await session.run()

    def _on_session_task_done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return

        if isinstance(exc, TransportContextError):
            logger.critical(f"[{self._name}] {exc}")
            self._fatal = exc
            self._running = False
            if self._wake is not None:
                self._wake.set()
            return

        logger.error(f"[{self._name}] Session failed: {exc}", exc_info=exc)
        if self._session is not None:
            self.on_session_closed(self._session)

    def on_session_closed(self, session: FeedSession) -> None:
        """Schedule a reconnect after the fixed delay. At most one is pending."""
        if not self._running or session is not self._session:
            return
        if self._reconnect_handle is not None:
            return

        delay = self._config.reconnect_delay_s
        logger.warning(f"[{self._name}] WebSocket disconnected, reconnecting in {delay:.1f}s...")
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(delay, self._reconnect)

    def _reconnect(self) -> None:
        self._reconnect_handle = None
        if not self._running:
            return
        logger.info(f"[{self._name}] Reconnecting WebSocket...")
        self._reconnects += 1
        self._start_session(previous=self._session)

    def on_forwardable(self, payload: bytes) -> None:
        """Hand a forwardable document to the local channel."""
        self._channel.send(payload)

    # --- Shutdown ---

    async def _teardown(self) -> None:
        """Clean up all resources."""
        self._state = SupervisorState.STOPPING
        self._running = False
        logger.info(f"[{self._name}] Shutting down...")

        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

        task = self._session_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning(f"[{self._name}] Session task error during shutdown: {e}")
        self._session_task = None

        if self._session is not None:
            try:
                await self._session.close()
            except Exception as e:
                logger.warning(f"[{self._name}] Error closing session: {e}")

        self._channel.close()

        self._state = SupervisorState.STOPPED
        logger.info(f"[{self._name}] Relay stopped")

    def _add_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        for sig in SHUTDOWN_SIGNALS:
            try:
                loop.add_signal_handler(sig, self._on_signal, sig)
            except (NotImplementedError, RuntimeError) as e:
                logger.debug(f"[{self._name}] Signal handler for {sig.name} unavailable: {e}")
                continue
            self._signals_installed.append(sig)

    def _remove_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        for sig in self._signals_installed:
            loop.remove_signal_handler(sig)
        self._signals_installed.clear()

    def _on_signal(self, sig: signal.Signals) -> None:
        logger.warning(f"[{self._name}] Caught signal {sig.name}, shutting down...")
        self.shutdown()

    # --- Public methods ---

    def get_stats(self) -> dict[str, Any]:
        """Get statistics summary."""
        stats: dict[str, Any] = {
            "state": self._state.value,
            "client_id": self._identity.value,
            "sessions_started": self._sessions_started,
            "reconnects": self._reconnects,
            "reconnect_pending": self.reconnect_pending,
        }

        if self._session:
            stats["session"] = self._session.get_stats()

        channel_stats = self._channel.stats
        stats["channel"] = {
            "connected": self._channel.is_connected,
            "writes": channel_stats.writes,
            "bytes_written": channel_stats.bytes_written,
            "write_failures": channel_stats.write_failures,
            "oversized_lines": channel_stats.oversized_lines,
        }

        return stats
