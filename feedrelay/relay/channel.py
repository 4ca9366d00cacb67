"""
Local forwarding channel.

A single-writer, single-reader POSIX named pipe. The relay writes one
newline-terminated JSON document per forwarded message; the consumer process
on the same machine reads them line by line.
"""

from __future__ import annotations

import errno as errno_codes
import logging
import os
import select
import stat
import time
from typing import Callable, Optional

from feedrelay.relay.config import ChannelConfig
from feedrelay.relay.errors import ChannelError
from feedrelay.relay.types import ChannelStats

logger = logging.getLogger(__name__)

# Largest write the kernel guarantees not to interleave or split
PIPE_BUF = select.PIPE_BUF


class LocalChannel:
    """
    Outbound byte sink attached to exactly one local reader.

    Lifecycle:
        open()  - create the FIFO and block until a reader attaches
        send()  - write one line, fail fast, never raise
        close() - release the descriptor (idempotent)

    A failed write is logged and the message dropped. The channel is not
    re-opened automatically; the relay runs degraded until restarted.
    """

    def __init__(
        self,
        config: ChannelConfig,
        name: str = "channel",
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._config = config
        self._name = name
        self._sleep = sleep

        self._fd: Optional[int] = None
        self._connected = False
        self._stats = ChannelStats()

    @property
    def path(self) -> str:
        return str(self._config.path)

    @property
    def is_connected(self) -> bool:
        return self._fd is not None and self._connected

    @property
    def stats(self) -> ChannelStats:
        return self._stats

    def open(self) -> None:
        """
        Block until a reader attaches to the channel.

        Retries indefinitely with a fixed delay; the relay is useless without
        a consumer.
        """
        while True:
            self._stats.open_attempts += 1
            try:
                self._open_once()
                return
            except ChannelError as e:
                logger.error(
                    f"[{self._name}] {e}; retrying in {self._config.retry_delay_s:.1f}s"
                )
                self._sleep(self._config.retry_delay_s)

    def _open_once(self) -> None:
        """Create the FIFO if needed and wait for a reader."""
        self._ensure_fifo()

        logger.info(f"[{self._name}] Waiting for pipe reader on {self.path}...")
        try:
            # Write-only open of a FIFO blocks until the other end is opened
            fd = os.open(self.path, os.O_WRONLY)
        except OSError as e:
            raise ChannelError(
                f"Pipe connect failed: {e.strerror}",
                path=self.path,
                errno=e.errno,
                component="LocalChannel",
            ) from e

        os.set_blocking(fd, False)
        self._fd = fd
        self._connected = True
        logger.info(f"[{self._name}] Pipe connected")

    def _ensure_fifo(self) -> None:
        try:
            st = os.stat(self.path)
        except FileNotFoundError:
            try:
                os.mkfifo(self.path, 0o600)
            except OSError as e:
                raise ChannelError(
                    f"Create pipe failed: {e.strerror}",
                    path=self.path,
                    errno=e.errno,
                    component="LocalChannel",
                ) from e
            return

        if not stat.S_ISFIFO(st.st_mode):
            raise ChannelError(
                "Path exists and is not a named pipe",
                path=self.path,
                errno=errno_codes.EEXIST,
                component="LocalChannel",
            )

    def send(self, payload: bytes) -> bool:
        """
        Write one newline-terminated payload.

        Lines longer than PIPE_BUF are dropped: only writes up to PIPE_BUF are
        atomic, and a partial write would tear the line framing for the reader.

        Returns:
            True if the whole line was written, False if it was dropped
        """
        if self._fd is None or not self._connected:
            logger.warning(f"[{self._name}] Pipe not valid, skipping write")
            self._stats.write_failures += 1
            return False

        line = payload + b"\n"
        if len(line) > PIPE_BUF:
            logger.warning(
                f"[{self._name}] Message of {len(line)} bytes exceeds "
                f"PIPE_BUF ({PIPE_BUF}), dropping"
            )
            self._stats.oversized_lines += 1
            self._stats.write_failures += 1
            return False

        try:
            os.write(self._fd, line)
        except BlockingIOError:
            logger.warning(f"[{self._name}] Pipe full, dropping message")
            self._stats.write_failures += 1
            return False
        except BrokenPipeError:
            logger.warning(f"[{self._name}] Pipe reader gone, dropping message")
            self._connected = False
            self._stats.write_failures += 1
            return False
        except OSError as e:
            logger.warning(f"[{self._name}] Pipe write failed: {e}")
            self._stats.write_failures += 1
            return False

        self._stats.writes += 1
        self._stats.bytes_written += len(line)
        return True

    def close(self) -> None:
        """Release the pipe descriptor."""
        if self._fd is None:
            return
        try:
            os.close(self._fd)
        except OSError as e:
            logger.warning(f"[{self._name}] Error closing pipe: {e}")
        self._fd = None
        self._connected = False
        logger.info(f"[{self._name}] Pipe closed")
