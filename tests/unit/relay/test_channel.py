"""
Unit tests for LocalChannel, using real named pipes in a temp directory.
"""

from __future__ import annotations

import os
import threading
import time
from pathlib import Path
from typing import Iterator
from unittest.mock import MagicMock, call, patch

import pytest

from feedrelay.relay.channel import PIPE_BUF, LocalChannel
from feedrelay.relay.config import ChannelConfig
from feedrelay.relay.errors import ChannelError

pytestmark = pytest.mark.skipif(not hasattr(os, "mkfifo"), reason="named pipes need POSIX")


@pytest.fixture
def pipe_path(tmp_path: Path) -> Path:
    return tmp_path / "relay_pipe"


@pytest.fixture
def channel(pipe_path: Path) -> Iterator[LocalChannel]:
    ch = LocalChannel(ChannelConfig(path=pipe_path, retry_delay_s=0.0), name="test_channel")
    yield ch
    ch.close()


def _open_in_thread(channel: LocalChannel) -> threading.Thread:
    thread = threading.Thread(target=channel.open, daemon=True)
    thread.start()
    return thread


def _wait_for(path: Path, timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not path.exists():
        if time.monotonic() > deadline:
            raise AssertionError(f"{path} was never created")
        time.sleep(0.01)


@pytest.fixture
def attached(channel: LocalChannel, pipe_path: Path) -> Iterator[tuple[LocalChannel, int]]:
    """Channel with a non-blocking reader attached."""
    thread = _open_in_thread(channel)
    _wait_for(pipe_path)
    reader = os.open(pipe_path, os.O_RDONLY | os.O_NONBLOCK)
    thread.join(timeout=2.0)
    assert not thread.is_alive()
    yield channel, reader
    os.close(reader)


class TestOpen:
    """Tests for LocalChannel.open()."""

    def test_open_blocks_until_reader_attaches(
        self, channel: LocalChannel, pipe_path: Path
    ) -> None:
        thread = _open_in_thread(channel)
        _wait_for(pipe_path)

        time.sleep(0.2)
        assert thread.is_alive()
        assert not channel.is_connected

        reader = os.open(pipe_path, os.O_RDONLY | os.O_NONBLOCK)
        try:
            thread.join(timeout=2.0)
            assert not thread.is_alive()
            assert channel.is_connected
        finally:
            os.close(reader)

    def test_open_retries_with_fixed_delay(self, pipe_path: Path) -> None:
        sleep = MagicMock()
        channel = LocalChannel(ChannelConfig(path=pipe_path, retry_delay_s=3.0), sleep=sleep)

        with patch.object(
            channel,
            "_open_once",
            side_effect=[ChannelError("busy"), ChannelError("busy"), None],
        ):
            channel.open()

        assert sleep.call_args_list == [call(3.0), call(3.0)]
        assert channel.stats.open_attempts == 3

    def test_existing_regular_file_is_rejected(
        self, channel: LocalChannel, pipe_path: Path
    ) -> None:
        pipe_path.write_text("not a pipe")

        with pytest.raises(ChannelError) as exc_info:
            channel._open_once()
        assert exc_info.value.path == str(pipe_path)

    def test_missing_directory_is_a_channel_error(self, tmp_path: Path) -> None:
        channel = LocalChannel(ChannelConfig(path=tmp_path / "missing" / "pipe"))

        with pytest.raises(ChannelError):
            channel._open_once()


class TestSend:
    """Tests for LocalChannel.send()."""

    def test_send_writes_newline_terminated_line(
        self, attached: tuple[LocalChannel, int]
    ) -> None:
        channel, reader = attached

        assert channel.send(b'{"type":"alert","symbol":"XYZ","price":1.23}')

        assert os.read(reader, 4096) == b'{"type":"alert","symbol":"XYZ","price":1.23}\n'
        assert channel.stats.writes == 1
        assert channel.stats.bytes_written == 45

    def test_send_preserves_order(self, attached: tuple[LocalChannel, int]) -> None:
        channel, reader = attached

        channel.send(b'{"n":1}')
        channel.send(b'{"n":2}')

        assert os.read(reader, 4096) == b'{"n":1}\n{"n":2}\n'

    def test_send_before_open_is_dropped(self, channel: LocalChannel) -> None:
        assert channel.send(b"{}") is False
        assert channel.stats.write_failures == 1

    def test_send_after_reader_left_is_dropped(
        self, channel: LocalChannel, pipe_path: Path
    ) -> None:
        thread = _open_in_thread(channel)
        _wait_for(pipe_path)
        reader = os.open(pipe_path, os.O_RDONLY | os.O_NONBLOCK)
        thread.join(timeout=2.0)
        os.close(reader)

        assert channel.send(b'{"type":"alert"}') is False
        assert not channel.is_connected
        # Not re-opened; later sends are skipped
        assert channel.send(b'{"type":"alert"}') is False
        assert channel.stats.write_failures == 2

    def test_line_longer_than_pipe_buf_is_dropped_whole(
        self, attached: tuple[LocalChannel, int]
    ) -> None:
        """Nothing of an over-long line reaches the reader."""
        channel, reader = attached

        assert channel.send(b"x" * PIPE_BUF) is False
        assert channel.send(b'{"n":2}') is True

        assert os.read(reader, 4 * PIPE_BUF) == b'{"n":2}\n'
        assert channel.stats.oversized_lines == 1
        assert channel.is_connected

    def test_line_of_exactly_pipe_buf_is_written(
        self, attached: tuple[LocalChannel, int]
    ) -> None:
        channel, reader = attached
        payload = b"y" * (PIPE_BUF - 1)

        assert channel.send(payload) is True

        assert os.read(reader, 4 * PIPE_BUF) == payload + b"\n"

    def test_nearly_full_pipe_never_tears_a_line(
        self, attached: tuple[LocalChannel, int]
    ) -> None:
        """Dropped sends leave no fragment for the next line to be glued onto."""
        channel, reader = attached
        filler = b"f" * 4000
        while channel.send(filler):
            pass
        os.read(reader, 8192)

        channel.send(b'{"type":"alert","v":[' + b"1000000000.0," * 1000 + b"0]}")
        channel.send(b"z" * 3000)
        while channel.send(b'{"type":"alert","n":2}') is False:
            os.read(reader, 8192)

        received = b""
        while True:
            try:
                chunk = os.read(reader, 65536)
            except BlockingIOError:
                break
            if not chunk:
                break
            received += chunk

        assert received.endswith(b'{"type":"alert","n":2}\n')
        for line in received.split(b"\n")[1:-1]:
            assert line in (filler, b"z" * 3000, b'{"type":"alert","n":2}')

    def test_send_fails_fast_when_pipe_full(self, attached: tuple[LocalChannel, int]) -> None:
        channel, _reader = attached
        payload = b"x" * 4000

        results = [channel.send(payload) for _ in range(64)]

        assert False in results
        assert channel.stats.write_failures >= 1
        assert channel.is_connected


class TestClose:
    def test_close_is_idempotent(self, attached: tuple[LocalChannel, int]) -> None:
        channel, _reader = attached

        channel.close()
        channel.close()

        assert not channel.is_connected
        assert channel.send(b"{}") is False
