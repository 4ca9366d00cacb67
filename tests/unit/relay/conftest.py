"""
Shared fakes for relay tests.

FakeWebSocket stands in for aiohttp.ClientWebSocketResponse and
FakeHttpSession for aiohttp.ClientSession (the transport context).
"""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Any, Callable, Optional

import aiohttp
import pytest


class FakeWebSocket:
    """Queue-backed WebSocket: tests push inbound frames, outbound frames are recorded."""

    def __init__(self, journal: Optional[list[tuple[str, Any]]] = None) -> None:
        self._inbox: asyncio.Queue[Optional[SimpleNamespace]] = asyncio.Queue()
        self.sent: list[str] = []
        self.journal = journal if journal is not None else []
        self.closed = False
        self.close_code: Optional[int] = None
        self._exception: Optional[BaseException] = None

    def feed_text(self, text: str) -> None:
        self._inbox.put_nowait(SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=text))

    def feed_binary(self, data: bytes) -> None:
        self._inbox.put_nowait(SimpleNamespace(type=aiohttp.WSMsgType.BINARY, data=data))

    def feed_error(self, exc: BaseException) -> None:
        self._exception = exc
        self._inbox.put_nowait(SimpleNamespace(type=aiohttp.WSMsgType.ERROR, data=exc))

    def end(self, code: int = 1000) -> None:
        """Simulate a remote close."""
        self.close_code = code
        self._inbox.put_nowait(None)

    async def send_str(self, data: str) -> None:
        if self.closed:
            raise ConnectionResetError("Cannot write to closing transport")
        self.sent.append(data)
        self.journal.append(("upstream", data))

    async def close(self) -> bool:
        self.closed = True
        if self.close_code is None:
            self.close_code = 1000
        self._inbox.put_nowait(None)
        return True

    def exception(self) -> Optional[BaseException]:
        return self._exception

    def __aiter__(self) -> FakeWebSocket:
        return self

    async def __anext__(self) -> SimpleNamespace:
        item = await self._inbox.get()
        if item is None:
            self.closed = True
            raise StopAsyncIteration
        return item


class FakeHttpSession:
    """Transport context returning a prepared FakeWebSocket."""

    def __init__(
        self,
        ws: Optional[FakeWebSocket] = None,
        connect_error: Optional[BaseException] = None,
    ) -> None:
        self.ws = ws
        self.connect_error = connect_error
        self.closed = False
        self.connect_calls: list[tuple[str, dict[str, Any]]] = []

    async def ws_connect(self, url: str, **kwargs: Any) -> FakeWebSocket:
        self.connect_calls.append((url, kwargs))
        if self.connect_error is not None:
            raise self.connect_error
        assert self.ws is not None
        return self.ws

    async def close(self) -> None:
        self.closed = True


class HttpFactory:
    """Hands out prepared FakeHttpSessions in order; blocking sessions after that."""

    def __init__(self, *sessions: FakeHttpSession) -> None:
        self._pending = list(sessions)
        self.created: list[FakeHttpSession] = []

    def __call__(self) -> FakeHttpSession:
        if self._pending:
            http = self._pending.pop(0)
        else:
            http = FakeHttpSession(ws=FakeWebSocket())
        self.created.append(http)
        return http


@pytest.fixture
def journal() -> list[tuple[str, Any]]:
    """Ordered record of upstream sends and local forwards."""
    return []


@pytest.fixture
def make_ws(journal: list[tuple[str, Any]]) -> Callable[[], FakeWebSocket]:
    def _make() -> FakeWebSocket:
        return FakeWebSocket(journal=journal)

    return _make


@pytest.fixture
def make_http() -> Callable[..., FakeHttpSession]:
    def _make(
        ws: Optional[FakeWebSocket] = None,
        connect_error: Optional[BaseException] = None,
    ) -> FakeHttpSession:
        return FakeHttpSession(ws=ws, connect_error=connect_error)

    return _make


@pytest.fixture
def make_http_factory() -> Callable[..., HttpFactory]:
    def _make(*sessions: FakeHttpSession) -> HttpFactory:
        return HttpFactory(*sessions)

    return _make
