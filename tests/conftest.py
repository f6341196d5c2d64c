"""Shared test fixtures and helpers."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Callable, Coroutine
from typing import Any

import pytest
from pydantic import SecretStr

from bridgekit.config import BridgeConfig
from bridgekit.core.sessions import SessionRegistry
from bridgekit.display.ack import DisplayAckProtocol
from bridgekit.providers.openai.config import OpenAIRealtimeConfig
from bridgekit.signaling.channel import SignalingChannel
from bridgekit.webrtc.mock import MockPeerTransport


@pytest.fixture
def advance() -> Callable[[int], Coroutine[Any, Any, None]]:
    """Yield control to let pending tasks run without real delay.

    Replaces ``await asyncio.sleep(0.05)`` patterns with zero-delay
    event loop yields::

        await advance()       # 5 yields (default)
        await advance(10)     # 10 yields for heavier workloads
    """

    async def _advance(n: int = 5) -> None:
        for _ in range(n):
            await asyncio.sleep(0)

    return _advance


class FakeSocket:
    """In-memory signaling socket that records every frame sent to it."""

    def __init__(self) -> None:
        self.sent: list[str] = []
        self.open = True
        self.close_code: int | None = None
        self.fail_sends = False
        self._inbound: asyncio.Queue[str | bytes | None] = asyncio.Queue()

    @property
    def is_open(self) -> bool:
        return self.open

    async def send(self, data: str) -> None:
        if self.fail_sends:
            raise ConnectionError("socket broken")
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.open = False
        self.close_code = code
        self._inbound.put_nowait(None)

    def feed(self, frame: str | bytes | dict[str, Any]) -> None:
        """Queue an inbound frame for :meth:`__aiter__`."""
        self._inbound.put_nowait(json.dumps(frame) if isinstance(frame, dict) else frame)

    def hang_up(self) -> None:
        self._inbound.put_nowait(None)

    async def __aiter__(self) -> AsyncIterator[str | bytes]:
        while True:
            frame = await self._inbound.get()
            if frame is None:
                return
            yield frame

    @property
    def messages(self) -> list[dict[str, Any]]:
        return [json.loads(s) for s in self.sent]

    def of_type(self, msg_type: str) -> list[dict[str, Any]]:
        return [m for m in self.messages if m.get("type") == msg_type]


class FakeProviderSocket:
    """Stands in for the provider WebSocket; server events are pushed by the test."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self._incoming: asyncio.Queue[str | None] = asyncio.Queue()

    async def send(self, data: str) -> None:
        if self.closed:
            raise ConnectionError("closed")
        self.sent.append(json.loads(data))

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._incoming.put_nowait(None)

    def push(self, event: dict[str, Any]) -> None:
        self._incoming.put_nowait(json.dumps(event))

    def drop(self) -> None:
        """Simulate the server closing the connection."""
        self._incoming.put_nowait(None)

    async def __aiter__(self) -> AsyncIterator[str]:
        while True:
            raw = await self._incoming.get()
            if raw is None:
                return
            yield raw

    def of_type(self, event_type: str) -> list[dict[str, Any]]:
        return [e for e in self.sent if e.get("type") == event_type]


class FakeConnector:
    """Connector returning fresh :class:`FakeProviderSocket` instances."""

    def __init__(self) -> None:
        self.sockets: list[FakeProviderSocket] = []
        self.calls: list[tuple[str, dict[str, str]]] = []
        self.failures: list[Exception] = []
        self.always_fail: Exception | None = None

    async def __call__(self, url: str, headers: dict[str, str]) -> FakeProviderSocket:
        self.calls.append((url, headers))
        if self.always_fail is not None:
            raise self.always_fail
        if self.failures:
            raise self.failures.pop(0)
        ws = FakeProviderSocket()
        self.sockets.append(ws)
        return ws

    @property
    def last(self) -> FakeProviderSocket:
        return self.sockets[-1]


@pytest.fixture
def sessions() -> SessionRegistry:
    return SessionRegistry()


@pytest.fixture
def signaling() -> SignalingChannel:
    return SignalingChannel()


@pytest.fixture
def acks(sessions: SessionRegistry) -> DisplayAckProtocol:
    return DisplayAckProtocol(sessions, timeout=0.05)


@pytest.fixture
def transports() -> list[MockPeerTransport]:
    return []


@pytest.fixture
def transport_factory(transports: list[MockPeerTransport]) -> Callable[[], MockPeerTransport]:
    def factory() -> MockPeerTransport:
        transport = MockPeerTransport()
        transports.append(transport)
        return transport

    return factory


@pytest.fixture
def openai_config() -> OpenAIRealtimeConfig:
    return OpenAIRealtimeConfig(api_key=SecretStr("sk-test"))


@pytest.fixture
def bridge_config(openai_config: OpenAIRealtimeConfig) -> BridgeConfig:
    return BridgeConfig(openai=openai_config, peer_backend="mock", display_ack_timeout=0.05)


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()
