"""Simulated peer transport for tests and hardware-less runs."""

from __future__ import annotations

import asyncio
import itertools
from typing import Any

from bridgekit.models.enums import PeerConnectionState
from bridgekit.realtime.mock import MockCall
from bridgekit.webrtc.transport import (
    ConnectionStateChanged,
    DataChannelClosed,
    DataChannelMessage,
    DataChannelOpened,
    LocalIceCandidate,
    NegotiationNeeded,
    PeerEvent,
    PeerEventHandler,
    PeerTransport,
)

_ids = itertools.count(1)


class MockPeerTransport(PeerTransport):
    """In-memory :class:`PeerTransport`.

    Records every call and exposes ``simulate_*`` helpers that deliver
    :data:`PeerEvent` variants to the registered handler.

    Example:
        transport = MockPeerTransport()
        transport.on_event(handler)

        answer = await transport.accept_offer("v=0 ...")
        await transport.simulate_connection_state(PeerConnectionState.CONNECTED)
        await transport.simulate_data_channel_open()
        await transport.simulate_message('{"type": "capture_snapshot"}')
    """

    def __init__(self) -> None:
        self.id = next(_ids)
        self.calls: list[MockCall] = []
        self.sent_data: list[str | bytes] = []
        self.remote_candidates: list[tuple[str, str | None, int | None]] = []
        self.closed = False
        # method name -> exception raised by the next call to that method
        self.fail_next: dict[str, Exception] = {}
        # when set, create_offer waits on it before returning
        self.offer_gate: asyncio.Event | None = None
        self._state = PeerConnectionState.NEW
        self._channel_label: str | None = None
        self._handler: PeerEventHandler | None = None
        self._tasks: set[asyncio.Task[None]] = set()
        self._offers = 0

    @property
    def name(self) -> str:
        return "mock"

    @property
    def connection_state(self) -> PeerConnectionState:
        return self._state

    @property
    def data_channel_open(self) -> bool:
        return self._channel_label is not None and not self.closed

    def on_event(self, handler: PeerEventHandler) -> None:
        self._handler = handler

    async def create_offer(self) -> str:
        self.calls.append(MockCall(method="create_offer"))
        self._maybe_fail("create_offer")
        if self.offer_gate is not None:
            await self.offer_gate.wait()
        self._offers += 1
        return f"v=0 mock-offer-{self.id}-{self._offers}"

    async def accept_offer(self, sdp: str) -> str:
        self.calls.append(MockCall(method="accept_offer", args={"sdp": sdp}))
        self._maybe_fail("accept_offer")
        return f"v=0 mock-answer-{self.id}"

    async def set_remote_answer(self, sdp: str) -> None:
        self.calls.append(MockCall(method="set_remote_answer", args={"sdp": sdp}))
        self._maybe_fail("set_remote_answer")

    async def add_ice_candidate(
        self, candidate: str, sdp_mid: str | None, sdp_mline_index: int | None
    ) -> None:
        self.calls.append(MockCall(method="add_ice_candidate", args={"candidate": candidate}))
        self._maybe_fail("add_ice_candidate")
        self.remote_candidates.append((candidate, sdp_mid, sdp_mline_index))

    def create_data_channel(self, label: str) -> None:
        self.calls.append(MockCall(method="create_data_channel", args={"label": label}))
        task = asyncio.get_running_loop().create_task(self._emit(NegotiationNeeded()))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def send_data(self, data: str | bytes) -> bool:
        if not self.data_channel_open:
            return False
        self.sent_data.append(data)
        return True

    async def close(self) -> None:
        self.calls.append(MockCall(method="close"))
        self.closed = True
        self._state = PeerConnectionState.CLOSED
        self._channel_label = None

    # -- Test helpers: simulate transport events --

    async def simulate_connection_state(self, state: PeerConnectionState) -> None:
        self._state = state
        await self._emit(ConnectionStateChanged(state=state))

    async def simulate_local_candidate(
        self, candidate: str, sdp_mid: str | None = "0", sdp_mline_index: int | None = 0
    ) -> None:
        await self._emit(
            LocalIceCandidate(candidate=candidate, sdp_mid=sdp_mid, sdp_mline_index=sdp_mline_index)
        )

    async def simulate_data_channel_open(self, label: str = "data") -> None:
        self._channel_label = label
        await self._emit(DataChannelOpened(label=label))

    async def simulate_data_channel_close(self) -> None:
        label = self._channel_label or "data"
        self._channel_label = None
        await self._emit(DataChannelClosed(label=label))

    async def simulate_message(self, data: str | bytes) -> None:
        await self._emit(DataChannelMessage(label=self._channel_label or "data", data=data))

    async def simulate_negotiation_needed(self) -> None:
        await self._emit(NegotiationNeeded())

    def calls_to(self, method: str) -> list[MockCall]:
        return [c for c in self.calls if c.method == method]

    # -- Internals --

    def _maybe_fail(self, method: str) -> None:
        exc = self.fail_next.pop(method, None)
        if exc is not None:
            raise exc

    async def _emit(self, event: PeerEvent) -> None:
        if self._handler is None:
            return
        result: Any = self._handler(event)
        if hasattr(result, "__await__"):
            await result
