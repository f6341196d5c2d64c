"""Peer transport backed by aiortc."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any

from aiortc import (
    RTCConfiguration,
    RTCDataChannel,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.sdp import candidate_from_sdp

from bridgekit.models.enums import PeerConnectionState
from bridgekit.webrtc.transport import (
    ConnectionStateChanged,
    DataChannelClosed,
    DataChannelMessage,
    DataChannelOpened,
    NegotiationNeeded,
    PeerEvent,
    PeerEventHandler,
    PeerTransport,
)

logger = logging.getLogger("bridgekit.webrtc.aiortc")


class AiortcPeerTransport(PeerTransport):
    """WebRTC peer connection using aiortc.

    aiortc gathers candidates during ``setLocalDescription`` and embeds them
    in the SDP, so no :class:`LocalIceCandidate` events are produced; remote
    trickled candidates are still applied. aiortc also has no
    ``negotiationneeded`` event, so :meth:`create_data_channel` emits
    :class:`NegotiationNeeded` itself.

    pyee invokes aiortc callbacks synchronously; they only enqueue events,
    and a single dispatcher task delivers them to the handler in order.
    """

    def __init__(self, *, ice_servers: list[str] | None = None) -> None:
        servers = [RTCIceServer(urls=url) for url in ice_servers or []]
        self._pc = RTCPeerConnection(configuration=RTCConfiguration(iceServers=servers))
        self._channel: RTCDataChannel | None = None
        self._handler: PeerEventHandler | None = None
        self._queue: asyncio.Queue[PeerEvent | None] = asyncio.Queue()
        self._dispatcher = asyncio.create_task(self._dispatch_loop(), name="aiortc_peer_events")
        self._closed = False

        @self._pc.on("connectionstatechange")
        def on_connectionstatechange() -> None:
            state = _map_state(self._pc.connectionState)
            logger.info("Peer connection state: %s", state)
            self._enqueue(ConnectionStateChanged(state=state))

        @self._pc.on("datachannel")
        def on_datachannel(channel: RTCDataChannel) -> None:
            logger.info("Remote data channel announced: %s", channel.label)
            self._bind_channel(channel)
            if channel.readyState == "open":
                self._enqueue(DataChannelOpened(label=channel.label))

    @property
    def name(self) -> str:
        return "aiortc"

    @property
    def connection_state(self) -> PeerConnectionState:
        return _map_state(self._pc.connectionState)

    @property
    def data_channel_open(self) -> bool:
        return self._channel is not None and self._channel.readyState == "open"

    def on_event(self, handler: PeerEventHandler) -> None:
        self._handler = handler

    async def create_offer(self) -> str:
        offer = await self._pc.createOffer()
        await self._pc.setLocalDescription(offer)
        return self._pc.localDescription.sdp

    async def accept_offer(self, sdp: str) -> str:
        await self._pc.setRemoteDescription(RTCSessionDescription(sdp=sdp, type="offer"))
        answer = await self._pc.createAnswer()
        await self._pc.setLocalDescription(answer)
        return self._pc.localDescription.sdp

    async def set_remote_answer(self, sdp: str) -> None:
        await self._pc.setRemoteDescription(RTCSessionDescription(sdp=sdp, type="answer"))

    async def add_ice_candidate(
        self, candidate: str, sdp_mid: str | None, sdp_mline_index: int | None
    ) -> None:
        if not candidate:
            # End-of-candidates marker
            return
        sdp = candidate.split(":", 1)[1] if candidate.startswith("candidate:") else candidate
        ice = candidate_from_sdp(sdp)
        ice.sdpMid = sdp_mid
        ice.sdpMLineIndex = sdp_mline_index
        await self._pc.addIceCandidate(ice)

    def create_data_channel(self, label: str) -> None:
        channel = self._pc.createDataChannel(label)
        self._bind_channel(channel)
        self._enqueue(NegotiationNeeded())

    def send_data(self, data: str | bytes) -> bool:
        if not self.data_channel_open or self._channel is None:
            return False
        self._channel.send(data)
        return True

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._pc.close()
        self._queue.put_nowait(None)
        if asyncio.current_task() is self._dispatcher:
            # Closed from a handler; the loop exits on the sentinel
            return
        self._dispatcher.cancel()
        with contextlib.suppress(asyncio.CancelledError, Exception):
            await self._dispatcher

    # -- Internals --

    def _bind_channel(self, channel: RTCDataChannel) -> None:
        self._channel = channel
        label = channel.label

        @channel.on("open")
        def on_open() -> None:
            self._enqueue(DataChannelOpened(label=label))

        @channel.on("message")
        def on_message(message: str | bytes) -> None:
            self._enqueue(DataChannelMessage(label=label, data=message))

        @channel.on("close")
        def on_close() -> None:
            if self._channel is channel:
                self._channel = None
            self._enqueue(DataChannelClosed(label=label))

    def _enqueue(self, event: PeerEvent) -> None:
        if not self._closed:
            self._queue.put_nowait(event)

    async def _dispatch_loop(self) -> None:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            handler = self._handler
            if handler is None:
                continue
            try:
                result: Any = handler(event)
                if hasattr(result, "__await__"):
                    await result
            except Exception:
                logger.exception("Error in peer event handler for %s", type(event).__name__)


def _map_state(state: str) -> PeerConnectionState:
    try:
        return PeerConnectionState(state)
    except ValueError:
        return PeerConnectionState.NEW
