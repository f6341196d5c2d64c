"""Side-channel demultiplexing and dual-path outbound delivery."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from bridgekit.core.errors import MalformedMessageError
from bridgekit.core.sessions import SessionRegistry
from bridgekit.display.ack import DisplayAckProtocol
from bridgekit.models._wire import encode_wire
from bridgekit.models.datachannel import (
    BINARY_SNAPSHOT_THRESHOLD,
    AudioDataMessage,
    AudioResponseAvailableMessage,
    CaptureSnapshotMessage,
    DisplayConfirmedMessage,
    ModelTextMessage,
    SnapshotMessage,
    UnrecognizedDataMessage,
    parse_data_message,
)
from bridgekit.models.signaling import AudioStreamMessage, ErrorMessage
from bridgekit.signaling.channel import SignalingChannel
from bridgekit.webrtc.negotiator import DataEvent
from bridgekit.webrtc.transport import (
    DataChannelClosed,
    DataChannelMessage,
    DataChannelOpened,
    PeerTransport,
)

logger = logging.getLogger("bridgekit.webrtc.router")

AudioCallback = Callable[[str, bytes], Any]
SnapshotCallback = Callable[[str, bytes, str, str | None], Any]
CaptureCallback = Callable[[str], Any]


class DataPathRouter:
    """Routes payloads between the peer side channel and the bridge.

    Inbound frames are classified by ``type``: ``audio_data`` is decoded and
    forwarded to the audio subscribers in arrival order, ``snapshot`` goes to
    the snapshot subscribers, ``capture_snapshot`` to the capture
    subscribers and ``display_confirmed`` to :class:`DisplayAckProtocol`.
    Raw binary frames are treated as PCM audio, or as an image when larger
    than ``BINARY_SNAPSHOT_THRESHOLD`` bytes.

    Outbound text is delivered at least once over both the side channel and
    the signaling socket. The side channel may not be open yet when the
    first response arrives, and duplicates are harmless because the device
    confirms by ``message_id``.
    """

    def __init__(
        self,
        sessions: SessionRegistry,
        signaling: SignalingChannel,
        acks: DisplayAckProtocol,
    ) -> None:
        self._sessions = sessions
        self._signaling = signaling
        self._acks = acks
        self._paths: dict[str, PeerTransport] = {}
        self._audio_callbacks: list[AudioCallback] = []
        self._snapshot_callbacks: list[SnapshotCallback] = []
        self._capture_callbacks: list[CaptureCallback] = []

    # -- Callback registration --

    def on_audio(self, callback: AudioCallback) -> None:
        self._audio_callbacks.append(callback)

    def on_snapshot(self, callback: SnapshotCallback) -> None:
        self._snapshot_callbacks.append(callback)

    def on_capture_snapshot(self, callback: CaptureCallback) -> None:
        self._capture_callbacks.append(callback)

    # -- Data path handles --

    def attach(self, client_id: str) -> bool:
        """Bind the session's current transport as the data path for *client_id*."""
        session = self._sessions.get(client_id)
        if session is None or session.transport is None:
            return False
        self._paths[client_id] = session.transport
        logger.info("Data path attached for %s", client_id)
        return True

    def detach(self, client_id: str) -> None:
        if self._paths.pop(client_id, None) is not None:
            logger.info("Data path detached for %s", client_id)

    def path_for(self, client_id: str) -> PeerTransport | None:
        return self._paths.get(client_id)

    # -- Inbound --

    async def handle_data_event(self, client_id: str, event: DataEvent) -> None:
        """Entry point for :meth:`PeerSessionNegotiator.on_data_event`."""
        if isinstance(event, DataChannelOpened):
            self.attach(client_id)
        elif isinstance(event, DataChannelClosed):
            self.detach(client_id)
        elif isinstance(event, DataChannelMessage):
            await self.handle_data_message(client_id, event.data)

    async def handle_data_message(self, client_id: str, data: str | bytes) -> None:
        if isinstance(data, bytes):
            logger.debug("<- %s binary size=%d", client_id, len(data))
            if len(data) > BINARY_SNAPSHOT_THRESHOLD:
                await self._fire(self._snapshot_callbacks, client_id, data, "image/jpeg", None)
            else:
                await self._fire(self._audio_callbacks, client_id, data)
            return

        try:
            message = parse_data_message(data)
            logger.debug("<- %s type=%s size=%d", client_id, message.type, len(data))
            if isinstance(message, AudioDataMessage):
                await self._fire(self._audio_callbacks, client_id, message.decode())
            elif isinstance(message, SnapshotMessage):
                image = message.decode()
                logger.info("Snapshot %s from %s (%d bytes)", message.id, client_id, len(image))
                await self._fire(self._snapshot_callbacks, client_id, image, message.mime, message.id)
            elif isinstance(message, CaptureSnapshotMessage):
                await self._fire(self._capture_callbacks, client_id)
            elif isinstance(message, DisplayConfirmedMessage):
                await self.handle_display_confirmed(client_id, message)
            elif isinstance(message, UnrecognizedDataMessage):
                logger.warning("Unknown side-channel message type from %s: %s", client_id, message.type)
        except MalformedMessageError as exc:
            logger.warning("Malformed side-channel message from %s: %s", client_id, exc.reason)
            self._send_on_path(client_id, encode_wire(ErrorMessage(error=exc.reason)))

    async def handle_display_confirmed(self, client_id: str, message: DisplayConfirmedMessage) -> None:
        await self._acks.confirm(client_id, message.message_id)

    async def handle_audio_stream(self, client_id: str, message: AudioStreamMessage) -> None:
        """Audio streamed over signaling when the side channel is unavailable."""
        audio = message.decode()
        await self._fire(self._audio_callbacks, client_id, audio)

    # -- Outbound --

    async def send_text(self, client_id: str, text: str) -> ModelTextMessage | None:
        """Send *text* through the display-ack protocol over both paths."""

        async def transmit(message: ModelTextMessage) -> bool:
            via_peer = self._send_on_path(client_id, encode_wire(message))
            via_signaling = await self._signaling.send(client_id, message)
            logger.info(
                "Text %s to %s (peer=%s, signaling=%s)",
                message.message_id,
                client_id,
                via_peer,
                via_signaling,
            )
            return via_peer or via_signaling

        return await self._acks.send(client_id, text, transmit)

    async def send_audio(self, client_id: str, audio: bytes) -> bool:
        """Announce that response audio of ``len(audio)`` bytes is available."""
        notice = AudioResponseAvailableMessage(size=len(audio))
        if self._send_on_path(client_id, encode_wire(notice)):
            return True
        return await self._signaling.send(client_id, notice)

    # -- Helpers --

    def _send_on_path(self, client_id: str, payload: str) -> bool:
        transport = self._paths.get(client_id)
        if transport is None:
            return False
        try:
            sent = transport.send_data(payload)
        except Exception:
            logger.warning("Side-channel send to %s failed", client_id, exc_info=True)
            return False
        if sent:
            logger.debug("-> %s side channel size=%d", client_id, len(payload))
        return sent

    async def _fire(self, callbacks: list[Any], client_id: str, *args: Any) -> None:
        for cb in callbacks:
            try:
                result = cb(client_id, *args)
                if hasattr(result, "__await__"):
                    await result
            except Exception:
                logger.exception("Error in data path callback for %s", client_id)
