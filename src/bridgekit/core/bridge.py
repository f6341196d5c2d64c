"""CompanionBridge - wires signaling, peer transport, provider and display acks."""

from __future__ import annotations

import copy
import logging
from typing import Any

from pydantic import ValidationError

from bridgekit.config import BridgeConfig
from bridgekit.core._helpers import deep_merge
from bridgekit.core.errors import DeliveryTimeoutError, ProviderConnectionError, VisionError
from bridgekit.core.sessions import SessionRegistry
from bridgekit.display.ack import DisplayAckProtocol
from bridgekit.models.enums import (
    PeerConnectionState,
    ProviderStatus,
    SessionState,
)
from bridgekit.models.session import PendingConfirmation
from bridgekit.models.signaling import StatusMessage
from bridgekit.providers.openai.config import VALID_VOICES, TurnDetectionConfig
from bridgekit.providers.vision.base import VisionAnalyzer
from bridgekit.realtime.events import (
    AudioDelta,
    ProviderConnected,
    ProviderDisconnected,
    ProviderErrorEvent,
    ProviderEvent,
    ProviderStatusChanged,
    ResponseDone,
    TextComplete,
    ToolCall,
    UserTranscript,
)
from bridgekit.realtime.provider import RealtimeProvider
from bridgekit.realtime.turn import TurnCoordinator
from bridgekit.signaling.channel import SignalingChannel
from bridgekit.webrtc.negotiator import PeerSessionNegotiator, PeerStatusEvent
from bridgekit.webrtc.router import DataPathRouter
from bridgekit.webrtc.transport import TransportFactory, create_transport_factory

logger = logging.getLogger("bridgekit.core.bridge")

VISION_FAILURE_TEXT = "Sorry, I could not analyze the image at this time."

_AUDIO_BUFFER_KEY = "response_audio"


def _check_temperature(value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, int | float) or not 0 <= value <= 2:
        raise ValueError("Temperature must be a number between 0 and 2")


class CompanionBridge:
    """Live bridge between wearable clients and a realtime AI provider.

    One :class:`~bridgekit.models.session.BridgeSession` exists per
    signaling client. Connecting a client creates its peer transport and
    its provider connection; disconnecting tears both down along with the
    pending display confirmations and the signaling registration, each
    step running even when an earlier one raises.

    Example:
        bridge = CompanionBridge(BridgeConfig.from_env())
        app = create_app(bridge)
    """

    def __init__(
        self,
        config: BridgeConfig,
        *,
        provider: RealtimeProvider | None = None,
        transport_factory: TransportFactory | None = None,
        vision: VisionAnalyzer | None = None,
        signaling: SignalingChannel | None = None,
    ) -> None:
        self.config = config
        self.sessions = SessionRegistry()
        self.signaling = signaling or SignalingChannel()

        if provider is None:
            from bridgekit.providers.openai.realtime import OpenAIRealtimeClient

            provider = OpenAIRealtimeClient(config.openai)
        if vision is None:
            from bridgekit.providers.openai.vision import OpenAIVisionAnalyzer

            vision = OpenAIVisionAnalyzer(api_key=config.openai.api_key, model=config.vision_model)
        self.provider = provider
        self.vision = vision

        self.negotiator = PeerSessionNegotiator(
            self.sessions,
            self.signaling,
            transport_factory or create_transport_factory(config),
            offer_timeout=config.offer_timeout,
        )
        self.acks = DisplayAckProtocol(self.sessions, timeout=config.display_ack_timeout)
        self.router = DataPathRouter(self.sessions, self.signaling, self.acks)
        self.turns = TurnCoordinator(self.sessions, self.provider)

        # Runtime session overrides applied to current and future sessions
        self._overrides: dict[str, Any] = {}
        self._last_errors: dict[str, str] = {}

        self.signaling.on_client_connected(self.start_session)
        self.signaling.on_client_disconnected(self.end_session)
        self.signaling.on_negotiation(self.negotiator.handle_signaling)
        self.signaling.on_audio_stream(self.router.handle_audio_stream)
        self.signaling.on_display_confirmed(self.router.handle_display_confirmed)
        self.negotiator.on_data_event(self.router.handle_data_event)
        self.negotiator.on_transport_closed(self.router.detach)
        self.negotiator.on_status(self._on_peer_status)
        self.router.on_audio(self.turns.append_audio)
        self.router.on_snapshot(self._on_snapshot)
        self.router.on_capture_snapshot(self._on_capture_snapshot)
        self.acks.on_timeout(self._on_delivery_timeout)
        self.provider.on_event(self.turns.handle_event)
        self.provider.on_event(self._on_provider_event)
        self.provider.set_tool_handler(self._run_tool)

    # -- Session lifecycle --

    async def start_session(self, client_id: str) -> None:
        """Create the peer transport and provider connection for a new client."""
        self.sessions.get_or_create(client_id)
        await self.negotiator.create_session(client_id)
        try:
            await self.provider.connect(client_id, overrides=copy.deepcopy(self._overrides))
        except ProviderConnectionError as exc:
            logger.error("Provider connection for %s failed: %s", client_id, exc)
            self._last_errors[client_id] = str(exc)
        logger.info("Session started for %s", client_id)

    async def end_session(self, client_id: str) -> None:
        """Tear a session down. Every step runs even if a previous one fails."""
        session = self.sessions.get(client_id)
        if session is None or session.state != SessionState.ACTIVE:
            return
        session.state = SessionState.CLOSING
        logger.info("Ending session %s", client_id)

        try:
            self.acks.cancel_session(session)
        except Exception:
            logger.exception("Failed to cancel display confirmations for %s", client_id)
        try:
            await self.negotiator.close_session(client_id)
        except Exception:
            logger.exception("Failed to close peer transport for %s", client_id)
        try:
            await self.provider.disconnect(client_id)
        except Exception:
            logger.exception("Failed to disconnect provider for %s", client_id)
        try:
            await self.signaling.disconnect(client_id)
        except Exception:
            logger.exception("Failed to remove %s from signaling", client_id)
        finally:
            self.sessions.remove(client_id)
            self._last_errors.pop(client_id, None)

    async def close(self) -> None:
        for session in self.sessions.all():
            await self.end_session(session.client_id)
        await self.signaling.close()
        await self.provider.close()
        await self.vision.close()

    # -- Operational commands --

    @property
    def instructions(self) -> str:
        return self._overrides.get("instructions", self.config.openai.instructions)

    def session_defaults(self) -> dict[str, Any]:
        """Effective session parameters for new sessions."""
        defaults = self.config.openai.session_payload()
        deep_merge(defaults, self._overrides)
        return defaults

    async def update_instructions(self, instructions: str) -> dict[str, bool]:
        return await self.update_session_config({"instructions": instructions})

    async def update_session_config(self, partial: dict[str, Any]) -> dict[str, bool]:
        """Merge *partial* into the runtime overrides and apply it to every session.

        Nested objects merge key by key. Raises :class:`ValueError` when the
        partial would leave the session parameters invalid; nothing is
        applied in that case.
        """
        self._validate_partial(partial)
        deep_merge(self._overrides, partial)
        results: dict[str, bool] = {}
        for session in self.sessions.all():
            results[session.client_id] = await self.provider.update_session_config(
                session.client_id, partial
            )
        logger.info("Session config updated (%s) for %d sessions", ", ".join(partial), len(results))
        return results

    async def set_voice(self, voice: str) -> dict[str, bool]:
        return await self.update_session_config({"voice": voice})

    async def set_temperature(self, temperature: float) -> dict[str, bool]:
        _check_temperature(temperature)
        return await self.update_session_config({"temperature": float(temperature)})

    def _validate_partial(self, partial: dict[str, Any]) -> None:
        if "voice" in partial and partial["voice"] not in VALID_VOICES:
            raise ValueError(f"Invalid voice. Valid options: {', '.join(VALID_VOICES)}")
        if "temperature" in partial:
            _check_temperature(partial["temperature"])
        update = partial.get("turn_detection")
        if update is None:
            return
        if not isinstance(update, dict):
            raise ValueError("turn_detection must be an object or null")
        current = self.session_defaults().get("turn_detection")
        if current is None and "type" not in update:
            raise ValueError("turn_detection needs a 'type' while turn detection is off")
        merged = dict(current or {})
        deep_merge(merged, update)
        try:
            TurnDetectionConfig.model_validate(merged)
        except ValidationError as exc:
            raise ValueError(f"Invalid turn_detection: {exc.errors()[0]['msg']}") from exc

    async def force_reply(self, client_id: str | None = None) -> dict[str, bool]:
        """Push commit and response creation for one or every session."""
        targets = [client_id] if client_id else [s.client_id for s in self.sessions.all()]
        return {cid: await self.turns.force_reply(cid) for cid in targets}

    async def send_text(self, client_id: str, text: str) -> str | None:
        message = await self.router.send_text(client_id, text)
        return message.message_id if message is not None else None

    def health(self) -> dict[str, Any]:
        sessions = []
        for session in self.sessions.all():
            provider_status = self.provider.status(session.client_id)
            sessions.append(
                {
                    "client_id": session.client_id,
                    "peer": {
                        "connection_state": session.peer_state.value,
                        "negotiation_state": session.negotiation_state.value,
                        "data_channel_open": session.data_channel_open,
                    },
                    "provider": {
                        "status": provider_status.value,
                        "connected": provider_status == ProviderStatus.CONNECTED,
                        "last_error": self._last_errors.get(session.client_id),
                    },
                    "turn_state": session.turn_state.value,
                    "pending_confirmations": self.acks.pending_count(session.client_id),
                }
            )
        peers_connected = sum(
            1 for s in sessions if s["peer"]["connection_state"] == PeerConnectionState.CONNECTED
        )
        providers_connected = sum(1 for s in sessions if s["provider"]["connected"])
        failed = any(s["provider"]["status"] == ProviderStatus.FAILED for s in sessions)
        return {
            "status": "degraded" if failed else "ok",
            "webrtc": {"sessions": len(sessions), "connected": peers_connected},
            "openai": {"connected": providers_connected},
            "signaling": {"clients": self.signaling.client_count},
            "sessions": sessions,
        }

    # -- Event handlers --

    async def _on_peer_status(self, event: PeerStatusEvent) -> None:
        detail = str(event.error) if event.error is not None else None
        await self._send_status(event.client_id, "peer", event.connection_state.value, detail)

        session = self.sessions.get(event.client_id)
        if (
            session is not None
            and self.config.open_data_channel
            and event.connection_state == PeerConnectionState.CONNECTED
            and not session.metadata.get("bridge_channel")
        ):
            session.metadata["bridge_channel"] = self.negotiator.open_data_channel(event.client_id)

    async def _on_provider_event(self, event: ProviderEvent) -> None:
        client_id = event.client_id
        session = self.sessions.get(client_id)
        if session is None:
            return

        if isinstance(event, TextComplete):
            if event.placeholder:
                logger.warning("Displaying transcript placeholder for %s", client_id)
            await self.router.send_text(client_id, event.text)
        elif isinstance(event, AudioDelta):
            buffer = session.metadata.setdefault(_AUDIO_BUFFER_KEY, bytearray())
            buffer.extend(event.audio)
        elif isinstance(event, ResponseDone):
            audio = session.metadata.pop(_AUDIO_BUFFER_KEY, None)
            if audio:
                await self.router.send_audio(client_id, bytes(audio))
        elif isinstance(event, ProviderStatusChanged):
            session.provider_status = event.status
            await self._send_status(client_id, "provider", event.status.value)
        elif isinstance(event, ProviderErrorEvent):
            self._last_errors[client_id] = f"{event.kind}: {event.message}"
            if event.terminal:
                await self._send_status(
                    client_id, "provider", ProviderStatus.FAILED.value, event.message
                )
        elif isinstance(event, UserTranscript):
            logger.info("User (%s): %s", client_id, event.text)
        elif isinstance(event, ProviderConnected):
            self._last_errors.pop(client_id, None)
        elif isinstance(event, ProviderDisconnected):
            logger.info("Provider disconnected for %s: %s", client_id, event.reason)

    async def _run_tool(self, call: ToolCall) -> dict[str, Any]:
        if call.name == "display_on_hud":
            text = call.arguments.get("text")
            if not isinstance(text, str) or not text:
                return {"success": False, "error": "Missing 'text' argument"}
            message = await self.router.send_text(call.client_id, text)
            if message is None:
                return {"success": False, "error": "No active session"}
            return {"success": True, "message": f"Displayed: {text}"}
        return {"success": False, "error": f"Unknown function: {call.name}"}

    async def _on_snapshot(
        self, client_id: str, image: bytes, mime: str, snapshot_id: str | None
    ) -> None:
        try:
            description = await self.vision.analyze(image, mime=mime)
        except VisionError as exc:
            logger.error("Snapshot %s analysis failed for %s: %s", snapshot_id, client_id, exc)
            description = VISION_FAILURE_TEXT
        if not description:
            description = VISION_FAILURE_TEXT
        await self.router.send_text(client_id, description)

    async def _on_capture_snapshot(self, client_id: str) -> None:
        logger.info("Snapshot capture command from %s", client_id)

    async def _on_delivery_timeout(
        self, client_id: str, pending: PendingConfirmation, error: DeliveryTimeoutError
    ) -> None:
        await self._send_status(client_id, "display", pending.status.value, str(error))

    async def _send_status(
        self, client_id: str, component: str, status: str, detail: str | None = None
    ) -> None:
        if self.signaling.is_connected(client_id):
            await self.signaling.send(
                client_id, StatusMessage(component=component, status=status, detail=detail)
            )
