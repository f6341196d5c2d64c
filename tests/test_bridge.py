"""Tests for CompanionBridge wiring and session lifecycle."""

from __future__ import annotations

import asyncio
import base64
import json
from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest

from bridgekit.config import BridgeConfig
from bridgekit.core.bridge import VISION_FAILURE_TEXT, CompanionBridge
from bridgekit.core.errors import ProviderConnectionError
from bridgekit.models.enums import (
    NegotiationState,
    PeerConnectionState,
    ProviderErrorKind,
    SessionState,
)
from bridgekit.providers.vision.mock import MockVisionAnalyzer
from bridgekit.realtime.events import AudioDelta, ResponseDone
from bridgekit.realtime.mock import MockRealtimeProvider
from bridgekit.webrtc.mock import MockPeerTransport
from tests.conftest import FakeSocket


@pytest.fixture
def provider() -> MockRealtimeProvider:
    return MockRealtimeProvider()


@pytest.fixture
def vision() -> MockVisionAnalyzer:
    return MockVisionAnalyzer(["A coffee cup on a desk."])


@pytest.fixture
async def bridge(
    bridge_config: BridgeConfig,
    provider: MockRealtimeProvider,
    vision: MockVisionAnalyzer,
    transport_factory: Callable[[], MockPeerTransport],
) -> AsyncIterator[CompanionBridge]:
    bridge = CompanionBridge(
        bridge_config,
        provider=provider,
        transport_factory=transport_factory,
        vision=vision,
    )
    yield bridge
    await bridge.close()


async def _join(bridge: CompanionBridge, client_id: str = "c1") -> FakeSocket:
    socket = FakeSocket()
    await bridge.signaling.connect(socket, client_id)
    return socket


async def _open_data_path(transport: MockPeerTransport) -> None:
    await transport.simulate_connection_state(PeerConnectionState.CONNECTED)
    await transport.simulate_data_channel_open()


class TestSessionLifecycle:
    async def test_connect_creates_transport_and_provider_session(
        self,
        bridge: CompanionBridge,
        provider: MockRealtimeProvider,
        transports: list[MockPeerTransport],
    ) -> None:
        socket = await _join(bridge)

        session = bridge.sessions.get("c1")
        assert session is not None
        assert session.transport is transports[0]
        assert provider.calls_to("connect")[0].args["client_id"] == "c1"
        assert len(socket.of_type("welcome")) == 1
        assert socket.of_type("status")[0]["component"] == "peer"

    async def test_offer_answer_through_signaling(
        self, bridge: CompanionBridge, transports: list[MockPeerTransport]
    ) -> None:
        socket = await _join(bridge)

        await bridge.signaling.on_message("c1", json.dumps({"type": "offer", "sdp": "v=0 client"}))

        assert len(socket.of_type("answer")) == 1
        assert bridge.sessions.get("c1").negotiation_state == NegotiationState.STABLE

    async def test_client_disconnect_tears_everything_down(
        self,
        bridge: CompanionBridge,
        provider: MockRealtimeProvider,
        transports: list[MockPeerTransport],
    ) -> None:
        await _join(bridge)
        session = bridge.sessions.get("c1")
        await bridge.send_text("c1", "pending")

        await bridge.signaling.disconnect("c1")

        assert transports[0].closed
        assert len(provider.calls_to("disconnect")) == 1
        assert bridge.sessions.get("c1") is None
        assert session.state == SessionState.CLOSED
        assert session.pending_confirmations == {}
        assert bridge.router.path_for("c1") is None

    async def test_teardown_continues_when_a_step_fails(
        self,
        bridge: CompanionBridge,
        provider: MockRealtimeProvider,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        socket = await _join(bridge)

        async def broken_close(peer_id: str) -> None:
            raise RuntimeError("transport wedged")

        monkeypatch.setattr(bridge.negotiator, "close_session", broken_close)

        await bridge.end_session("c1")

        assert len(provider.calls_to("disconnect")) == 1
        assert not socket.is_open
        assert bridge.sessions.get("c1") is None

    async def test_end_session_is_idempotent(
        self, bridge: CompanionBridge, provider: MockRealtimeProvider
    ) -> None:
        await _join(bridge)

        await bridge.end_session("c1")
        await bridge.end_session("c1")

        assert len(provider.calls_to("disconnect")) == 1

    async def test_provider_failure_keeps_session(
        self, bridge: CompanionBridge, provider: MockRealtimeProvider
    ) -> None:
        provider.fail_connect = ProviderConnectionError(
            "Authentication rejected (401)", kind=ProviderErrorKind.AUTHENTICATION
        )

        await _join(bridge)

        assert bridge.sessions.get("c1") is not None
        health = bridge.health()
        assert health["status"] == "degraded"
        assert health["sessions"][0]["provider"]["last_error"] == "Authentication rejected (401)"


class TestModelOutput:
    async def test_response_text_reaches_both_paths(
        self,
        bridge: CompanionBridge,
        provider: MockRealtimeProvider,
        transports: list[MockPeerTransport],
    ) -> None:
        socket = await _join(bridge)
        await _open_data_path(transports[0])

        await provider.simulate_response("c1", "Turn left at the corner.")

        via_signaling = socket.of_type("model_text")
        via_peer = [json.loads(d) for d in transports[0].sent_data]
        assert [m["text"] for m in via_signaling] == ["Turn left at the corner."]
        assert [m["type"] for m in via_peer] == ["model_text"]

    async def test_display_tool_sends_text_and_continues(
        self, bridge: CompanionBridge, provider: MockRealtimeProvider
    ) -> None:
        socket = await _join(bridge)

        await provider.simulate_tool_call("c1", "call_1", "display_on_hud", {"text": "Hi there"})

        assert [m["text"] for m in socket.of_type("model_text")] == ["Hi there"]
        assert provider.tool_results == [
            ("c1", "call_1", {"success": True, "message": "Displayed: Hi there"})
        ]
        assert len(provider.calls_to("create_response")) == 1

    async def test_unknown_tool(self, bridge: CompanionBridge, provider: MockRealtimeProvider) -> None:
        await _join(bridge)

        await provider.simulate_tool_call("c1", "call_2", "order_pizza", {})

        assert provider.tool_results[0][2] == {
            "success": False,
            "error": "Unknown function: order_pizza",
        }

    async def test_response_audio_is_announced(
        self, bridge: CompanionBridge, provider: MockRealtimeProvider
    ) -> None:
        socket = await _join(bridge)

        await provider.simulate(AudioDelta(client_id="c1", audio=b"\x00" * 100))
        await provider.simulate(AudioDelta(client_id="c1", audio=b"\x00" * 60))
        await provider.simulate(ResponseDone(client_id="c1"))

        notices = socket.of_type("audio_response_available")
        assert [n["size"] for n in notices] == [160]

    async def test_terminal_provider_error_reported(
        self, bridge: CompanionBridge, provider: MockRealtimeProvider
    ) -> None:
        socket = await _join(bridge)

        await provider.simulate_error("c1", ProviderErrorKind.MAX_RECONNECTS, "gave up", terminal=True)

        status = [s for s in socket.of_type("status") if s["component"] == "provider"]
        assert status[-1]["status"] == "failed"
        assert status[-1]["detail"] == "gave up"

    async def test_delivery_timeout_reported(
        self, bridge: CompanionBridge, provider: MockRealtimeProvider
    ) -> None:
        socket = await _join(bridge)

        await provider.simulate_text_complete("c1", "Nobody confirms this")
        await asyncio.sleep(0.1)

        display = [s for s in socket.of_type("status") if s["component"] == "display"]
        assert len(display) == 1
        assert display[0]["status"] == "timed_out"

    async def test_confirmation_over_signaling_clears_pending(self, bridge: CompanionBridge) -> None:
        socket = await _join(bridge)
        message_id = await bridge.send_text("c1", "Confirmed without a side channel")
        assert bridge.acks.pending_count("c1") == 1

        await bridge.signaling.on_message(
            "c1", json.dumps({"type": "display_confirmed", "message_id": message_id})
        )
        await asyncio.sleep(0.1)

        assert bridge.acks.pending_count("c1") == 0
        assert socket.of_type("error") == []
        assert [s for s in socket.of_type("status") if s["component"] == "display"] == []


class TestInboundMedia:
    async def test_data_channel_audio_reaches_provider(
        self,
        bridge: CompanionBridge,
        provider: MockRealtimeProvider,
        transports: list[MockPeerTransport],
    ) -> None:
        await _join(bridge)
        await _open_data_path(transports[0])

        frame = json.dumps({"type": "audio_data", "data": base64.b64encode(b"\x01\x02").decode()})
        await transports[0].simulate_message(frame)

        assert provider.sent_audio == [("c1", b"\x01\x02")]

    async def test_signaling_audio_fallback(
        self, bridge: CompanionBridge, provider: MockRealtimeProvider
    ) -> None:
        await _join(bridge)

        frame = json.dumps({"type": "audio_stream", "data": base64.b64encode(b"pcm").decode()})
        await bridge.signaling.on_message("c1", frame)

        assert provider.sent_audio == [("c1", b"pcm")]

    async def test_snapshot_described(
        self,
        bridge: CompanionBridge,
        vision: MockVisionAnalyzer,
        transports: list[MockPeerTransport],
    ) -> None:
        socket = await _join(bridge)
        await _open_data_path(transports[0])

        frame = json.dumps(
            {"type": "snapshot", "data_base64": base64.b64encode(b"jpeg").decode(), "id": "s1"}
        )
        await transports[0].simulate_message(frame)

        assert vision.images[0][0] == b"jpeg"
        assert [m["text"] for m in socket.of_type("model_text")] == ["A coffee cup on a desk."]

    async def test_snapshot_failure_sends_apology(
        self,
        bridge: CompanionBridge,
        vision: MockVisionAnalyzer,
        transports: list[MockPeerTransport],
    ) -> None:
        vision.fail = True
        socket = await _join(bridge)
        await _open_data_path(transports[0])

        await transports[0].simulate_message(b"\xff" * 20_000)

        assert [m["text"] for m in socket.of_type("model_text")] == [VISION_FAILURE_TEXT]


class TestOperationalCommands:
    async def test_instructions_apply_to_live_and_future_sessions(
        self, bridge: CompanionBridge, provider: MockRealtimeProvider
    ) -> None:
        await _join(bridge, "a")

        results = await bridge.update_instructions("Answer in five words.")
        await _join(bridge, "b")

        assert results == {"a": True}
        assert bridge.instructions == "Answer in five words."
        assert provider.session_config("a")["instructions"] == "Answer in five words."
        connect_b = [c for c in provider.calls_to("connect") if c.args["client_id"] == "b"][0]
        assert connect_b.args["overrides"] == {"instructions": "Answer in five words."}

    async def test_invalid_voice_rejected(self, bridge: CompanionBridge) -> None:
        with pytest.raises(ValueError, match="Invalid voice"):
            await bridge.set_voice("robot")

    @pytest.mark.parametrize("value", [-0.1, 2.5, True])
    async def test_invalid_temperature_rejected(self, bridge: CompanionBridge, value: Any) -> None:
        with pytest.raises(ValueError):
            await bridge.set_temperature(value)

    async def test_session_defaults_reflect_overrides(self, bridge: CompanionBridge) -> None:
        await bridge.set_voice("nova")
        await bridge.set_temperature(1.1)

        defaults = bridge.session_defaults()
        assert defaults["voice"] == "nova"
        assert defaults["temperature"] == 1.1

    async def test_nested_partials_merge_into_defaults(
        self, bridge: CompanionBridge, provider: MockRealtimeProvider
    ) -> None:
        await _join(bridge, "a")

        await bridge.update_session_config({"turn_detection": {"threshold": 0.5}})
        await bridge.update_session_config({"turn_detection": {"silence_duration_ms": 800}})
        await _join(bridge, "b")

        turn_detection = bridge.session_defaults()["turn_detection"]
        assert turn_detection["type"] == "server_vad"
        assert turn_detection["threshold"] == 0.5
        assert turn_detection["silence_duration_ms"] == 800
        assert turn_detection["prefix_padding_ms"] == 300
        assert provider.session_config("a")["turn_detection"] == {
            "threshold": 0.5,
            "silence_duration_ms": 800,
        }
        connect_b = [c for c in provider.calls_to("connect") if c.args["client_id"] == "b"][0]
        assert connect_b.args["overrides"] == {
            "turn_detection": {"threshold": 0.5, "silence_duration_ms": 800}
        }

    async def test_untyped_turn_detection_rejected_when_disabled(
        self, bridge: CompanionBridge, provider: MockRealtimeProvider
    ) -> None:
        await _join(bridge)
        await bridge.update_session_config({"turn_detection": None})

        with pytest.raises(ValueError, match="needs a 'type'"):
            await bridge.update_session_config({"turn_detection": {"threshold": 0.5}})

        assert bridge.session_defaults()["turn_detection"] is None
        assert len(provider.calls_to("update_session_config")) == 1

    async def test_turn_detection_reenabled_with_type(self, bridge: CompanionBridge) -> None:
        await bridge.update_session_config({"turn_detection": None})

        await bridge.update_session_config(
            {"turn_detection": {"type": "server_vad", "threshold": 0.4}}
        )

        turn_detection = bridge.session_defaults()["turn_detection"]
        assert turn_detection["type"] == "server_vad"
        assert turn_detection["threshold"] == 0.4

    @pytest.mark.parametrize(
        "partial",
        [
            {"turn_detection": {"threshold": 1.5}},
            {"turn_detection": {"type": "push_to_talk"}},
            {"turn_detection": "server_vad"},
            {"voice": "robot"},
            {"temperature": "warm"},
        ],
    )
    async def test_invalid_partial_rejected(
        self, bridge: CompanionBridge, partial: dict[str, Any]
    ) -> None:
        before = bridge.session_defaults()

        with pytest.raises(ValueError):
            await bridge.update_session_config(partial)

        assert bridge.session_defaults() == before

    async def test_force_reply_all_sessions(
        self, bridge: CompanionBridge, provider: MockRealtimeProvider
    ) -> None:
        await _join(bridge, "a")
        await _join(bridge, "b")

        results = await bridge.force_reply()

        assert results == {"a": True, "b": True}
        assert len(provider.calls_to("create_response")) == 2

    async def test_force_reply_single_session(
        self, bridge: CompanionBridge, provider: MockRealtimeProvider
    ) -> None:
        await _join(bridge, "a")
        await _join(bridge, "b")

        assert await bridge.force_reply("b") == {"b": True}
        assert provider.calls_to("create_response")[0].args["client_id"] == "b"

    async def test_health(self, bridge: CompanionBridge, transports: list[MockPeerTransport]) -> None:
        await _join(bridge)
        await transports[0].simulate_connection_state(PeerConnectionState.CONNECTED)

        health = bridge.health()

        assert health["status"] == "ok"
        assert health["webrtc"] == {"sessions": 1, "connected": 1}
        assert health["signaling"] == {"clients": 1}
        assert health["sessions"][0]["client_id"] == "c1"


class TestBridgeDataChannel:
    async def test_bridge_channel_opened_when_connected(
        self,
        bridge_config: BridgeConfig,
        provider: MockRealtimeProvider,
        vision: MockVisionAnalyzer,
        transport_factory: Callable[[], MockPeerTransport],
        transports: list[MockPeerTransport],
        advance: Callable[..., Any],
    ) -> None:
        config = bridge_config.model_copy(update={"open_data_channel": True})
        bridge = CompanionBridge(
            config, provider=provider, transport_factory=transport_factory, vision=vision
        )
        socket = await _join(bridge)
        await bridge.signaling.on_message("c1", json.dumps({"type": "offer", "sdp": "v=0"}))

        await transports[0].simulate_connection_state(PeerConnectionState.CONNECTED)
        await advance()

        assert transports[0].calls_to("create_data_channel")[0].args["label"] == "bridge"
        assert len(socket.of_type("offer")) == 1
        await bridge.close()
