"""Tests for SignalingChannel."""

from __future__ import annotations

from typing import Any

import pytest

from bridgekit.core.errors import MalformedMessageError
from bridgekit.models.signaling import AudioStreamMessage, ErrorMessage, OfferMessage
from bridgekit.signaling.channel import SignalingChannel
from tests.conftest import FakeSocket


async def _connect(channel: SignalingChannel, client_id: str = "c1") -> FakeSocket:
    socket = FakeSocket()
    await channel.connect(socket, client_id)
    return socket


class TestConnectionLifecycle:
    async def test_connect_sends_welcome(self, signaling: SignalingChannel) -> None:
        socket = FakeSocket()
        client_id = await signaling.connect(socket)

        assert client_id.startswith("client_")
        welcome = socket.of_type("welcome")
        assert len(welcome) == 1
        assert welcome[0]["clientId"] == client_id
        assert signaling.is_connected(client_id)

    async def test_connect_and_disconnect_callbacks(self, signaling: SignalingChannel) -> None:
        connected: list[str] = []
        disconnected: list[str] = []
        signaling.on_client_connected(connected.append)
        signaling.on_client_disconnected(disconnected.append)

        socket = await _connect(signaling)
        await signaling.disconnect("c1")

        assert connected == ["c1"]
        assert disconnected == ["c1"]
        assert not socket.is_open
        assert signaling.client_count == 0

    async def test_disconnect_twice_reports_once(self, signaling: SignalingChannel) -> None:
        disconnected: list[str] = []
        signaling.on_client_disconnected(disconnected.append)
        await _connect(signaling)

        await signaling.disconnect("c1")
        await signaling.disconnect("c1")

        assert disconnected == ["c1"]

    async def test_serve_runs_until_hang_up(self, signaling: SignalingChannel) -> None:
        received: list[Any] = []
        signaling.on_negotiation(lambda cid, msg: received.append((cid, msg)))
        socket = FakeSocket()
        socket.feed({"type": "offer", "sdp": "v=0"})
        socket.hang_up()

        await signaling.serve(socket)

        assert len(received) == 1
        assert isinstance(received[0][1], OfferMessage)
        assert signaling.client_count == 0

    async def test_close_disconnects_everyone(self, signaling: SignalingChannel) -> None:
        a = await _connect(signaling, "a")
        b = await _connect(signaling, "b")

        await signaling.close()

        assert signaling.client_count == 0
        assert a.close_code == 1000
        assert b.close_code == 1000


class TestInboundRouting:
    async def test_negotiation_messages_dispatched(self, signaling: SignalingChannel) -> None:
        received: list[str] = []

        async def handler(client_id: str, message: Any) -> None:
            received.append(message.type)

        signaling.on_negotiation(handler)
        await _connect(signaling)

        await signaling.on_message("c1", '{"type": "offer", "sdp": "v=0"}')
        await signaling.on_message("c1", '{"type": "answer", "sdp": "v=0"}')
        await signaling.on_message("c1", '{"type": "ice_candidate", "candidate": "candidate:x"}')

        assert received == ["offer", "answer", "ice_candidate"]

    async def test_audio_stream_dispatched(self, signaling: SignalingChannel) -> None:
        received: list[AudioStreamMessage] = []
        signaling.on_audio_stream(lambda cid, msg: received.append(msg))
        await _connect(signaling)

        await signaling.on_message("c1", '{"type": "audio_stream", "data": "AAAA"}')

        assert len(received) == 1

    async def test_display_confirmed_dispatched(self, signaling: SignalingChannel) -> None:
        received: list[str] = []
        signaling.on_display_confirmed(lambda cid, msg: received.append(msg.message_id))
        socket = await _connect(signaling)

        await signaling.on_message(
            "c1", '{"type": "display_confirmed", "message_id": "m1", "device_id": "glasses"}'
        )

        assert received == ["m1"]
        assert socket.of_type("error") == []

    async def test_join_replies(self, signaling: SignalingChannel) -> None:
        socket = await _connect(signaling)

        await signaling.on_message("c1", '{"type": "join", "room": "lobby"}')

        joined = socket.of_type("joined")
        assert joined == [{"type": "joined", "room": "lobby", "clientId": "c1"}]

    @pytest.mark.parametrize(
        "raw",
        ["{broken", '{"no_type": true}', '{"type": "offer"}', b"\xff\xfe"],
    )
    async def test_malformed_gets_exactly_one_error(
        self, signaling: SignalingChannel, raw: str | bytes
    ) -> None:
        handled: list[Any] = []
        signaling.on_negotiation(lambda cid, msg: handled.append(msg))
        socket = await _connect(signaling)

        await signaling.on_message("c1", raw)

        assert len(socket.of_type("error")) == 1
        assert handled == []

    async def test_unknown_type_gets_error(self, signaling: SignalingChannel) -> None:
        socket = await _connect(signaling)

        await signaling.on_message("c1", '{"type": "teleport"}')

        assert socket.of_type("error") == [{"type": "error", "error": "Unknown message type: teleport"}]

    async def test_handler_rejection_gets_error(self, signaling: SignalingChannel) -> None:
        def handler(client_id: str, message: AudioStreamMessage) -> None:
            message.decode()

        signaling.on_audio_stream(handler)
        socket = await _connect(signaling)

        await signaling.on_message("c1", '{"type": "audio_stream", "data": "%%%"}')

        assert len(socket.of_type("error")) == 1

    async def test_handler_crash_is_contained(self, signaling: SignalingChannel) -> None:
        def handler(client_id: str, message: Any) -> None:
            raise RuntimeError("boom")

        signaling.on_negotiation(handler)
        socket = await _connect(signaling)

        await signaling.on_message("c1", '{"type": "offer", "sdp": "v=0"}')

        assert socket.of_type("error") == []
        assert signaling.is_connected("c1")

    async def test_only_sender_gets_error(self, signaling: SignalingChannel) -> None:
        a = await _connect(signaling, "a")
        b = await _connect(signaling, "b")

        await signaling.on_message("a", "garbage")

        assert len(a.of_type("error")) == 1
        assert b.of_type("error") == []


class TestOutbound:
    async def test_send_to_unknown_client(self, signaling: SignalingChannel) -> None:
        assert await signaling.send("nobody", ErrorMessage(error="x")) is False

    async def test_send_to_closed_socket(self, signaling: SignalingChannel) -> None:
        socket = await _connect(signaling)
        socket.open = False
        assert await signaling.send("c1", {"type": "ping"}) is False

    async def test_repeated_send_failures_drop_client(self, signaling: SignalingChannel) -> None:
        disconnected: list[str] = []
        signaling.on_client_disconnected(disconnected.append)
        socket = await _connect(signaling)
        socket.fail_sends = True

        for _ in range(3):
            await signaling.send("c1", {"type": "ping"})

        assert disconnected == ["c1"]
        assert socket.close_code == 1011

    async def test_broadcast_skips_excluded(self, signaling: SignalingChannel) -> None:
        a = await _connect(signaling, "a")
        b = await _connect(signaling, "b")

        count = await signaling.broadcast({"type": "notice"}, exclude_id="a")

        assert count == 1
        assert a.of_type("notice") == []
        assert len(b.of_type("notice")) == 1


def test_malformed_error_reason() -> None:
    err = MalformedMessageError("Invalid message format")
    assert err.reason == "Invalid message format"
    assert str(err) == "Invalid message format"
