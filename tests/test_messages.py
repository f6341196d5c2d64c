"""Tests for signaling and side-channel message parsing."""

from __future__ import annotations

import base64
import json

import pytest

from bridgekit.core.errors import MalformedMessageError
from bridgekit.models._wire import encode_wire
from bridgekit.models.datachannel import (
    AudioDataMessage,
    CaptureSnapshotMessage,
    DisplayConfirmedMessage,
    ModelTextMessage,
    SnapshotMessage,
    UnrecognizedDataMessage,
    parse_data_message,
)
from bridgekit.models.signaling import (
    AudioStreamMessage,
    IceCandidateMessage,
    JoinMessage,
    OfferMessage,
    UnrecognizedSignalingMessage,
    WelcomeMessage,
    parse_signaling_message,
)


class TestSignalingParsing:
    def test_offer(self) -> None:
        msg = parse_signaling_message('{"type": "offer", "sdp": "v=0"}')
        assert isinstance(msg, OfferMessage)
        assert msg.sdp == "v=0"

    def test_ice_candidate_uses_browser_field_names(self) -> None:
        raw = json.dumps(
            {
                "type": "ice_candidate",
                "candidate": "candidate:1 1 udp 2122260223 10.0.0.2 54321 typ host",
                "sdpMid": "0",
                "sdpMLineIndex": 0,
            }
        )
        msg = parse_signaling_message(raw)
        assert isinstance(msg, IceCandidateMessage)
        assert msg.sdp_mid == "0"
        assert msg.sdp_mline_index == 0
        assert msg.to_wire()["sdpMLineIndex"] == 0

    def test_join_without_room(self) -> None:
        msg = parse_signaling_message(b'{"type": "join"}')
        assert isinstance(msg, JoinMessage)
        assert msg.room is None

    def test_audio_stream_decodes(self) -> None:
        pcm = b"\x01\x00\x02\x00"
        raw = json.dumps({"type": "audio_stream", "data": base64.b64encode(pcm).decode()})
        msg = parse_signaling_message(raw)
        assert isinstance(msg, AudioStreamMessage)
        assert msg.decode() == pcm
        assert msg.sample_rate == 16000

    def test_display_confirmed_over_signaling(self) -> None:
        msg = parse_signaling_message('{"type": "display_confirmed", "message_id": "msg_7"}')
        assert isinstance(msg, DisplayConfirmedMessage)
        assert msg.message_id == "msg_7"

    def test_unknown_type_is_preserved(self) -> None:
        msg = parse_signaling_message('{"type": "dance", "moves": 3}')
        assert isinstance(msg, UnrecognizedSignalingMessage)
        assert msg.type == "dance"
        assert msg.payload["moves"] == 3

    @pytest.mark.parametrize(
        ("raw", "reason"),
        [
            ("not json", "Invalid message format"),
            ("[1, 2]", "Invalid message format"),
            ('{"sdp": "v=0"}', "Message is missing a 'type' field"),
            ('{"type": 5}', "Message is missing a 'type' field"),
            ('{"type": "offer"}', "Invalid offer message"),
        ],
    )
    def test_malformed(self, raw: str, reason: str) -> None:
        with pytest.raises(MalformedMessageError) as exc_info:
            parse_signaling_message(raw)
        assert exc_info.value.reason == reason

    def test_bad_base64_only_fails_on_decode(self) -> None:
        msg = parse_signaling_message('{"type": "audio_stream", "data": "%%%"}')
        assert isinstance(msg, AudioStreamMessage)
        with pytest.raises(MalformedMessageError):
            msg.decode()

    def test_welcome_serializes_camel_case(self) -> None:
        wire = json.loads(encode_wire(WelcomeMessage(client_id="client_1")))
        assert wire["type"] == "welcome"
        assert wire["clientId"] == "client_1"
        assert isinstance(wire["timestamp"], int)


class TestDataParsing:
    def test_audio_data(self) -> None:
        raw = json.dumps({"type": "audio_data", "data": base64.b64encode(b"abcd").decode()})
        msg = parse_data_message(raw)
        assert isinstance(msg, AudioDataMessage)
        assert msg.decode() == b"abcd"

    def test_snapshot(self) -> None:
        raw = json.dumps(
            {
                "type": "snapshot",
                "data_base64": base64.b64encode(b"\xff\xd8jpeg").decode(),
                "id": "snap-1",
            }
        )
        msg = parse_data_message(raw)
        assert isinstance(msg, SnapshotMessage)
        assert msg.decode() == b"\xff\xd8jpeg"
        assert msg.mime == "image/jpeg"

    def test_capture_snapshot(self) -> None:
        assert isinstance(parse_data_message('{"type": "capture_snapshot"}'), CaptureSnapshotMessage)

    def test_display_confirmed(self) -> None:
        msg = parse_data_message('{"type": "display_confirmed", "message_id": "msg_1"}')
        assert isinstance(msg, DisplayConfirmedMessage)
        assert msg.message_id == "msg_1"
        assert msg.status == "displayed"

    def test_unknown(self) -> None:
        assert isinstance(parse_data_message('{"type": "ping"}'), UnrecognizedDataMessage)

    def test_model_text_wire_shape(self) -> None:
        wire = ModelTextMessage(
            message_id="msg_1", conversation_id="conv_1", seq=1, text="Hi"
        ).to_wire()
        assert wire["type"] == "model_text"
        assert wire["requires_confirmation"] is True
        assert wire["seq"] == 1
