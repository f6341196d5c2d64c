"""Typed messages carried over the signaling WebSocket.

Inbound frames are parsed once at the boundary by
:func:`parse_signaling_message`. Known ``type`` values validate into their
model; unknown values become :class:`UnrecognizedSignalingMessage` rather
than falling through string comparisons.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated, Any, Literal

from pydantic import Field, TypeAdapter, ValidationError

from bridgekit.core.errors import MalformedMessageError
from bridgekit.models._wire import WireModel, decode_base64, load_json_object
from bridgekit.models.datachannel import DisplayConfirmedMessage


def _now_ms() -> int:
    return int(datetime.now(UTC).timestamp() * 1000)


# -- Negotiation --------------------------------------------------------------


class OfferMessage(WireModel):
    type: Literal["offer"] = "offer"
    sdp: str


class AnswerMessage(WireModel):
    type: Literal["answer"] = "answer"
    sdp: str


class IceCandidateMessage(WireModel):
    """A connectivity candidate in browser ``RTCIceCandidateInit`` form."""

    type: Literal["ice_candidate"] = "ice_candidate"
    candidate: str
    sdp_mid: str | None = Field(default=None, alias="sdpMid")
    sdp_mline_index: int | None = Field(default=None, alias="sdpMLineIndex")


# -- Rooms and audio fallback -------------------------------------------------


class JoinMessage(WireModel):
    type: Literal["join"] = "join"
    room: str | None = None


class LeaveMessage(WireModel):
    type: Literal["leave"] = "leave"
    room: str | None = None


class AudioStreamMessage(WireModel):
    """PCM audio streamed over signaling when the side channel is unavailable."""

    type: Literal["audio_stream"] = "audio_stream"
    data: str
    format: str = "pcm16"
    sample_rate: int = Field(default=16000, alias="sampleRate")

    def decode(self) -> bytes:
        return decode_base64(self.data)


InboundSignalingMessage = Annotated[
    OfferMessage
    | AnswerMessage
    | IceCandidateMessage
    | JoinMessage
    | LeaveMessage
    | AudioStreamMessage
    | DisplayConfirmedMessage,
    Field(discriminator="type"),
]

_inbound_adapter: TypeAdapter[InboundSignalingMessage] = TypeAdapter(InboundSignalingMessage)

INBOUND_TYPES = frozenset(
    {"offer", "answer", "ice_candidate", "join", "leave", "audio_stream", "display_confirmed"}
)


class UnrecognizedSignalingMessage(WireModel):
    """Well-formed JSON frame whose ``type`` the bridge does not handle."""

    type: str
    payload: dict[str, Any] = Field(default_factory=dict)


# -- Outbound control ---------------------------------------------------------


class WelcomeMessage(WireModel):
    type: Literal["welcome"] = "welcome"
    client_id: str = Field(alias="clientId")
    timestamp: int = Field(default_factory=_now_ms)


class JoinedMessage(WireModel):
    type: Literal["joined"] = "joined"
    room: str | None = None
    client_id: str = Field(alias="clientId")


class ErrorMessage(WireModel):
    type: Literal["error"] = "error"
    error: str


class StatusMessage(WireModel):
    """Session-level status reported to the client.

    ``component`` is one of ``peer``, ``provider``, ``display`` and
    ``status`` carries the component's state value.
    """

    type: Literal["status"] = "status"
    component: str
    status: str
    detail: str | None = None
    timestamp: int = Field(default_factory=_now_ms)


SignalingMessage = InboundSignalingMessage | UnrecognizedSignalingMessage


def parse_signaling_message(raw: str | bytes) -> SignalingMessage:
    """Parse one signaling frame.

    Raises:
        MalformedMessageError: The frame is not a JSON object with a string
            ``type``, or a known ``type`` failed validation.
    """
    data = load_json_object(raw)
    msg_type = data["type"]
    if msg_type not in INBOUND_TYPES:
        return UnrecognizedSignalingMessage(type=msg_type, payload=data)
    try:
        return _inbound_adapter.validate_python(data)
    except ValidationError as exc:
        raise MalformedMessageError(f"Invalid {msg_type} message") from exc
