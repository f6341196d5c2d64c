"""Typed messages carried over the peer transport's side channel."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated, Any, Literal

from pydantic import Field, TypeAdapter, ValidationError

from bridgekit.core.errors import MalformedMessageError
from bridgekit.models._wire import WireModel, decode_base64, load_json_object

# Raw binary frames larger than this are treated as snapshot images.
BINARY_SNAPSHOT_THRESHOLD = 10_000


def _now_ms() -> int:
    return int(datetime.now(UTC).timestamp() * 1000)


class AudioDataMessage(WireModel):
    type: Literal["audio_data"] = "audio_data"
    data: str
    format: str = "pcm16"
    sample_rate: int = Field(default=16000, alias="sampleRate")
    channels: int = 1
    timestamp: int | None = None

    def decode(self) -> bytes:
        return decode_base64(self.data)


class SnapshotMessage(WireModel):
    type: Literal["snapshot"] = "snapshot"
    data_base64: str
    id: str | None = None
    mime: str = "image/jpeg"

    def decode(self) -> bytes:
        return decode_base64(self.data_base64)


class CaptureSnapshotMessage(WireModel):
    type: Literal["capture_snapshot"] = "capture_snapshot"


class DisplayConfirmedMessage(WireModel):
    type: Literal["display_confirmed"] = "display_confirmed"
    message_id: str
    status: str = "displayed"
    timestamp: int | None = None
    device_id: str | None = None


class ModelTextMessage(WireModel):
    """Text envelope the device must confirm with ``display_confirmed``."""

    type: Literal["model_text"] = "model_text"
    message_id: str
    conversation_id: str
    seq: int
    ts: int = Field(default_factory=_now_ms)
    text: str
    requires_confirmation: bool = True


class AudioResponseAvailableMessage(WireModel):
    type: Literal["audio_response_available"] = "audio_response_available"
    size: int
    ts: int = Field(default_factory=_now_ms)


InboundDataMessage = Annotated[
    AudioDataMessage | SnapshotMessage | CaptureSnapshotMessage | DisplayConfirmedMessage,
    Field(discriminator="type"),
]

_inbound_adapter: TypeAdapter[InboundDataMessage] = TypeAdapter(InboundDataMessage)

INBOUND_TYPES = frozenset({"audio_data", "snapshot", "capture_snapshot", "display_confirmed"})


class UnrecognizedDataMessage(WireModel):
    type: str
    payload: dict[str, Any] = Field(default_factory=dict)


DataMessage = InboundDataMessage | UnrecognizedDataMessage


def parse_data_message(raw: str | bytes) -> DataMessage:
    """Parse one JSON side-channel frame.

    Raises:
        MalformedMessageError: The frame is not valid JSON or failed
            validation for its ``type``.
    """
    data = load_json_object(raw)
    msg_type = data["type"]
    if msg_type not in INBOUND_TYPES:
        return UnrecognizedDataMessage(type=msg_type, payload=data)
    try:
        return _inbound_adapter.validate_python(data)
    except ValidationError as exc:
        raise MalformedMessageError(f"Invalid {msg_type} message") from exc
