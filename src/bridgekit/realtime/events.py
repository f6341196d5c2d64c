"""Normalized events emitted by realtime provider clients."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from bridgekit.models.enums import ProviderErrorKind, ProviderStatus

TRANSCRIPT_PLACEHOLDER = "[No transcript available]"


def _utcnow() -> datetime:
    """Get current UTC time (timezone-aware)."""
    return datetime.now(UTC)


@dataclass(frozen=True)
class ProviderConnected:
    client_id: str
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class ProviderDisconnected:
    client_id: str
    reason: str = ""
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class ProviderStatusChanged:
    client_id: str
    status: ProviderStatus
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class SessionReady:
    """The provider acknowledged a ``session.update``."""

    client_id: str
    session: dict[str, Any] = field(default_factory=dict)
    """Session object echoed by the provider."""

    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class SpeechStarted:
    client_id: str
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class SpeechStopped:
    client_id: str
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class AudioCommitted:
    client_id: str
    item_id: str | None = None
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class ResponseStarted:
    client_id: str
    response_id: str | None = None
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class ResponseDone:
    client_id: str
    response_id: str | None = None
    status: str = "completed"
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class TextDelta:
    client_id: str
    text: str
    response_id: str | None = None
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class TextComplete:
    """Final text of one response, reconciled from deltas and completion events."""

    client_id: str
    text: str
    response_id: str | None = None

    placeholder: bool = False
    """True when no transcript was available and ``text`` is a failure marker."""

    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class AudioDelta:
    client_id: str
    audio: bytes
    response_id: str | None = None
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class UserTranscript:
    """Transcription of the user's committed audio."""

    client_id: str
    text: str
    item_id: str | None = None
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class ToolCall:
    client_id: str
    call_id: str
    name: str
    arguments: dict[str, Any]
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class ProviderErrorEvent:
    client_id: str
    kind: ProviderErrorKind
    message: str

    terminal: bool = False
    """True when the connection will not be retried without operator action."""

    code: str | None = None
    timestamp: datetime = field(default_factory=_utcnow)


ProviderEvent = (
    ProviderConnected
    | ProviderDisconnected
    | ProviderStatusChanged
    | SessionReady
    | SpeechStarted
    | SpeechStopped
    | AudioCommitted
    | ResponseStarted
    | ResponseDone
    | TextDelta
    | TextComplete
    | AudioDelta
    | UserTranscript
    | ToolCall
    | ProviderErrorEvent
)
