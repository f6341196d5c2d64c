"""Realtime model sessions and turn coordination."""

from bridgekit.realtime.events import (
    TRANSCRIPT_PLACEHOLDER,
    AudioCommitted,
    AudioDelta,
    ProviderConnected,
    ProviderDisconnected,
    ProviderErrorEvent,
    ProviderEvent,
    ProviderStatusChanged,
    ResponseDone,
    ResponseStarted,
    SessionReady,
    SpeechStarted,
    SpeechStopped,
    TextComplete,
    TextDelta,
    ToolCall,
    UserTranscript,
)
from bridgekit.realtime.mock import MockCall, MockRealtimeProvider
from bridgekit.realtime.provider import RealtimeProvider, ToolHandler
from bridgekit.realtime.transcript import ConversationItem
from bridgekit.realtime.turn import TurnCoordinator

__all__ = [
    # ABCs
    "RealtimeProvider",
    "ToolHandler",
    # Coordination
    "ConversationItem",
    "TurnCoordinator",
    # Events
    "TRANSCRIPT_PLACEHOLDER",
    "AudioCommitted",
    "AudioDelta",
    "ProviderConnected",
    "ProviderDisconnected",
    "ProviderErrorEvent",
    "ProviderEvent",
    "ProviderStatusChanged",
    "ResponseDone",
    "ResponseStarted",
    "SessionReady",
    "SpeechStarted",
    "SpeechStopped",
    "TextComplete",
    "TextDelta",
    "ToolCall",
    "UserTranscript",
    # Mocks
    "MockCall",
    "MockRealtimeProvider",
]
