"""bridgekit - Real-time bridge between wearable clients and a realtime AI model."""

from bridgekit._version import __version__
from bridgekit.config import DEFAULT_ICE_SERVERS, BridgeConfig
from bridgekit.core.bridge import CompanionBridge
from bridgekit.core.errors import (
    BridgeError,
    ConfigurationError,
    DeliveryTimeoutError,
    MalformedMessageError,
    NegotiationError,
    ProviderConnectionError,
    TranscriptMissingError,
    VisionError,
)
from bridgekit.core.sessions import SessionRegistry
from bridgekit.display.ack import DisplayAckProtocol
from bridgekit.models.enums import (
    DeliveryStatus,
    NegotiationState,
    PeerConnectionState,
    ProviderErrorKind,
    ProviderStatus,
    SessionState,
    TurnState,
)
from bridgekit.models.session import BridgeSession, PendingConfirmation
from bridgekit.providers.openai.config import (
    OpenAIRealtimeConfig,
    ReconnectPolicy,
    TurnDetectionConfig,
)
from bridgekit.providers.vision.base import VisionAnalyzer
from bridgekit.providers.vision.mock import MockVisionAnalyzer
from bridgekit.realtime.mock import MockRealtimeProvider
from bridgekit.realtime.provider import RealtimeProvider, ToolHandler
from bridgekit.realtime.turn import TurnCoordinator
from bridgekit.signaling.channel import SignalingChannel, SignalingSocket, WebsocketsSocket
from bridgekit.webrtc.mock import MockPeerTransport
from bridgekit.webrtc.negotiator import PeerSessionNegotiator, PeerStatusEvent
from bridgekit.webrtc.router import DataPathRouter
from bridgekit.webrtc.transport import PeerTransport, create_transport_factory

__all__ = [
    "__version__",
    # Orchestration
    "CompanionBridge",
    "SessionRegistry",
    # Configuration
    "BridgeConfig",
    "DEFAULT_ICE_SERVERS",
    "OpenAIRealtimeConfig",
    "ReconnectPolicy",
    "TurnDetectionConfig",
    # Components
    "DataPathRouter",
    "DisplayAckProtocol",
    "PeerSessionNegotiator",
    "PeerStatusEvent",
    "SignalingChannel",
    "SignalingSocket",
    "TurnCoordinator",
    "WebsocketsSocket",
    # ABCs
    "PeerTransport",
    "RealtimeProvider",
    "ToolHandler",
    "VisionAnalyzer",
    "create_transport_factory",
    # Models
    "BridgeSession",
    "DeliveryStatus",
    "NegotiationState",
    "PeerConnectionState",
    "PendingConfirmation",
    "ProviderErrorKind",
    "ProviderStatus",
    "SessionState",
    "TurnState",
    # Errors
    "BridgeError",
    "ConfigurationError",
    "DeliveryTimeoutError",
    "MalformedMessageError",
    "NegotiationError",
    "ProviderConnectionError",
    "TranscriptMissingError",
    "VisionError",
    # Mocks
    "MockPeerTransport",
    "MockRealtimeProvider",
    "MockVisionAnalyzer",
    # Lazy
    "AiortcPeerTransport",
    "OpenAIRealtimeClient",
    "OpenAIVisionAnalyzer",
    "create_app",
]


def __getattr__(name: str) -> object:
    if name == "AiortcPeerTransport":
        from bridgekit.webrtc.aiortc_transport import AiortcPeerTransport

        return AiortcPeerTransport
    if name == "OpenAIRealtimeClient":
        from bridgekit.providers.openai.realtime import OpenAIRealtimeClient

        return OpenAIRealtimeClient
    if name == "OpenAIVisionAnalyzer":
        from bridgekit.providers.openai.vision import OpenAIVisionAnalyzer

        return OpenAIVisionAnalyzer
    if name == "create_app":
        from bridgekit.server.app import create_app

        return create_app
    raise AttributeError(f"module 'bridgekit' has no attribute {name}")
