"""String enums shared across bridgekit."""

from __future__ import annotations

from enum import StrEnum, unique


@unique
class NegotiationState(StrEnum):
    """Offer/answer state of one peer session."""

    IDLE = "idle"
    LOCAL_OFFER_PENDING = "local_offer_pending"
    REMOTE_OFFER_PENDING = "remote_offer_pending"
    STABLE = "stable"
    CLOSED = "closed"
    FAILED = "failed"


@unique
class PeerConnectionState(StrEnum):
    NEW = "new"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    FAILED = "failed"
    CLOSED = "closed"


@unique
class ProviderStatus(StrEnum):
    """Liveness of the connection to the realtime provider."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


@unique
class TurnState(StrEnum):
    IDLE = "idle"
    LISTENING = "listening"
    USER_SPEAKING = "user_speaking"
    COMMITTING = "committing"
    AWAITING_RESPONSE = "awaiting_response"


@unique
class ProviderErrorKind(StrEnum):
    CONNECTION_CLOSED = "connection_closed"
    MAX_RECONNECTS = "max_reconnects"
    AUTHENTICATION = "authentication"
    RATE_LIMIT = "rate_limit"
    SERVER = "server"
    INVALID_REQUEST = "invalid_request"
    NOT_FOUND = "not_found"
    RESPONSE_FAILED = "response_failed"
    TRANSCRIPT_MISSING = "transcript_missing"
    UNKNOWN = "unknown"


@unique
class DeliveryStatus(StrEnum):
    """Lifecycle of a text message awaiting display confirmation."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    TIMED_OUT = "timed_out"


@unique
class SessionState(StrEnum):
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"
