"""Exception hierarchy for bridgekit."""

from __future__ import annotations


class BridgeError(Exception):
    """Base exception for all bridgekit errors."""


class ConfigurationError(BridgeError):
    """Required configuration is missing or invalid."""


class MalformedMessageError(BridgeError):
    """An inbound message could not be parsed or failed validation.

    Attributes:
        reason: Short human-readable description of the failure.
    """

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class NegotiationError(BridgeError):
    """Offer/answer or connectivity negotiation failed for a peer.

    Never retried automatically; the owning session decides what to do.

    Attributes:
        peer_id: Client whose peer session failed.
    """

    def __init__(self, message: str, *, peer_id: str = "") -> None:
        super().__init__(message)
        self.peer_id = peer_id


class ProviderConnectionError(BridgeError):
    """Error on the connection to the realtime AI provider.

    Attributes:
        kind: Normalized error kind (see ``ProviderErrorKind``).
        retryable: Whether a reconnect should be attempted.
    """

    def __init__(self, message: str, *, kind: str = "unknown", retryable: bool = False) -> None:
        super().__init__(message)
        self.kind = kind
        self.retryable = retryable


class TranscriptMissingError(BridgeError):
    """A response completed with neither a transcript nor buffered text."""

    def __init__(self, response_id: str | None = None) -> None:
        super().__init__(f"No transcript available for response {response_id or '<unknown>'}")
        self.response_id = response_id


class DeliveryTimeoutError(BridgeError):
    """A display confirmation did not arrive within the ack window."""

    def __init__(self, message_id: str, timeout: float) -> None:
        super().__init__(f"Display confirmation for {message_id} not received within {timeout}s")
        self.message_id = message_id
        self.timeout = timeout


class VisionError(BridgeError):
    """Image analysis by a vision collaborator failed.

    Attributes:
        retryable: Whether the caller could retry the request.
        status_code: HTTP status code from the provider, if available.
    """

    def __init__(
        self, message: str, *, retryable: bool = False, status_code: int | None = None
    ) -> None:
        super().__init__(message)
        self.retryable = retryable
        self.status_code = status_code
