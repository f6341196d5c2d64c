"""Peer transport capability interface and its typed events."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from bridgekit.models.enums import PeerConnectionState

if TYPE_CHECKING:
    from bridgekit.config import BridgeConfig

logger = logging.getLogger("bridgekit.webrtc.transport")


def _utcnow() -> datetime:
    """Get current UTC time (timezone-aware)."""
    return datetime.now(UTC)


@dataclass(frozen=True)
class ConnectionStateChanged:
    state: PeerConnectionState
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class LocalIceCandidate:
    """A locally gathered candidate to forward to the remote peer."""

    candidate: str
    sdp_mid: str | None = None
    sdp_mline_index: int | None = None
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class DataChannelOpened:
    label: str
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class DataChannelMessage:
    label: str
    data: str | bytes
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class DataChannelClosed:
    label: str
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class NegotiationNeeded:
    """The transport's local state changed and requires a fresh offer."""

    timestamp: datetime = field(default_factory=_utcnow)


PeerEvent = (
    ConnectionStateChanged
    | LocalIceCandidate
    | DataChannelOpened
    | DataChannelMessage
    | DataChannelClosed
    | NegotiationNeeded
)

PeerEventHandler = Callable[[PeerEvent], Any]


class PeerTransport(ABC):
    """One peer-to-peer connection to a single client.

    Implementations report everything through one handler registered with
    :meth:`on_event`, delivering :data:`PeerEvent` variants in the order the
    underlying stack produced them.

    Example:
        transport = factory()
        transport.on_event(handle_peer_event)

        answer_sdp = await transport.accept_offer(offer_sdp)
        transport.send_data('{"type": "model_text", ...}')
    """

    @property
    @abstractmethod
    def name(self) -> str: ...

    @property
    @abstractmethod
    def connection_state(self) -> PeerConnectionState: ...

    @property
    @abstractmethod
    def data_channel_open(self) -> bool: ...

    @abstractmethod
    def on_event(self, handler: PeerEventHandler) -> None:
        """Register the single handler that receives every :data:`PeerEvent`."""
        ...

    @abstractmethod
    async def create_offer(self) -> str:
        """Create an offer, apply it as the local description, return its SDP."""
        ...

    @abstractmethod
    async def accept_offer(self, sdp: str) -> str:
        """Apply a remote offer and return the SDP of the applied local answer."""
        ...

    @abstractmethod
    async def set_remote_answer(self, sdp: str) -> None: ...

    @abstractmethod
    async def add_ice_candidate(
        self, candidate: str, sdp_mid: str | None, sdp_mline_index: int | None
    ) -> None: ...

    @abstractmethod
    def create_data_channel(self, label: str) -> None:
        """Open a bridge-side data channel.

        Emits :class:`NegotiationNeeded` because the new channel must be
        described in a fresh offer.
        """
        ...

    @abstractmethod
    def send_data(self, data: str | bytes) -> bool:
        """Send on the open data channel. Returns False if none is open."""
        ...

    @abstractmethod
    async def close(self) -> None: ...


TransportFactory = Callable[[], PeerTransport]


def create_transport_factory(config: BridgeConfig) -> TransportFactory:
    """Select the peer transport implementation once, from configuration."""
    if config.peer_backend == "mock":
        from bridgekit.webrtc.mock import MockPeerTransport

        logger.info("Using simulated peer transport")
        return MockPeerTransport

    from bridgekit.webrtc.aiortc_transport import AiortcPeerTransport

    ice_servers = list(config.ice_servers)
    logger.info("Using aiortc peer transport with %d ICE servers", len(ice_servers))

    def factory() -> PeerTransport:
        return AiortcPeerTransport(ice_servers=ice_servers)

    return factory
