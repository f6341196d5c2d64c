"""Peer connection negotiation and data-channel routing."""

from bridgekit.webrtc.mock import MockPeerTransport
from bridgekit.webrtc.negotiator import DataEvent, PeerSessionNegotiator, PeerStatusEvent
from bridgekit.webrtc.router import DataPathRouter
from bridgekit.webrtc.transport import (
    ConnectionStateChanged,
    DataChannelClosed,
    DataChannelMessage,
    DataChannelOpened,
    LocalIceCandidate,
    NegotiationNeeded,
    PeerEvent,
    PeerTransport,
    TransportFactory,
    create_transport_factory,
)

__all__ = [
    "ConnectionStateChanged",
    "DataChannelClosed",
    "DataChannelMessage",
    "DataChannelOpened",
    "DataEvent",
    "DataPathRouter",
    "LocalIceCandidate",
    "MockPeerTransport",
    "NegotiationNeeded",
    "PeerEvent",
    "PeerSessionNegotiator",
    "PeerStatusEvent",
    "PeerTransport",
    "TransportFactory",
    "create_transport_factory",
]
