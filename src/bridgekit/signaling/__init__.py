"""Signaling WebSocket channel."""

from bridgekit.signaling.channel import SignalingChannel, SignalingSocket, WebsocketsSocket

__all__ = ["SignalingChannel", "SignalingSocket", "WebsocketsSocket"]
