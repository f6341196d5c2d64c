"""HTTP and WebSocket service surface."""

from bridgekit.server.app import StarletteSocket, create_app

__all__ = ["StarletteSocket", "create_app"]
