"""Display delivery acknowledgement."""

from bridgekit.display.ack import DisplayAckProtocol

__all__ = ["DisplayAckProtocol"]
