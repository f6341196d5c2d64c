"""Signaling WebSocket channel with a client connection registry."""

from __future__ import annotations

import contextlib
import logging
import secrets
import time
from collections.abc import AsyncIterator, Callable
from typing import Any, Protocol

from pydantic import BaseModel
from websockets.exceptions import ConnectionClosed
from websockets.protocol import State

from bridgekit.core.errors import MalformedMessageError
from bridgekit.models._wire import encode_wire
from bridgekit.models.datachannel import DisplayConfirmedMessage
from bridgekit.models.signaling import (
    AnswerMessage,
    AudioStreamMessage,
    ErrorMessage,
    IceCandidateMessage,
    JoinedMessage,
    JoinMessage,
    LeaveMessage,
    OfferMessage,
    UnrecognizedSignalingMessage,
    WelcomeMessage,
    parse_signaling_message,
)

logger = logging.getLogger("bridgekit.signaling")

NegotiationMessage = OfferMessage | AnswerMessage | IceCandidateMessage

NegotiationHandler = Callable[[str, NegotiationMessage], Any]
AudioStreamHandler = Callable[[str, AudioStreamMessage], Any]
DisplayConfirmedHandler = Callable[[str, DisplayConfirmedMessage], Any]
ClientCallback = Callable[[str], Any]


class SignalingSocket(Protocol):
    """Minimal duplex text socket the channel needs from a server framework."""

    @property
    def is_open(self) -> bool: ...

    async def send(self, data: str) -> None: ...

    async def close(self, code: int = 1000, reason: str = "") -> None: ...

    def __aiter__(self) -> AsyncIterator[str | bytes]: ...


class WebsocketsSocket:
    """Adapts a ``websockets`` server connection to :class:`SignalingSocket`."""

    def __init__(self, connection: Any) -> None:
        self._connection = connection

    @property
    def is_open(self) -> bool:
        return self._connection.state is State.OPEN

    async def send(self, data: str) -> None:
        await self._connection.send(data)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        await self._connection.close(code, reason)

    async def __aiter__(self) -> AsyncIterator[str | bytes]:
        try:
            async for message in self._connection:
                yield message
        except ConnectionClosed as exc:
            logger.debug("Signaling socket closed: %s", exc)


def new_client_id() -> str:
    return f"client_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


class SignalingChannel:
    """Duplex signaling transport between clients and the bridge.

    Assigns client ids, parses every inbound frame once into a typed message,
    routes negotiation messages and the audio-stream fallback to their
    subscribers, and answers malformed or unknown frames with exactly one
    ``error`` reply to the sender.

    The ``client_id -> socket`` table is only mutated by connect and
    disconnect on the event loop.

    Example:
        channel = SignalingChannel()
        channel.on_negotiation(negotiator.handle_signaling)
        channel.on_client_disconnected(bridge.end_session)

        # inside a websockets handler
        await channel.serve(WebsocketsSocket(connection))
    """

    _MAX_CONSECUTIVE_ERRORS = 3

    def __init__(self) -> None:
        self._clients: dict[str, SignalingSocket] = {}
        self._error_counts: dict[str, int] = {}
        self._negotiation_handlers: list[NegotiationHandler] = []
        self._audio_handlers: list[AudioStreamHandler] = []
        self._confirmation_handlers: list[DisplayConfirmedHandler] = []
        self._connected_callbacks: list[ClientCallback] = []
        self._disconnected_callbacks: list[ClientCallback] = []

    @property
    def client_count(self) -> int:
        return len(self._clients)

    @property
    def client_ids(self) -> list[str]:
        return list(self._clients)

    def is_connected(self, client_id: str) -> bool:
        socket = self._clients.get(client_id)
        return socket is not None and socket.is_open

    # -- Subscription --

    def on_negotiation(self, handler: NegotiationHandler) -> None:
        self._negotiation_handlers.append(handler)

    def on_audio_stream(self, handler: AudioStreamHandler) -> None:
        self._audio_handlers.append(handler)

    def on_display_confirmed(self, handler: DisplayConfirmedHandler) -> None:
        """Display confirmations sent over signaling instead of the side channel."""
        self._confirmation_handlers.append(handler)

    def on_client_connected(self, callback: ClientCallback) -> None:
        self._connected_callbacks.append(callback)

    def on_client_disconnected(self, callback: ClientCallback) -> None:
        self._disconnected_callbacks.append(callback)

    # -- Connection lifecycle --

    async def connect(self, socket: SignalingSocket, client_id: str | None = None) -> str:
        """Register *socket*, send the welcome message and return its client id."""
        client_id = client_id or new_client_id()
        self._clients[client_id] = socket
        self._error_counts.pop(client_id, None)
        logger.info("Client connected: %s (%d total)", client_id, len(self._clients))
        await self.send(client_id, WelcomeMessage(client_id=client_id))
        await self._fire(self._connected_callbacks, client_id)
        return client_id

    async def disconnect(self, client_id: str, *, code: int = 1000, reason: str = "") -> None:
        """Remove *client_id* from the routing table and report it upward."""
        socket = self._clients.pop(client_id, None)
        self._error_counts.pop(client_id, None)
        if socket is None:
            return
        logger.info("Client disconnected: %s (%d remaining)", client_id, len(self._clients))
        if socket.is_open:
            with contextlib.suppress(Exception):
                await socket.close(code, reason)
        await self._fire(self._disconnected_callbacks, client_id)

    async def serve(self, socket: SignalingSocket) -> None:
        """Run one client connection until the socket closes."""
        client_id = await self.connect(socket)
        try:
            async for raw in socket:
                await self.on_message(client_id, raw)
        finally:
            await self.disconnect(client_id)

    async def handle_websockets(self, connection: Any) -> None:
        """Connection handler for ``websockets.serve``."""
        await self.serve(WebsocketsSocket(connection))

    async def close(self) -> None:
        for client_id in list(self._clients):
            await self.disconnect(client_id, code=1000, reason="Server shutting down")

    # -- Inbound --

    async def on_message(self, client_id: str, raw: str | bytes) -> None:
        """Parse one inbound frame and dispatch it by ``type``."""
        try:
            message = parse_signaling_message(raw)
        except MalformedMessageError as exc:
            logger.warning("Malformed signaling message from %s: %s", client_id, exc.reason)
            await self.send(client_id, ErrorMessage(error=exc.reason))
            return

        logger.debug("<- %s type=%s size=%d", client_id, message.type, len(raw))

        try:
            if isinstance(message, OfferMessage | AnswerMessage | IceCandidateMessage):
                await self._dispatch(self._negotiation_handlers, client_id, message)
            elif isinstance(message, AudioStreamMessage):
                await self._dispatch(self._audio_handlers, client_id, message)
            elif isinstance(message, DisplayConfirmedMessage):
                await self._dispatch(self._confirmation_handlers, client_id, message)
            elif isinstance(message, JoinMessage):
                logger.info("Client %s joined room %s", client_id, message.room)
                await self.send(client_id, JoinedMessage(room=message.room, client_id=client_id))
            elif isinstance(message, LeaveMessage):
                logger.info("Client %s left room %s", client_id, message.room)
            elif isinstance(message, UnrecognizedSignalingMessage):
                logger.warning("Unknown message type from %s: %s", client_id, message.type)
                await self.send(client_id, ErrorMessage(error=f"Unknown message type: {message.type}"))
        except MalformedMessageError as exc:
            logger.warning("Rejected %s from %s: %s", message.type, client_id, exc.reason)
            await self.send(client_id, ErrorMessage(error=exc.reason))
        except Exception:
            logger.exception("Error handling %s from %s", message.type, client_id)

    # -- Outbound --

    async def send(self, client_id: str, message: BaseModel | dict[str, Any]) -> bool:
        """Serialize and send *message*. Returns False if the client is not open."""
        socket = self._clients.get(client_id)
        if socket is None or not socket.is_open:
            logger.debug("Cannot send to %s: socket not open", client_id)
            return False
        payload = encode_wire(message)
        try:
            await socket.send(payload)
        except Exception:
            await self._handle_send_error(client_id)
            return False
        self._error_counts.pop(client_id, None)
        logger.debug("-> %s type=%s size=%d", client_id, _message_type(message), len(payload))
        return True

    async def broadcast(
        self, message: BaseModel | dict[str, Any], exclude_id: str | None = None
    ) -> int:
        """Send *message* to every client except *exclude_id*. Returns the delivery count."""
        sent = 0
        for client_id in list(self._clients):
            if client_id == exclude_id:
                continue
            if await self.send(client_id, message):
                sent += 1
        return sent

    # -- Helpers --

    async def _handle_send_error(self, client_id: str) -> None:
        """Increment error count and drop the client after threshold."""
        consecutive = self._error_counts.get(client_id, 0) + 1
        self._error_counts[client_id] = consecutive
        if consecutive >= self._MAX_CONSECUTIVE_ERRORS:
            logger.warning(
                "Signaling client %s removed after %d consecutive send failures",
                client_id,
                consecutive,
            )
            await self.disconnect(client_id, code=1011, reason="Send failures")
        else:
            logger.warning(
                "Signaling send failed for %s (attempt %d/%d)",
                client_id,
                consecutive,
                self._MAX_CONSECUTIVE_ERRORS,
            )

    async def _dispatch(self, handlers: list[Any], client_id: str, message: Any) -> None:
        for handler in handlers:
            result = handler(client_id, message)
            if hasattr(result, "__await__"):
                await result

    async def _fire(self, callbacks: list[ClientCallback], client_id: str) -> None:
        for cb in callbacks:
            try:
                result = cb(client_id)
                if hasattr(result, "__await__"):
                    await result
            except Exception:
                logger.exception("Error in signaling callback for %s", client_id)


def _message_type(message: BaseModel | dict[str, Any]) -> str:
    if isinstance(message, dict):
        return str(message.get("type", "?"))
    return str(getattr(message, "type", "?"))
