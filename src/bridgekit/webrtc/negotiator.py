"""Per-client peer session ownership and glare-free offer/answer exchange."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from bridgekit.core.errors import NegotiationError
from bridgekit.core.sessions import SessionRegistry
from bridgekit.models.enums import NegotiationState, PeerConnectionState
from bridgekit.models.session import BridgeSession
from bridgekit.models.signaling import AnswerMessage, IceCandidateMessage, OfferMessage
from bridgekit.signaling.channel import NegotiationMessage, SignalingChannel
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
)

logger = logging.getLogger("bridgekit.webrtc.negotiator")

DataEvent = DataChannelOpened | DataChannelMessage | DataChannelClosed


def _utcnow() -> datetime:
    """Get current UTC time (timezone-aware)."""
    return datetime.now(UTC)


@dataclass(frozen=True)
class PeerStatusEvent:
    """Session-level peer status reported upward."""

    client_id: str
    connection_state: PeerConnectionState
    negotiation_state: NegotiationState
    error: NegotiationError | None = None
    timestamp: datetime = field(default_factory=_utcnow)


PeerStatusCallback = Callable[[PeerStatusEvent], Any]
DataEventCallback = Callable[[str, DataEvent], Any]
TransportClosedCallback = Callable[[str], Any]


class PeerSessionNegotiator:
    """Owns at most one peer transport per client and negotiates it.

    Offers from the bridge are serialized per session by
    ``BridgeSession.making_offer``: the flag is set before the first await
    of :meth:`request_offer` and cleared in ``finally`` only while the
    session still holds the same transport, so a second request arriving
    while one is in flight is dropped. Replacing the transport resets the
    flag for the new one. An offer that could not be sent returns the
    session to its previous negotiation state. The bridge is the impolite
    peer: a remote offer that collides with a pending local offer is
    ignored and the client is expected to roll back. A local offer left
    unanswered for longer than ``offer_timeout`` seconds is stale: a remote
    offer then replaces the transport instead of being ignored.

    Negotiation errors are reported through :meth:`on_status` and tear the
    transport down; nothing here retries. A later offer from the client
    builds a fresh transport.
    """

    def __init__(
        self,
        sessions: SessionRegistry,
        signaling: SignalingChannel,
        transport_factory: TransportFactory,
        *,
        offer_timeout: float = 10.0,
    ) -> None:
        self._sessions = sessions
        self._offer_timeout = offer_timeout
        self._signaling = signaling
        self._factory = transport_factory
        self._status_callbacks: list[PeerStatusCallback] = []
        self._data_callbacks: list[DataEventCallback] = []
        self._closed_callbacks: list[TransportClosedCallback] = []

    # -- Callback registration --

    def on_status(self, callback: PeerStatusCallback) -> None:
        self._status_callbacks.append(callback)

    def on_data_event(self, callback: DataEventCallback) -> None:
        """Receive side-channel open/message/close events for live transports."""
        self._data_callbacks.append(callback)

    def on_transport_closed(self, callback: TransportClosedCallback) -> None:
        """Called before a transport is closed so data-path handles can be dropped."""
        self._closed_callbacks.append(callback)

    # -- Session lifecycle --

    async def create_session(self, peer_id: str) -> PeerTransport:
        """Create a fresh transport for *peer_id*, closing any previous one first."""
        session = self._sessions.get_or_create(peer_id)
        if session.transport is not None:
            logger.info("Replacing peer transport for %s", peer_id)
            await self._teardown(session, NegotiationState.CLOSED)

        transport = self._factory()
        # Stored before callbacks are wired so they always see this transport.
        session.transport = transport
        session.making_offer = False
        session.local_offer_at = None
        session.negotiation_state = NegotiationState.IDLE
        session.peer_state = PeerConnectionState.NEW
        session.data_channel_open = False
        transport.on_event(self._make_handler(peer_id, transport))

        logger.info("Created %s peer transport for %s", transport.name, peer_id)
        await self._report(session)
        return transport

    async def close_session(self, peer_id: str) -> None:
        session = self._sessions.get(peer_id)
        if session is None or session.transport is None:
            return
        await self._teardown(session, NegotiationState.CLOSED)
        session.peer_state = PeerConnectionState.CLOSED
        await self._report(session)

    # -- Signaling input --

    async def handle_signaling(self, peer_id: str, message: NegotiationMessage) -> None:
        """Entry point for :meth:`SignalingChannel.on_negotiation`."""
        if isinstance(message, OfferMessage):
            await self.handle_offer(peer_id, message.sdp)
        elif isinstance(message, AnswerMessage):
            await self.handle_answer(peer_id, message.sdp)
        elif isinstance(message, IceCandidateMessage):
            await self.handle_ice_candidate(peer_id, message)

    async def handle_offer(self, peer_id: str, sdp: str) -> bool:
        """Answer a remote offer. Returns True if an answer was sent."""
        session = self._sessions.get(peer_id)
        if session is None:
            logger.warning("Offer from %s without a session, dropping", peer_id)
            return False
        if session.making_offer:
            logger.warning("Offer collision with %s, ignoring remote offer", peer_id)
            return False
        if session.negotiation_state == NegotiationState.LOCAL_OFFER_PENDING:
            if not self._local_offer_stale(session):
                logger.warning("Offer collision with %s, ignoring remote offer", peer_id)
                return False
            logger.warning("Local offer to %s went unanswered, replacing transport", peer_id)
            await self.create_session(peer_id)
        if session.transport is None:
            await self.create_session(peer_id)
        transport = session.transport
        assert transport is not None

        self._set_state(session, NegotiationState.REMOTE_OFFER_PENDING)
        try:
            answer_sdp = await transport.accept_offer(sdp)
        except Exception as exc:
            await self._fail(session, transport, f"Failed to apply remote offer: {exc}", exc)
            return False
        if session.transport is not transport:
            logger.info("Transport for %s replaced while answering, dropping answer", peer_id)
            return False

        self._set_state(session, NegotiationState.STABLE)
        return await self._signaling.send(peer_id, AnswerMessage(sdp=answer_sdp))

    async def handle_answer(self, peer_id: str, sdp: str) -> bool:
        session = self._sessions.get(peer_id)
        if session is None or session.transport is None:
            logger.warning("Answer from %s without a transport, dropping", peer_id)
            return False
        if session.negotiation_state != NegotiationState.LOCAL_OFFER_PENDING:
            logger.warning(
                "Unexpected answer from %s in state %s, dropping", peer_id, session.negotiation_state
            )
            return False
        transport = session.transport
        try:
            await transport.set_remote_answer(sdp)
        except Exception as exc:
            await self._fail(session, transport, f"Failed to apply remote answer: {exc}", exc)
            return False
        session.local_offer_at = None
        self._set_state(session, NegotiationState.STABLE)
        return True

    async def handle_ice_candidate(self, peer_id: str, message: IceCandidateMessage) -> bool:
        session = self._sessions.get(peer_id)
        if session is None or session.transport is None:
            logger.warning("ICE candidate from %s with no active transport, dropping", peer_id)
            return False
        try:
            await session.transport.add_ice_candidate(
                message.candidate, message.sdp_mid, message.sdp_mline_index
            )
        except Exception:
            logger.warning("Failed to apply ICE candidate from %s", peer_id, exc_info=True)
            return False
        return True

    # -- Local offers --

    async def request_offer(self, peer_id: str) -> bool:
        """Create and send an offer. Returns False if dropped or failed."""
        session = self._sessions.get(peer_id)
        if session is None or session.transport is None:
            logger.warning("Offer requested for %s with no active transport", peer_id)
            return False
        if session.making_offer:
            logger.info("Offer already in flight for %s, dropping request", peer_id)
            return False

        session.making_offer = True
        transport = session.transport
        previous = session.negotiation_state
        try:
            self._set_state(session, NegotiationState.LOCAL_OFFER_PENDING)
            sdp = await transport.create_offer()
            if session.transport is not transport:
                logger.info("Transport for %s replaced while offering, dropping offer", peer_id)
                return False
            if not await self._signaling.send(peer_id, OfferMessage(sdp=sdp)):
                logger.warning("Offer for %s was not sent, back to %s", peer_id, previous)
                self._set_state(session, previous)
                return False
            session.local_offer_at = time.monotonic()
            return True
        except Exception as exc:
            await self._fail(session, transport, f"Failed to create offer: {exc}", exc)
            return False
        finally:
            # A replaced transport has its own offer state
            if session.transport is transport:
                session.making_offer = False

    def open_data_channel(self, peer_id: str, label: str = "bridge") -> bool:
        """Create a bridge-side data channel; the transport then asks for renegotiation."""
        session = self._sessions.get(peer_id)
        if session is None or session.transport is None:
            return False
        session.transport.create_data_channel(label)
        return True

    async def _on_negotiation_needed(self, session: BridgeSession, transport: PeerTransport) -> None:
        if not session.is_active or session.transport is not transport:
            logger.debug("Renegotiation for stale transport of %s ignored", session.client_id)
            return
        pending_local = (
            session.negotiation_state == NegotiationState.LOCAL_OFFER_PENDING
            and not self._local_offer_stale(session)
        )
        if (
            session.making_offer
            or pending_local
            or session.negotiation_state == NegotiationState.REMOTE_OFFER_PENDING
        ):
            logger.info(
                "Renegotiation for %s requested mid-negotiation (%s), dropping",
                session.client_id,
                session.negotiation_state,
            )
            return
        await self.request_offer(session.client_id)

    # -- Transport events --

    def _make_handler(self, peer_id: str, transport: PeerTransport) -> Callable[[PeerEvent], Any]:
        async def handler(event: PeerEvent) -> None:
            session = self._sessions.get(peer_id)
            if session is None or session.transport is not transport:
                logger.debug("Event %s from stale transport of %s", type(event).__name__, peer_id)
                return
            await self._on_peer_event(session, transport, event)

        return handler

    async def _on_peer_event(
        self, session: BridgeSession, transport: PeerTransport, event: PeerEvent
    ) -> None:
        peer_id = session.client_id
        if isinstance(event, ConnectionStateChanged):
            logger.info("Peer %s connection state: %s", peer_id, event.state)
            session.peer_state = event.state
            if event.state == PeerConnectionState.FAILED:
                await self._fail(session, transport, "Peer connection failed")
            else:
                await self._report(session)
        elif isinstance(event, LocalIceCandidate):
            await self._signaling.send(
                peer_id,
                IceCandidateMessage(
                    candidate=event.candidate,
                    sdp_mid=event.sdp_mid,
                    sdp_mline_index=event.sdp_mline_index,
                ),
            )
        elif isinstance(event, NegotiationNeeded):
            await self._on_negotiation_needed(session, transport)
        elif isinstance(event, DataChannelOpened | DataChannelMessage | DataChannelClosed):
            if isinstance(event, DataChannelOpened):
                session.data_channel_open = True
            elif isinstance(event, DataChannelClosed):
                session.data_channel_open = False
            for cb in self._data_callbacks:
                try:
                    result = cb(peer_id, event)
                    if hasattr(result, "__await__"):
                        await result
                except Exception:
                    logger.exception("Error in data event callback for %s", peer_id)

    # -- Helpers --

    def _local_offer_stale(self, session: BridgeSession) -> bool:
        sent_at = session.local_offer_at
        return sent_at is not None and time.monotonic() - sent_at > self._offer_timeout

    def _set_state(self, session: BridgeSession, state: NegotiationState) -> None:
        if session.negotiation_state == state:
            return
        logger.info(
            "Negotiation %s: %s -> %s", session.client_id, session.negotiation_state, state
        )
        session.negotiation_state = state

    async def _fail(
        self,
        session: BridgeSession,
        transport: PeerTransport,
        message: str,
        cause: BaseException | None = None,
    ) -> None:
        error = NegotiationError(message, peer_id=session.client_id)
        if cause is not None:
            error.__cause__ = cause
        logger.error("Negotiation failed for %s: %s", session.client_id, message)
        if session.transport is transport:
            await self._teardown(session, NegotiationState.FAILED)
        session.peer_state = PeerConnectionState.FAILED
        await self._report(session, error)

    async def _teardown(self, session: BridgeSession, state: NegotiationState) -> None:
        transport = session.transport
        session.transport = None
        session.making_offer = False
        session.local_offer_at = None
        session.data_channel_open = False
        session.negotiation_state = state
        for cb in self._closed_callbacks:
            try:
                result = cb(session.client_id)
                if hasattr(result, "__await__"):
                    await result
            except Exception:
                logger.exception("Error in transport-closed callback for %s", session.client_id)
        if transport is not None:
            try:
                await transport.close()
            except Exception:
                logger.exception("Error closing peer transport for %s", session.client_id)

    async def _report(self, session: BridgeSession, error: NegotiationError | None = None) -> None:
        event = PeerStatusEvent(
            client_id=session.client_id,
            connection_state=session.peer_state,
            negotiation_state=session.negotiation_state,
            error=error,
        )
        for cb in self._status_callbacks:
            try:
                result = cb(event)
                if hasattr(result, "__await__"):
                    await result
            except Exception:
                logger.exception("Error in peer status callback for %s", session.client_id)
