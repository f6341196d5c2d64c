"""Per-client session state."""

from __future__ import annotations

import asyncio
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from bridgekit.models.enums import (
    DeliveryStatus,
    NegotiationState,
    PeerConnectionState,
    ProviderStatus,
    SessionState,
    TurnState,
)

if TYPE_CHECKING:
    from bridgekit.webrtc.transport import PeerTransport

# Number of recently confirmed message ids remembered for duplicate detection.
CONFIRMED_HISTORY = 256


def _utcnow() -> datetime:
    """Get current UTC time (timezone-aware)."""
    return datetime.now(UTC)


@dataclass
class PendingConfirmation:
    """Text dispatched to the device and awaiting ``display_confirmed``."""

    message_id: str
    text: str
    timeout_handle: asyncio.Task[None] | None = None
    status: DeliveryStatus = DeliveryStatus.PENDING
    sent_at: datetime = field(default_factory=_utcnow)


@dataclass
class BridgeSession:
    """State for one connected client.

    Created on client connect and destroyed on disconnect or explicit stop.
    Each session exclusively owns its peer transport and provider connection;
    components look sessions up by ``client_id`` instead of sharing
    process-wide flags.
    """

    client_id: str
    state: SessionState = SessionState.ACTIVE

    # Peer transport
    transport: PeerTransport | None = None
    making_offer: bool = False
    # Monotonic time the last local offer was sent; None once answered
    local_offer_at: float | None = None
    negotiation_state: NegotiationState = NegotiationState.IDLE
    peer_state: PeerConnectionState = PeerConnectionState.NEW
    data_channel_open: bool = False

    # Provider connection
    provider_status: ProviderStatus = ProviderStatus.DISCONNECTED
    turn_state: TurnState = TurnState.IDLE
    uncommitted_audio: bool = False

    # Display acknowledgement
    pending_confirmations: dict[str, PendingConfirmation] = field(default_factory=dict)
    confirmed_ids: deque[str] = field(default_factory=lambda: deque(maxlen=CONFIRMED_HISTORY))
    conversation_id: str = field(default_factory=lambda: f"conv_{uuid.uuid4().hex[:12]}")
    seq: int = 0

    room: str | None = None
    created_at: datetime = field(default_factory=_utcnow)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_active(self) -> bool:
        return self.state == SessionState.ACTIVE

    def next_seq(self) -> int:
        self.seq += 1
        return self.seq
