"""At-least-once display confirmation protocol for text sent to the device."""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from collections.abc import Awaitable, Callable
from typing import Any

from bridgekit.core.errors import DeliveryTimeoutError
from bridgekit.core.sessions import SessionRegistry
from bridgekit.models.datachannel import ModelTextMessage
from bridgekit.models.enums import DeliveryStatus
from bridgekit.models.session import BridgeSession, PendingConfirmation

logger = logging.getLogger("bridgekit.display.ack")

TransmitFn = Callable[[ModelTextMessage], Awaitable[bool]]
TimeoutCallback = Callable[[str, PendingConfirmation, DeliveryTimeoutError], Any]
ConfirmedCallback = Callable[[str, PendingConfirmation], Any]


def new_message_id() -> str:
    return f"msg_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


class DisplayAckProtocol:
    """Tracks every text message until the device confirms it was displayed.

    Each :meth:`send` creates one :class:`PendingConfirmation` in the
    session and starts a timer. A matching ``display_confirmed`` cancels the
    timer and removes the entry. When the timer fires first the entry is
    marked ``timed_out`` and the timeout is reported exactly once; the entry
    is retained (up to ``max_retained`` per session) so that a late
    confirmation still clears it. Nothing is re-sent automatically.

    Confirmations for ids that were already confirmed are expected, since
    text is delivered over two paths, and are ignored. Confirmations for
    ids never issued are logged as anomalies.
    """

    def __init__(
        self,
        sessions: SessionRegistry,
        *,
        timeout: float = 5.0,
        max_retained: int = 32,
    ) -> None:
        self._sessions = sessions
        self._timeout = timeout
        self._max_retained = max_retained
        self._timeout_callbacks: list[TimeoutCallback] = []
        self._confirmed_callbacks: list[ConfirmedCallback] = []

    @property
    def timeout(self) -> float:
        return self._timeout

    def on_timeout(self, callback: TimeoutCallback) -> None:
        self._timeout_callbacks.append(callback)

    def on_confirmed(self, callback: ConfirmedCallback) -> None:
        self._confirmed_callbacks.append(callback)

    async def send(self, client_id: str, text: str, transmit: TransmitFn) -> ModelTextMessage | None:
        """Wrap *text* in a tracked envelope, transmit it and start the timer.

        Returns the envelope, or None when *client_id* has no live session.
        """
        session = self._sessions.get(client_id)
        if session is None:
            logger.warning("Cannot send text to %s: no session", client_id)
            return None

        message = ModelTextMessage(
            message_id=new_message_id(),
            conversation_id=session.conversation_id,
            seq=session.next_seq(),
            text=text,
        )
        pending = PendingConfirmation(message_id=message.message_id, text=text)
        session.pending_confirmations[message.message_id] = pending

        delivered = await transmit(message)
        if not delivered:
            logger.warning("Text %s for %s was not written to any path", message.message_id, client_id)

        if pending.status == DeliveryStatus.PENDING and pending.timeout_handle is None:
            pending.timeout_handle = asyncio.create_task(
                self._expire_after(client_id, message.message_id),
                name=f"display_ack:{message.message_id}",
            )
        return message

    async def confirm(self, client_id: str, message_id: str) -> bool:
        """Handle ``display_confirmed``. Returns True if an entry was cleared."""
        session = self._sessions.get(client_id)
        if session is None:
            logger.warning("Confirmation %s from %s without a session", message_id, client_id)
            return False

        pending = session.pending_confirmations.pop(message_id, None)
        if pending is None:
            if message_id in session.confirmed_ids:
                logger.debug("Duplicate confirmation %s from %s ignored", message_id, client_id)
            else:
                logger.warning("Confirmation for unknown message %s from %s", message_id, client_id)
            return False

        if pending.timeout_handle is not None:
            pending.timeout_handle.cancel()
            pending.timeout_handle = None
        if pending.status == DeliveryStatus.TIMED_OUT:
            logger.info("Late confirmation %s from %s cleared", message_id, client_id)
        else:
            logger.debug("Confirmation %s from %s", message_id, client_id)
        pending.status = DeliveryStatus.CONFIRMED
        session.confirmed_ids.append(message_id)

        for cb in self._confirmed_callbacks:
            try:
                result = cb(client_id, pending)
                if hasattr(result, "__await__"):
                    await result
            except Exception:
                logger.exception("Error in confirmation callback for %s", client_id)
        return True

    def cancel_all(self, client_id: str) -> int:
        """Cancel every timer of *client_id* and drop its entries."""
        session = self._sessions.get(client_id)
        if session is None:
            return 0
        return self.cancel_session(session)

    def cancel_session(self, session: BridgeSession) -> int:
        count = 0
        for pending in session.pending_confirmations.values():
            if pending.timeout_handle is not None:
                pending.timeout_handle.cancel()
                pending.timeout_handle = None
                count += 1
        session.pending_confirmations.clear()
        if count:
            logger.debug("Cancelled %d confirmation timers for %s", count, session.client_id)
        return count

    def pending_count(self, client_id: str) -> int:
        session = self._sessions.get(client_id)
        if session is None:
            return 0
        return sum(
            1 for p in session.pending_confirmations.values() if p.status == DeliveryStatus.PENDING
        )

    # -- Timers --

    async def _expire_after(self, client_id: str, message_id: str) -> None:
        await asyncio.sleep(self._timeout)
        await self._expire(client_id, message_id)

    async def _expire(self, client_id: str, message_id: str) -> None:
        session = self._sessions.get(client_id)
        if session is None:
            return
        pending = session.pending_confirmations.get(message_id)
        if pending is None or pending.status != DeliveryStatus.PENDING:
            return

        pending.status = DeliveryStatus.TIMED_OUT
        pending.timeout_handle = None
        error = DeliveryTimeoutError(message_id, self._timeout)
        logger.warning("Display delivery failed for %s: %s", client_id, error)
        self._trim_timed_out(session)

        for cb in self._timeout_callbacks:
            try:
                result = cb(client_id, pending, error)
                if hasattr(result, "__await__"):
                    await result
            except Exception:
                logger.exception("Error in timeout callback for %s", client_id)

    def _trim_timed_out(self, session: BridgeSession) -> None:
        timed_out = [
            mid
            for mid, p in session.pending_confirmations.items()
            if p.status == DeliveryStatus.TIMED_OUT
        ]
        for mid in timed_out[: max(0, len(timed_out) - self._max_retained)]:
            del session.pending_confirmations[mid]
