"""Tests for DisplayAckProtocol."""

from __future__ import annotations

import asyncio

import pytest

from bridgekit.core.errors import DeliveryTimeoutError
from bridgekit.core.sessions import SessionRegistry
from bridgekit.display.ack import DisplayAckProtocol, new_message_id
from bridgekit.models.datachannel import ModelTextMessage
from bridgekit.models.enums import DeliveryStatus
from bridgekit.models.session import PendingConfirmation


class Transmitter:
    def __init__(self, result: bool = True) -> None:
        self.result = result
        self.messages: list[ModelTextMessage] = []

    async def __call__(self, message: ModelTextMessage) -> bool:
        self.messages.append(message)
        return self.result


@pytest.fixture
def timeouts(acks: DisplayAckProtocol) -> list[tuple[str, PendingConfirmation, DeliveryTimeoutError]]:
    events: list[tuple[str, PendingConfirmation, DeliveryTimeoutError]] = []
    acks.on_timeout(lambda cid, pending, err: events.append((cid, pending, err)))
    return events


class TestRoundTrip:
    async def test_send_tracks_until_confirmed(
        self, acks: DisplayAckProtocol, sessions: SessionRegistry
    ) -> None:
        session = sessions.get_or_create("c1")
        transmit = Transmitter()

        message = await acks.send("c1", "Hello", transmit)

        assert message is not None
        assert transmit.messages == [message]
        pending = session.pending_confirmations[message.message_id]
        assert pending.status == DeliveryStatus.PENDING
        assert pending.timeout_handle is not None
        assert acks.pending_count("c1") == 1

        assert await acks.confirm("c1", message.message_id) is True
        assert message.message_id not in session.pending_confirmations
        assert pending.status == DeliveryStatus.CONFIRMED
        assert pending.timeout_handle is None
        assert acks.pending_count("c1") == 0

    async def test_confirmation_cancels_timer(
        self,
        acks: DisplayAckProtocol,
        sessions: SessionRegistry,
        timeouts: list[tuple[str, PendingConfirmation, DeliveryTimeoutError]],
    ) -> None:
        sessions.get_or_create("c1")
        message = await acks.send("c1", "Hello", Transmitter())
        assert message is not None

        await acks.confirm("c1", message.message_id)
        await asyncio.sleep(0.1)

        assert timeouts == []

    async def test_confirmation_during_transmit(
        self, acks: DisplayAckProtocol, sessions: SessionRegistry
    ) -> None:
        session = sessions.get_or_create("c1")

        async def transmit(message: ModelTextMessage) -> bool:
            await acks.confirm("c1", message.message_id)
            return True

        message = await acks.send("c1", "Fast device", transmit)

        assert message is not None
        assert session.pending_confirmations == {}
        assert message.message_id in session.confirmed_ids

    async def test_send_without_session(self, acks: DisplayAckProtocol) -> None:
        transmit = Transmitter()
        assert await acks.send("ghost", "Hello", transmit) is None
        assert transmit.messages == []

    async def test_failed_transmit_is_still_tracked(
        self,
        acks: DisplayAckProtocol,
        sessions: SessionRegistry,
        timeouts: list[tuple[str, PendingConfirmation, DeliveryTimeoutError]],
    ) -> None:
        sessions.get_or_create("c1")

        message = await acks.send("c1", "Lost", Transmitter(result=False))
        await asyncio.sleep(0.1)

        assert message is not None
        assert len(timeouts) == 1
        assert timeouts[0][2].message_id == message.message_id


class TestTimeouts:
    async def test_timeout_reported_exactly_once(
        self,
        acks: DisplayAckProtocol,
        sessions: SessionRegistry,
        timeouts: list[tuple[str, PendingConfirmation, DeliveryTimeoutError]],
    ) -> None:
        session = sessions.get_or_create("c1")
        message = await acks.send("c1", "Slow", Transmitter())
        assert message is not None

        await asyncio.sleep(0.1)
        await asyncio.sleep(0.1)

        assert len(timeouts) == 1
        client_id, pending, error = timeouts[0]
        assert client_id == "c1"
        assert pending.status == DeliveryStatus.TIMED_OUT
        assert error.timeout == acks.timeout
        assert session.pending_confirmations[message.message_id] is pending
        assert acks.pending_count("c1") == 0

    async def test_late_confirmation_clears_timed_out_entry(
        self,
        acks: DisplayAckProtocol,
        sessions: SessionRegistry,
        timeouts: list[tuple[str, PendingConfirmation, DeliveryTimeoutError]],
    ) -> None:
        session = sessions.get_or_create("c1")
        message = await acks.send("c1", "Slow", Transmitter())
        assert message is not None
        await asyncio.sleep(0.1)

        assert await acks.confirm("c1", message.message_id) is True

        assert session.pending_confirmations == {}
        assert len(timeouts) == 1
        # Second copy from the other delivery path
        assert await acks.confirm("c1", message.message_id) is False

    async def test_unknown_confirmation(
        self, acks: DisplayAckProtocol, sessions: SessionRegistry
    ) -> None:
        sessions.get_or_create("c1")
        assert await acks.confirm("c1", "msg_never_sent") is False

    async def test_timed_out_entries_are_bounded(self, sessions: SessionRegistry) -> None:
        acks = DisplayAckProtocol(sessions, timeout=0.01, max_retained=2)
        session = sessions.get_or_create("c1")

        for i in range(4):
            await acks.send("c1", f"text {i}", Transmitter())
        await asyncio.sleep(0.1)

        remaining = list(session.pending_confirmations.values())
        assert len(remaining) == 2
        assert [p.text for p in remaining] == ["text 2", "text 3"]

    async def test_cancel_all_stops_timers(
        self,
        acks: DisplayAckProtocol,
        sessions: SessionRegistry,
        timeouts: list[tuple[str, PendingConfirmation, DeliveryTimeoutError]],
    ) -> None:
        session = sessions.get_or_create("c1")
        await acks.send("c1", "a", Transmitter())
        await acks.send("c1", "b", Transmitter())

        assert acks.cancel_all("c1") == 2
        await asyncio.sleep(0.1)

        assert timeouts == []
        assert session.pending_confirmations == {}


def test_message_ids_are_unique() -> None:
    ids = {new_message_id() for _ in range(100)}
    assert len(ids) == 100
    assert all(i.startswith("msg_") for i in ids)
