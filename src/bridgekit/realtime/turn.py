"""Conversation turn-taking driven by provider voice activity events."""

from __future__ import annotations

import logging

from bridgekit.core.sessions import SessionRegistry
from bridgekit.models.enums import TurnState
from bridgekit.models.session import BridgeSession
from bridgekit.realtime.events import (
    AudioCommitted,
    ProviderDisconnected,
    ProviderEvent,
    ResponseDone,
    ResponseStarted,
    SpeechStarted,
    SpeechStopped,
)
from bridgekit.realtime.provider import RealtimeProvider

logger = logging.getLogger("bridgekit.realtime.turn")

_COMMITTABLE = (TurnState.LISTENING, TurnState.USER_SPEAKING, TurnState.COMMITTING)


class TurnCoordinator:
    """Tracks each session's turn and provides the manual reply override.

    The normal cycle is ``idle -> listening -> user_speaking -> committing
    -> awaiting_response -> idle`` and is driven by the provider's speech
    and response events. With server-side VAD the provider commits and
    responds on its own. :meth:`force_reply` pushes
    ``commit -> create_response`` directly for when VAD never reports the
    end of speech.
    """

    def __init__(self, sessions: SessionRegistry, provider: RealtimeProvider) -> None:
        self._sessions = sessions
        self._provider = provider

    def state(self, client_id: str) -> TurnState:
        session = self._sessions.get(client_id)
        return session.turn_state if session is not None else TurnState.IDLE

    async def append_audio(self, client_id: str, audio: bytes) -> None:
        """Forward client audio to the provider, preserving call order."""
        session = self._sessions.get(client_id)
        if session is None:
            return
        await self._provider.append_audio(client_id, audio)
        session.uncommitted_audio = True
        if session.turn_state == TurnState.IDLE:
            self._transition(session, TurnState.LISTENING)

    async def handle_event(self, event: ProviderEvent) -> None:
        """Entry point for :meth:`RealtimeProvider.on_event`."""
        session = self._sessions.get(getattr(event, "client_id", ""))
        if session is None:
            return

        if isinstance(event, SpeechStarted):
            self._transition(session, TurnState.USER_SPEAKING)
        elif isinstance(event, SpeechStopped):
            if self._provider.auto_commit(session.client_id):
                self._transition(session, TurnState.COMMITTING)
        elif isinstance(event, AudioCommitted):
            session.uncommitted_audio = False
            self._transition(session, TurnState.AWAITING_RESPONSE)
        elif isinstance(event, ResponseStarted):
            self._transition(session, TurnState.AWAITING_RESPONSE)
        elif isinstance(event, ResponseDone):
            self._transition(session, TurnState.IDLE)
        elif isinstance(event, ProviderDisconnected):
            session.uncommitted_audio = False
            self._transition(session, TurnState.IDLE)

    async def force_reply(self, client_id: str) -> bool:
        """Commit pending audio (if any) and request a response now."""
        session = self._sessions.get(client_id)
        if session is None:
            logger.warning("Force reply for unknown session %s", client_id)
            return False

        logger.info("Force reply for %s in state %s", client_id, session.turn_state)
        if session.uncommitted_audio and session.turn_state in _COMMITTABLE:
            self._transition(session, TurnState.COMMITTING)
            if not await self._provider.commit_audio(client_id):
                return False
            session.uncommitted_audio = False
        self._transition(session, TurnState.AWAITING_RESPONSE)
        return await self._provider.create_response(client_id)

    async def commit(self, client_id: str) -> bool:
        """Commit buffered audio without requesting a response."""
        session = self._sessions.get(client_id)
        if session is None or not session.uncommitted_audio:
            return False
        self._transition(session, TurnState.COMMITTING)
        return await self._provider.commit_audio(client_id)

    def reset(self, client_id: str) -> None:
        session = self._sessions.get(client_id)
        if session is not None:
            session.uncommitted_audio = False
            self._transition(session, TurnState.IDLE)

    def _transition(self, session: BridgeSession, state: TurnState) -> None:
        if session.turn_state == state:
            return
        logger.info("Turn %s: %s -> %s", session.client_id, session.turn_state, state)
        session.turn_state = state
