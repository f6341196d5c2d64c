"""Registry of live bridge sessions keyed by client id."""

from __future__ import annotations

import logging

from bridgekit.models.enums import SessionState
from bridgekit.models.session import BridgeSession

logger = logging.getLogger("bridgekit.core.sessions")


class SessionRegistry:
    """In-memory map of ``client_id`` to :class:`BridgeSession`.

    Mutated only from the event loop (connect, disconnect, teardown), so no
    locking is needed. Multi-threaded hosts must shard it per worker.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, BridgeSession] = {}

    def get(self, client_id: str) -> BridgeSession | None:
        session = self._sessions.get(client_id)
        if session is None or session.state == SessionState.CLOSED:
            return None
        return session

    def get_or_create(self, client_id: str) -> BridgeSession:
        session = self.get(client_id)
        if session is None:
            session = BridgeSession(client_id=client_id)
            self._sessions[client_id] = session
            logger.debug("Created session %s", client_id)
        return session

    def remove(self, client_id: str) -> BridgeSession | None:
        session = self._sessions.pop(client_id, None)
        if session is not None:
            session.state = SessionState.CLOSED
        return session

    def all(self) -> list[BridgeSession]:
        return [s for s in self._sessions.values() if s.state != SessionState.CLOSED]

    def __contains__(self, client_id: object) -> bool:
        return isinstance(client_id, str) and self.get(client_id) is not None

    def __len__(self) -> int:
        return len(self.all())
