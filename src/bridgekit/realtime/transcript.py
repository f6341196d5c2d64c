"""Per-response transcript accumulation."""

from __future__ import annotations

from dataclasses import dataclass, field

from bridgekit.core.errors import TranscriptMissingError


@dataclass
class ConversationItem:
    """Accumulates one response's text deltas until its completion event.

    Reset when the provider announces a new response and consumed by
    :meth:`resolve`. The provider surfaces text through different events
    depending on the response modality, so the final text is the
    authoritative transcript when one is supplied and the accumulated
    buffer otherwise.
    """

    response_id: str | None = None
    deltas: list[str] = field(default_factory=list)
    completed: bool = False

    @property
    def current_transcript(self) -> str:
        return "".join(self.deltas)

    def reset(self, response_id: str | None = None) -> None:
        self.response_id = response_id
        self.deltas.clear()
        self.completed = False

    def append(self, delta: str) -> None:
        if delta:
            self.deltas.append(delta)

    def resolve(self, authoritative: str | None = None) -> str:
        """Consume the item and return its final text.

        Raises:
            TranscriptMissingError: Neither an authoritative transcript nor
                buffered deltas are available.
        """
        buffered = self.current_transcript
        self.deltas.clear()
        self.completed = True
        if authoritative:
            return authoritative
        if buffered:
            return buffered
        raise TranscriptMissingError(self.response_id)
