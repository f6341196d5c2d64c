"""RealtimeProvider abstract base class."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from bridgekit.models.enums import ProviderStatus
from bridgekit.realtime.events import ProviderEvent, ToolCall

logger = logging.getLogger("bridgekit.realtime.provider")

ProviderEventHandler = Callable[[ProviderEvent], Any]
ToolHandler = Callable[[ToolCall], Any]
"""Returns (or awaits to) the output dict submitted back to the provider."""


class RealtimeProvider(ABC):
    """Persistent per-session connection to a cloud conversational AI.

    Hides the provider wire format behind a command interface and a stream
    of normalized :data:`ProviderEvent` values delivered to handlers
    registered with :meth:`on_event`.

    Function calls are always continued: the :class:`ToolCall` event is
    emitted, the tool handler runs once, its output is submitted and one
    new response is requested.

    Example:
        provider = OpenAIRealtimeClient(config)
        provider.on_event(handle_provider_event)
        provider.set_tool_handler(run_tool)

        await provider.connect("client_1")
        await provider.append_audio("client_1", pcm_bytes)
        await provider.disconnect("client_1")
    """

    def __init__(self) -> None:
        self._event_handlers: list[ProviderEventHandler] = []
        self._tool_handler: ToolHandler | None = None

    @property
    @abstractmethod
    def name(self) -> str: ...

    @abstractmethod
    async def connect(self, client_id: str, *, overrides: dict[str, Any] | None = None) -> None:
        """Open the provider connection for *client_id* and apply its session config.

        Args:
            client_id: Session the connection belongs to.
            overrides: Session parameters merged over the configured defaults.
        """
        ...

    @abstractmethod
    async def update_session_config(self, client_id: str, partial: dict[str, Any]) -> bool:
        """Merge *partial* into the retained config and re-send all of it.

        Returns True once the provider acknowledged the update.
        """
        ...

    @abstractmethod
    async def append_audio(self, client_id: str, audio: bytes) -> None:
        """Append PCM16 audio to the provider's input buffer, in call order."""
        ...

    @abstractmethod
    async def commit_audio(self, client_id: str) -> bool:
        """Commit the input buffer. Only needed when automatic commit is off."""
        ...

    @abstractmethod
    async def create_response(self, client_id: str) -> bool: ...

    @abstractmethod
    async def send_user_text(self, client_id: str, text: str) -> bool: ...

    @abstractmethod
    async def submit_tool_result(
        self, client_id: str, call_id: str, output: dict[str, Any] | str
    ) -> bool:
        """Send a function-call output item and request the follow-up response."""
        ...

    @abstractmethod
    async def disconnect(self, client_id: str) -> None: ...

    @abstractmethod
    def status(self, client_id: str) -> ProviderStatus: ...

    @abstractmethod
    def session_config(self, client_id: str) -> dict[str, Any] | None:
        """Return a copy of the retained session config, if connected."""
        ...

    @abstractmethod
    def auto_commit(self, client_id: str) -> bool:
        """Whether the provider commits input audio on its own (server VAD)."""
        ...

    async def close(self) -> None:  # noqa: B027
        """Release all connections. Default is a no-op."""

    # -- Event and tool registration --

    def on_event(self, handler: ProviderEventHandler) -> None:
        self._event_handlers.append(handler)

    def set_tool_handler(self, handler: ToolHandler | None) -> None:
        self._tool_handler = handler

    # -- Helpers for implementations --

    async def _emit(self, event: ProviderEvent) -> None:
        for handler in self._event_handlers:
            try:
                result = handler(event)
                if hasattr(result, "__await__"):
                    await result
            except Exception:
                logger.exception("Error in provider event handler for %s", type(event).__name__)

    async def _continue_tool_call(self, call: ToolCall) -> None:
        """Emit *call*, run the tool handler and submit exactly one result."""
        await self._emit(call)
        output: dict[str, Any] | str
        if self._tool_handler is None:
            output = {"success": False, "error": f"Unknown function: {call.name}"}
        else:
            try:
                result = self._tool_handler(call)
                if hasattr(result, "__await__"):
                    result = await result
                output = result if isinstance(result, dict | str) else {"success": True}
            except Exception as exc:
                logger.exception("Tool %s failed for %s", call.name, call.client_id)
                output = {"success": False, "error": str(exc)}
        await self.submit_tool_result(call.client_id, call.call_id, output)
