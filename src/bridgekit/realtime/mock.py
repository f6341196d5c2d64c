"""Mock realtime provider for testing."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from bridgekit.core._helpers import deep_merge
from bridgekit.models.enums import ProviderErrorKind, ProviderStatus
from bridgekit.realtime.events import (
    AudioCommitted,
    ProviderConnected,
    ProviderErrorEvent,
    ProviderEvent,
    ResponseDone,
    ResponseStarted,
    SpeechStarted,
    SpeechStopped,
    TextComplete,
    ToolCall,
)
from bridgekit.realtime.provider import RealtimeProvider


@dataclass
class MockCall:
    """Record of a method call for test assertions."""

    method: str
    args: dict[str, Any] = field(default_factory=dict)


class MockRealtimeProvider(RealtimeProvider):
    """Mock realtime provider for testing.

    Tracks all method calls and provides helpers to simulate provider
    events (speech boundaries, text completion, tool calls, errors).

    Example:
        provider = MockRealtimeProvider()

        await provider.connect("client_1")
        assert provider.calls[-1].method == "connect"

        await provider.simulate_speech_started("client_1")
        await provider.simulate_text_complete("client_1", "Hello")
        await provider.simulate_tool_call("client_1", "call-1", "display_on_hud", {"text": "Hi"})
    """

    def __init__(self, *, auto_commit: bool = True) -> None:
        super().__init__()
        self.calls: list[MockCall] = []
        self.sent_audio: list[tuple[str, bytes]] = []
        self.user_texts: list[tuple[str, str]] = []
        self.tool_results: list[tuple[str, str, dict[str, Any] | str]] = []
        self.fail_connect: Exception | None = None
        self._auto_commit = auto_commit
        self._configs: dict[str, dict[str, Any]] = {}
        self._statuses: dict[str, ProviderStatus] = {}

    @property
    def name(self) -> str:
        return "MockRealtimeProvider"

    async def connect(self, client_id: str, *, overrides: dict[str, Any] | None = None) -> None:
        self.calls.append(
            MockCall(method="connect", args={"client_id": client_id, "overrides": overrides})
        )
        if self.fail_connect is not None:
            self._statuses[client_id] = ProviderStatus.FAILED
            raise self.fail_connect
        self._configs[client_id] = dict(overrides or {})
        self._statuses[client_id] = ProviderStatus.CONNECTED
        await self._emit(ProviderConnected(client_id=client_id))

    async def update_session_config(self, client_id: str, partial: dict[str, Any]) -> bool:
        self.calls.append(
            MockCall(method="update_session_config", args={"client_id": client_id, "partial": partial})
        )
        if client_id not in self._configs:
            return False
        deep_merge(self._configs[client_id], partial)
        return True

    async def append_audio(self, client_id: str, audio: bytes) -> None:
        self.sent_audio.append((client_id, audio))
        self.calls.append(
            MockCall(method="append_audio", args={"client_id": client_id, "size": len(audio)})
        )

    async def commit_audio(self, client_id: str) -> bool:
        self.calls.append(MockCall(method="commit_audio", args={"client_id": client_id}))
        return True

    async def create_response(self, client_id: str) -> bool:
        self.calls.append(MockCall(method="create_response", args={"client_id": client_id}))
        return True

    async def send_user_text(self, client_id: str, text: str) -> bool:
        self.user_texts.append((client_id, text))
        self.calls.append(
            MockCall(method="send_user_text", args={"client_id": client_id, "text": text})
        )
        return True

    async def submit_tool_result(
        self, client_id: str, call_id: str, output: dict[str, Any] | str
    ) -> bool:
        self.tool_results.append((client_id, call_id, output))
        self.calls.append(
            MockCall(method="submit_tool_result", args={"client_id": client_id, "call_id": call_id})
        )
        self.calls.append(MockCall(method="create_response", args={"client_id": client_id}))
        return True

    async def disconnect(self, client_id: str) -> None:
        self.calls.append(MockCall(method="disconnect", args={"client_id": client_id}))
        self._configs.pop(client_id, None)
        self._statuses[client_id] = ProviderStatus.DISCONNECTED

    async def close(self) -> None:
        self.calls.append(MockCall(method="close"))
        self._configs.clear()

    def status(self, client_id: str) -> ProviderStatus:
        return self._statuses.get(client_id, ProviderStatus.DISCONNECTED)

    def session_config(self, client_id: str) -> dict[str, Any] | None:
        config = self._configs.get(client_id)
        return dict(config) if config is not None else None

    def auto_commit(self, client_id: str) -> bool:
        return self._auto_commit

    def calls_to(self, method: str) -> list[MockCall]:
        return [c for c in self.calls if c.method == method]

    # -- Test helpers: simulate provider events --

    async def simulate(self, event: ProviderEvent) -> None:
        await self._emit(event)

    async def simulate_speech_started(self, client_id: str) -> None:
        await self._emit(SpeechStarted(client_id=client_id))

    async def simulate_speech_stopped(self, client_id: str) -> None:
        await self._emit(SpeechStopped(client_id=client_id))

    async def simulate_committed(self, client_id: str) -> None:
        await self._emit(AudioCommitted(client_id=client_id))

    async def simulate_response(self, client_id: str, text: str, response_id: str = "resp_1") -> None:
        """Simulate a full response: started, text completion, done."""
        await self._emit(ResponseStarted(client_id=client_id, response_id=response_id))
        await self._emit(TextComplete(client_id=client_id, text=text, response_id=response_id))
        await self._emit(ResponseDone(client_id=client_id, response_id=response_id))

    async def simulate_text_complete(self, client_id: str, text: str) -> None:
        await self._emit(TextComplete(client_id=client_id, text=text))

    async def simulate_tool_call(
        self, client_id: str, call_id: str, name: str, arguments: dict[str, Any]
    ) -> None:
        await self._continue_tool_call(
            ToolCall(client_id=client_id, call_id=call_id, name=name, arguments=arguments)
        )

    async def simulate_error(
        self, client_id: str, kind: ProviderErrorKind, message: str, *, terminal: bool = False
    ) -> None:
        if terminal:
            self._statuses[client_id] = ProviderStatus.FAILED
        await self._emit(
            ProviderErrorEvent(client_id=client_id, kind=kind, message=message, terminal=terminal)
        )
