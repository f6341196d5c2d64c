"""OpenAI Realtime provider configuration."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, SecretStr

DEFAULT_INSTRUCTIONS = """You are a smart glasses AI assistant.

HUD CONSTRAINTS:
- Maximum 50 words per response
- Use simple, actionable language
- Prioritize essential information only
- Respond directly without confirmation phrases

CAPABILITIES:
- Visual analysis (describe key elements only)
- Quick information lookup
- Brief guidance and instructions
- Object/text identification

Keep responses concise and immediately useful for a heads-up display."""

VALID_VOICES = ("alloy", "echo", "fable", "onyx", "nova", "shimmer")

DISPLAY_ON_HUD_TOOL: dict[str, Any] = {
    "type": "function",
    "name": "display_on_hud",
    "description": "Display text on the smart glasses HUD",
    "parameters": {
        "type": "object",
        "properties": {
            "text": {
                "type": "string",
                "description": "Text to display on the HUD (max 50 words)",
            },
            "priority": {
                "type": "string",
                "enum": ["low", "medium", "high"],
                "description": "Display priority level",
            },
        },
        "required": ["text"],
    },
}


class TurnDetectionConfig(BaseModel):
    """Server-side voice activity detection parameters.

    Attributes:
        type: ``server_vad`` or ``semantic_vad``. ``None`` disables automatic
            commit; audio must then be committed with ``commit_audio``.
        threshold: Activation threshold; lower is more sensitive.
        prefix_padding_ms: Audio kept before detected speech.
        silence_duration_ms: Silence that ends a turn.
    """

    type: Literal["server_vad", "semantic_vad"] | None = "server_vad"
    threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    prefix_padding_ms: int = Field(default=300, ge=0)
    silence_duration_ms: int = Field(default=300, ge=0)
    create_response: bool | None = None
    interrupt_response: bool | None = None

    @property
    def auto_commit(self) -> bool:
        return self.type is not None

    def payload(self) -> dict[str, Any] | None:
        if self.type is None:
            return None
        td: dict[str, Any] = {"type": self.type}
        if self.type == "server_vad":
            td["threshold"] = self.threshold
            td["prefix_padding_ms"] = self.prefix_padding_ms
            td["silence_duration_ms"] = self.silence_duration_ms
        if self.create_response is not None:
            td["create_response"] = self.create_response
        if self.interrupt_response is not None:
            td["interrupt_response"] = self.interrupt_response
        return td


class ReconnectPolicy(BaseModel):
    """Linear reconnect backoff for unexpected provider disconnects."""

    max_attempts: int = Field(default=5, ge=0)
    delay_seconds: float = Field(default=5.0, ge=0.0)

    def delay_for(self, attempt: int) -> float:
        """Return the delay before reconnect *attempt* (1-based)."""
        return self.delay_seconds * attempt


class OpenAIRealtimeConfig(BaseModel):
    """OpenAI Realtime API configuration.

    Holds every session parameter the provider expects in ``session.update``.
    The client retains a copy per session and re-sends the whole object on
    each change.

    Attributes:
        api_key: API key sent as a bearer credential.
        model: Realtime model identifier.
        base_url: WebSocket endpoint.
        voice: Output voice.
        instructions: System instructions.
        temperature: Sampling temperature.
    """

    api_key: SecretStr
    model: str = "gpt-4o-realtime-preview"
    base_url: str = "wss://api.openai.com/v1/realtime"
    voice: str = "alloy"
    instructions: str = DEFAULT_INSTRUCTIONS
    modalities: list[str] = Field(default_factory=lambda: ["text", "audio"])
    input_audio_format: str = "pcm16"
    output_audio_format: str = "pcm16"
    transcription_model: str | None = "whisper-1"
    turn_detection: TurnDetectionConfig = Field(default_factory=TurnDetectionConfig)
    temperature: float = Field(default=0.6, ge=0.0, le=2.0)
    tools: list[dict[str, Any]] = Field(default_factory=lambda: [DISPLAY_ON_HUD_TOOL])
    tool_choice: str = "auto"
    reconnect: ReconnectPolicy = Field(default_factory=ReconnectPolicy)
    session_ack_timeout: float = 10.0
    """Seconds to wait for ``session.updated`` before giving up on an update."""

    def session_payload(self) -> dict[str, Any]:
        """Render the full ``session`` object for ``session.update``."""
        session: dict[str, Any] = {
            "modalities": list(self.modalities),
            "instructions": self.instructions,
            "voice": self.voice,
            "input_audio_format": self.input_audio_format,
            "output_audio_format": self.output_audio_format,
            "turn_detection": self.turn_detection.payload(),
            "temperature": self.temperature,
            "tools": list(self.tools),
            "tool_choice": self.tool_choice,
        }
        if self.transcription_model:
            session["input_audio_transcription"] = {"model": self.transcription_model}
        return session
