"""Bridge service configuration."""

from __future__ import annotations

import os
from collections.abc import Mapping
from typing import Literal

from pydantic import BaseModel, Field, SecretStr, ValidationError

from bridgekit.core.errors import ConfigurationError
from bridgekit.providers.openai.config import OpenAIRealtimeConfig, TurnDetectionConfig

DEFAULT_ICE_SERVERS = [
    "stun:stun.l.google.com:19302",
    "stun:stun1.l.google.com:19302",
    "stun:stun2.l.google.com:19302",
    "stun:stun.stunprotocol.org:3478",
    "stun:stun3.l.google.com:19302",
]


class BridgeConfig(BaseModel):
    """Top-level configuration for :class:`~bridgekit.core.bridge.CompanionBridge`.

    Attributes:
        host: Interface the HTTP/WebSocket service binds to.
        port: Service port.
        signaling_path: Path of the signaling WebSocket endpoint.
        ice_servers: STUN/TURN URLs for the peer transport.
        peer_backend: ``aiortc`` for the real WebRTC stack, ``mock`` for the
            simulated transport. Chosen once at startup.
        open_data_channel: Create a bridge-side data channel after the first
            answer, which triggers a renegotiation.
        display_ack_timeout: Seconds to wait for ``display_confirmed``.
        offer_timeout: Seconds after which an unanswered local offer no
            longer blocks a remote offer.
        vision_model: Chat model used to describe snapshots.
    """

    host: str = "0.0.0.0"
    port: int = Field(default=3001, gt=0, lt=65536)
    signaling_path: str = "/signaling"
    ice_servers: list[str] = Field(default_factory=lambda: list(DEFAULT_ICE_SERVERS))
    peer_backend: Literal["aiortc", "mock"] = "aiortc"
    open_data_channel: bool = False
    display_ack_timeout: float = Field(default=5.0, gt=0.0)
    offer_timeout: float = Field(default=10.0, gt=0.0)
    vision_model: str = "gpt-4o"
    log_level: str = "INFO"
    openai: OpenAIRealtimeConfig

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> BridgeConfig:
        """Build a config from environment variables.

        Raises:
            ConfigurationError: ``OPENAI_API_KEY`` is missing or a value is
                invalid.
        """
        env = os.environ if environ is None else environ
        api_key = env.get("OPENAI_API_KEY")
        if not api_key:
            raise ConfigurationError("OPENAI_API_KEY is required")

        openai_kwargs: dict[str, object] = {"api_key": SecretStr(api_key)}
        if env.get("OPENAI_REALTIME_MODEL"):
            openai_kwargs["model"] = env["OPENAI_REALTIME_MODEL"]
        if env.get("OPENAI_VOICE"):
            openai_kwargs["voice"] = env["OPENAI_VOICE"]
        if env.get("SYSTEM_PROMPT"):
            openai_kwargs["instructions"] = env["SYSTEM_PROMPT"]
        if env.get("OPENAI_SERVER_VAD", "").lower() in ("0", "false", "no"):
            openai_kwargs["turn_detection"] = TurnDetectionConfig(type=None)

        kwargs: dict[str, object] = {}
        if env.get("BRIDGE_HOST"):
            kwargs["host"] = env["BRIDGE_HOST"]
        if env.get("SIGNALING_PORT"):
            kwargs["port"] = env["SIGNALING_PORT"]
        if env.get("DISPLAY_ACK_TIMEOUT"):
            kwargs["display_ack_timeout"] = env["DISPLAY_ACK_TIMEOUT"]
        if env.get("PEER_BACKEND"):
            kwargs["peer_backend"] = env["PEER_BACKEND"]
        if env.get("LOG_LEVEL"):
            kwargs["log_level"] = env["LOG_LEVEL"].upper()

        try:
            return cls(openai=OpenAIRealtimeConfig(**openai_kwargs), **kwargs)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid configuration: {exc}") from exc
