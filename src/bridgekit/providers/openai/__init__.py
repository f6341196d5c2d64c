"""OpenAI provider."""

from bridgekit.providers.openai.config import OpenAIRealtimeConfig

__all__ = ["OpenAIRealtimeConfig"]
