"""Snapshot description via the OpenAI Chat Completions API."""

from __future__ import annotations

import base64
import logging

import openai
from pydantic import SecretStr

from bridgekit.core.errors import VisionError
from bridgekit.providers.vision.base import VisionAnalyzer

logger = logging.getLogger("bridgekit.providers.openai.vision")

_DEFAULT_PROMPT = "Describe what you see in this image briefly, for a heads-up display."


class OpenAIVisionAnalyzer(VisionAnalyzer):
    """Vision analyzer using an OpenAI multimodal chat model."""

    def __init__(
        self,
        *,
        api_key: SecretStr,
        model: str = "gpt-4o",
        max_tokens: int = 150,
        base_url: str | None = None,
    ) -> None:
        self._model = model
        self._max_tokens = max_tokens
        self._client = openai.AsyncOpenAI(api_key=api_key.get_secret_value(), base_url=base_url)

    @property
    def name(self) -> str:
        return "OpenAIVisionAnalyzer"

    async def analyze(self, image: bytes, *, mime: str = "image/jpeg", prompt: str | None = None) -> str:
        data_url = f"data:{mime};base64,{base64.b64encode(image).decode('ascii')}"
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                max_tokens=self._max_tokens,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": prompt or _DEFAULT_PROMPT},
                            {"type": "image_url", "image_url": {"url": data_url}},
                        ],
                    }
                ],
            )
        except openai.APIStatusError as exc:
            raise VisionError(
                str(exc),
                retryable=exc.status_code in (429, 500, 502, 503),
                status_code=exc.status_code,
            ) from exc
        except Exception as exc:
            raise VisionError(str(exc)) from exc

        text = response.choices[0].message.content or ""
        logger.info("Vision analysis: %d image bytes -> %d chars", len(image), len(text))
        return text.strip()

    async def close(self) -> None:
        await self._client.close()
