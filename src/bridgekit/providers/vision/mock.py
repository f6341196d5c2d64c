"""Mock vision analyzer for testing."""

from __future__ import annotations

from bridgekit.core.errors import VisionError
from bridgekit.providers.vision.base import VisionAnalyzer


class MockVisionAnalyzer(VisionAnalyzer):
    """Returns canned descriptions and records analyzed images."""

    def __init__(self, responses: list[str] | None = None, *, fail: bool = False) -> None:
        self.responses = list(responses or ["A mock description."])
        self.fail = fail
        self.images: list[tuple[bytes, str, str | None]] = []
        self._index = 0

    @property
    def name(self) -> str:
        return "MockVisionAnalyzer"

    async def analyze(self, image: bytes, *, mime: str = "image/jpeg", prompt: str | None = None) -> str:
        self.images.append((image, mime, prompt))
        if self.fail:
            raise VisionError("mock vision failure")
        response = self.responses[self._index % len(self.responses)]
        self._index += 1
        return response
