"""VisionAnalyzer abstract base class."""

from __future__ import annotations

from abc import ABC, abstractmethod


class VisionAnalyzer(ABC):
    """Describes snapshot images captured by the device."""

    @property
    @abstractmethod
    def name(self) -> str: ...

    @abstractmethod
    async def analyze(self, image: bytes, *, mime: str = "image/jpeg", prompt: str | None = None) -> str:
        """Return a short description of *image*.

        Raises:
            VisionError: The analysis request failed.
        """
        ...

    async def close(self) -> None:  # noqa: B027
        """Release resources. Default is a no-op."""
