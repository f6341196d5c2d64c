"""Snapshot analysis providers."""

from bridgekit.providers.vision.base import VisionAnalyzer
from bridgekit.providers.vision.mock import MockVisionAnalyzer

__all__ = ["MockVisionAnalyzer", "VisionAnalyzer"]
