"""Internal helpers shared across bridgekit modules."""

from __future__ import annotations

import copy
from typing import Any


def deep_merge(target: dict[str, Any], partial: dict[str, Any]) -> None:
    """Merge *partial* into *target* in place, recursing into nested dicts.

    Values from *partial* are deep-copied so later mutation of either side
    does not leak into the other.
    """
    for key, value in partial.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            deep_merge(target[key], value)
        else:
            target[key] = copy.deepcopy(value)
