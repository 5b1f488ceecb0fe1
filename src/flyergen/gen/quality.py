"""Quality tier translation and the non-square step compensation rule."""

from __future__ import annotations

import math

from .capabilities import ProviderCapabilities
from .types import ratio_sides

DEFAULT_COMPENSATION_FACTOR = 1.5
DEFAULT_COMPENSATION_THRESHOLD = 1.3

TIER_MULTIPLIERS = {
    "fast": 0.6,
    "standard": 1.0,
    "high": 1.4,
}


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def needs_compensation(aspect_ratio: str, threshold: float = DEFAULT_COMPENSATION_THRESHOLD) -> bool:
    """True when the long side exceeds the short side by more than ``threshold``."""
    w, h = ratio_sides(aspect_ratio)
    return max(w, h) / min(w, h) > threshold


def tier_steps(caps: ProviderCapabilities, quality: str) -> int:
    if quality not in TIER_MULTIPLIERS:
        raise ValueError(f"Unknown quality tier '{quality}'. Expected one of {sorted(TIER_MULTIPLIERS)}")
    steps = _round_half_up(caps.base_inference_steps * TIER_MULTIPLIERS[quality])
    return max(1, min(steps, caps.max_inference_steps))


def compensated_steps(
    caps: ProviderCapabilities,
    aspect_ratio: str,
    quality: str = "standard",
    factor: float = DEFAULT_COMPENSATION_FACTOR,
    threshold: float = DEFAULT_COMPENSATION_THRESHOLD,
) -> int:
    steps = tier_steps(caps, quality)
    if caps.compensates_quality and needs_compensation(aspect_ratio, threshold):
        steps = _round_half_up(steps * factor)
    return min(steps, caps.max_inference_steps)
