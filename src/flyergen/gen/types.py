from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Literal, Mapping, Optional, Union

Quality = Literal["fast", "standard", "high"]
QUALITY_TIERS: tuple[str, ...] = ("fast", "standard", "high")

ASPECT_RATIOS: tuple[str, ...] = (
    "1:1",
    "16:9",
    "9:16",
    "4:3",
    "3:4",
    "4:5",
    "5:7",
    "3:2",
    "2:3",
    "10:16",
    "16:10",
    "1:3",
    "3:1",
)


def normalize_aspect_ratio(value: str) -> str:
    """Accept "16x9" and " 16 : 9 " spellings and return "16:9"."""
    return value.strip().lower().replace("x", ":").replace(" ", "")


def ratio_sides(aspect_ratio: str) -> tuple[int, int]:
    w, _, h = aspect_ratio.partition(":")
    try:
        width, height = int(w), int(h)
    except ValueError as e:
        raise ValueError(f"Malformed aspect ratio: {aspect_ratio!r}") from e
    if width <= 0 or height <= 0:
        raise ValueError(f"Malformed aspect ratio: {aspect_ratio!r}")
    return width, height


def exact_dimensions(aspect_ratio: str, long_side: int = 1024, multiple: int = 8) -> tuple[int, int]:
    """Largest (width, height) with exactly ``aspect_ratio``, both sides a multiple of ``multiple``."""
    w, h = ratio_sides(aspect_ratio)
    scale = long_side // (max(w, h) * multiple) * multiple
    if scale == 0:
        raise ValueError(f"Aspect ratio {aspect_ratio!r} does not fit in {long_side}px")
    return w * scale, h * scale


def actual_aspect_ratio(width: int, height: int, requested: str) -> str:
    """Return ``requested`` when the pixels match it, else the reduced ratio of the pixels."""
    w, h = ratio_sides(requested)
    if width * h == height * w:
        return requested
    divisor = math.gcd(width, height)
    return f"{width // divisor}:{height // divisor}"


@dataclass(frozen=True)
class GenerationRequest:
    prompt: str
    aspect_ratio: str
    user_id: str
    quality: Quality = "standard"
    seed: Optional[int] = None
    randomize_seed: bool = False
    preferred_provider: Optional[str] = None


@dataclass(frozen=True)
class GenerationResult:
    image: Union[str, bytes]
    provider_used: str
    aspect_ratio_actual: str
    generation_time_ms: int
    prompt: str
    mime_type: str = "image/png"
    width: Optional[int] = None
    height: Optional[int] = None
    cost: float = 0.0
    seed_used: Optional[int] = None
    error: Optional[str] = None
    provider_data: Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_url(self) -> bool:
        return isinstance(self.image, str) and self.image.startswith(("http://", "https://"))


@dataclass(frozen=True)
class ProviderEntry:
    """Runtime configuration for one provider, resolved from settings and the environment."""

    provider_id: str
    enabled: bool = True
    api_key: Optional[str] = None
    priority: int = 0
    base_url: Optional[str] = None
    timeout: float = 60.0
    options: Mapping[str, Any] = field(default_factory=dict)

    @property
    def configured(self) -> bool:
        return bool(self.api_key)
