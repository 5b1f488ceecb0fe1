"""Static per-provider capability metadata."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, FrozenSet

_COMMON_RATIOS = frozenset({"1:1", "16:9", "9:16", "4:3", "3:4", "3:2", "2:3"})


@dataclass(frozen=True)
class ProviderCapabilities:
    name: str
    supported_aspect_ratios: FrozenSet[str]
    supports_seeds: bool
    base_inference_steps: int
    max_inference_steps: int
    priority: int
    max_prompt_length: int
    cost_per_image: float
    compensates_quality: bool = False


_CAPABILITIES: Dict[str, ProviderCapabilities] = {
    "ideogram": ProviderCapabilities(
        name="ideogram",
        supported_aspect_ratios=_COMMON_RATIOS | {"10:16", "16:10", "1:3", "3:1"},
        supports_seeds=True,
        base_inference_steps=0,
        max_inference_steps=0,
        priority=100,
        max_prompt_length=2000,
        cost_per_image=0.08,
        compensates_quality=True,
    ),
    "fal-ideogram": ProviderCapabilities(
        name="fal-ideogram",
        supported_aspect_ratios=_COMMON_RATIOS | {"4:5", "5:7", "10:16", "16:10", "1:3", "3:1"},
        supports_seeds=True,
        base_inference_steps=0,
        max_inference_steps=0,
        priority=102,
        max_prompt_length=2000,
        cost_per_image=0.08,
    ),
    "fal-qwen": ProviderCapabilities(
        name="fal-qwen",
        supported_aspect_ratios=_COMMON_RATIOS | {"4:5", "5:7"},
        supports_seeds=True,
        base_inference_steps=25,
        max_inference_steps=50,
        priority=101,
        max_prompt_length=2000,
        cost_per_image=0.05,
        compensates_quality=True,
    ),
    "huggingface": ProviderCapabilities(
        name="huggingface",
        supported_aspect_ratios=_COMMON_RATIOS,
        supports_seeds=False,
        base_inference_steps=20,
        max_inference_steps=40,
        priority=90,
        max_prompt_length=500,
        cost_per_image=0.01,
    ),
    "stability": ProviderCapabilities(
        name="stability",
        supported_aspect_ratios=frozenset({"1:1", "16:9", "9:16", "3:2", "2:3", "4:5"}),
        supports_seeds=True,
        base_inference_steps=0,
        max_inference_steps=0,
        priority=80,
        max_prompt_length=10000,
        cost_per_image=0.03,
    ),
}

KNOWN_PROVIDERS: tuple[str, ...] = tuple(_CAPABILITIES)


def get_capabilities(provider: str) -> ProviderCapabilities:
    key = provider.strip().lower()
    if key not in _CAPABILITIES:
        raise ValueError(f"Unknown provider '{provider}'")
    return _CAPABILITIES[key]
