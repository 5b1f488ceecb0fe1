"""Ideogram v3 adapter (direct API)."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Mapping, Optional

from flyergen.errors import GenerationFailed

from ..provider import ImageProvider
from ..types import GenerationRequest, GenerationResult

API_BASE_URL = "https://api.ideogram.ai"
RENDERING_SPEEDS = ("TURBO", "BALANCED", "QUALITY")
SPEED_BY_QUALITY = {"fast": "TURBO", "standard": "BALANCED", "high": "QUALITY"}
COST_MULTIPLIERS = {"fast": 0.8, "standard": 1.0, "high": 1.5}

# ~1.75 MP per ratio, every side divisible by 8
DIMENSIONS = {
    "1:1": (1320, 1320),
    "16:9": (1768, 992),
    "9:16": (992, 1768),
    "4:3": (1528, 1144),
    "3:4": (1144, 1528),
    "4:5": (1184, 1480),
    "5:7": (1120, 1568),
    "3:2": (1624, 1080),
    "2:3": (1080, 1624),
    "10:16": (1048, 1672),
    "16:10": (1672, 1048),
    "1:3": (768, 2288),
    "3:1": (2288, 768),
}


@dataclass(frozen=True)
class _IdeogramResponse:
    url: str
    seed: Optional[int]
    resolution: Optional[str]
    body: Mapping[str, Any] = field(default_factory=dict)
    kind: Literal["ideogram"] = "ideogram"


def upgrade_speed(speed: str) -> str:
    idx = RENDERING_SPEEDS.index(speed)
    return RENDERING_SPEEDS[min(idx + 1, len(RENDERING_SPEEDS) - 1)]


def _parse_resolution(resolution: Optional[str]) -> Optional[tuple[int, int]]:
    if not resolution or "x" not in resolution:
        return None
    w, _, h = resolution.partition("x")
    try:
        return int(w), int(h)
    except ValueError:
        return None


class IdeogramProvider(ImageProvider):
    default_base_url = API_BASE_URL

    @property
    def provider_id(self) -> str:
        return "ideogram"

    def translate_aspect_ratio(self, aspect_ratio: str) -> str:
        return aspect_ratio.replace(":", "x")

    def translate_quality(self, quality: str, aspect_ratio: str) -> str:
        speed = SPEED_BY_QUALITY[quality]
        if self.compensated(aspect_ratio):
            speed = upgrade_speed(speed)
        return speed

    def build_payload(
        self, req: GenerationRequest, aspect: str, quality: str, seed: Optional[int]
    ) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "prompt": req.prompt,
            "aspect_ratio": aspect,
            "rendering_speed": quality,
        }
        if seed is not None:
            fields["seed"] = str(seed)
        return fields

    def estimate_cost(self, req: GenerationRequest) -> float:
        return round(super().estimate_cost(req) * COST_MULTIPLIERS[req.quality], 4)

    def issue_call(self, payload: dict[str, Any]) -> _IdeogramResponse:
        # multipart/form-data: every field goes as a (None, value) file tuple
        files = {name: (None, str(value)) for name, value in payload.items()}
        response = self._post(
            f"{self.base_url}/v1/ideogram-v3/generate",
            headers={"Api-Key": self.api_key},
            files=files,
        )
        body = self._json(response)
        items = body.get("data") or []
        first = items[0] if items and isinstance(items[0], dict) else {}
        url = first.get("url") or body.get("url")
        if not url:
            raise GenerationFailed(self.provider_id, "response did not include an image URL")
        return _IdeogramResponse(
            url=url,
            seed=first.get("seed"),
            resolution=first.get("resolution"),
            body=body,
        )

    def normalize_response(
        self, raw: _IdeogramResponse, req: GenerationRequest, seed: Optional[int], elapsed_ms: int
    ) -> GenerationResult:
        width, height = _parse_resolution(raw.resolution) or DIMENSIONS.get(req.aspect_ratio, (None, None))
        speed = self.translate_quality(req.quality, req.aspect_ratio)
        return GenerationResult(
            image=raw.url,
            provider_used=self.provider_id,
            aspect_ratio_actual=req.aspect_ratio,
            generation_time_ms=elapsed_ms,
            prompt=req.prompt,
            width=width,
            height=height,
            cost=self.estimate_cost(req),
            seed_used=raw.seed if raw.seed is not None else seed,
            provider_data={"api_version": "v3", "rendering_speed": speed},
        )
