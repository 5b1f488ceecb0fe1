"""Stability AI Stable Image Core adapter."""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from typing import Any, Literal, Optional

from flyergen.errors import GenerationFailed

from ..provider import ImageProvider, probe_image
from ..types import GenerationRequest, GenerationResult

API_BASE_URL = "https://api.stability.ai"
OUTPUT_FORMAT = "png"


@dataclass(frozen=True)
class _StabilityResponse:
    data: bytes
    seed: Optional[int]
    finish_reason: Optional[str]
    kind: Literal["stability"] = "stability"


class StabilityProvider(ImageProvider):
    default_base_url = API_BASE_URL

    @property
    def provider_id(self) -> str:
        return "stability"

    def translate_aspect_ratio(self, aspect_ratio: str) -> str:
        return aspect_ratio

    def translate_quality(self, quality: str, aspect_ratio: str) -> None:
        # Stable Image Core exposes no step or speed control
        return None

    def build_payload(
        self, req: GenerationRequest, aspect: str, quality: None, seed: Optional[int]
    ) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "prompt": req.prompt,
            "aspect_ratio": aspect,
            "output_format": OUTPUT_FORMAT,
        }
        if seed is not None:
            fields["seed"] = str(seed)
        return fields

    def issue_call(self, payload: dict[str, Any]) -> _StabilityResponse:
        files = {name: (None, str(value)) for name, value in payload.items()}
        response = self._post(
            f"{self.base_url}/v2beta/stable-image/generate/core",
            headers={"Authorization": f"Bearer {self.api_key}", "accept": "application/json"},
            files=files,
        )
        body = self._json(response)
        encoded = body.get("image")
        if not encoded:
            raise GenerationFailed(self.provider_id, "response did not include an image")
        try:
            data = base64.b64decode(encoded)
        except (binascii.Error, ValueError) as e:
            raise GenerationFailed(self.provider_id, "image is not valid base64") from e

        finish_reason = body.get("finish_reason")
        if finish_reason == "CONTENT_FILTERED":
            raise GenerationFailed(self.provider_id, "image was rejected by the content filter")
        return _StabilityResponse(data=data, seed=body.get("seed"), finish_reason=finish_reason)

    def normalize_response(
        self, raw: _StabilityResponse, req: GenerationRequest, seed: Optional[int], elapsed_ms: int
    ) -> GenerationResult:
        width, height, mime_type = probe_image(raw.data)
        return GenerationResult(
            image=raw.data,
            provider_used=self.provider_id,
            aspect_ratio_actual=req.aspect_ratio,
            generation_time_ms=elapsed_ms,
            prompt=req.prompt,
            mime_type=mime_type or f"image/{OUTPUT_FORMAT}",
            width=width,
            height=height,
            cost=self.capabilities.cost_per_image,
            seed_used=raw.seed if raw.seed is not None else seed,
            provider_data={"finish_reason": raw.finish_reason},
        )
