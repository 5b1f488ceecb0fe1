"""Hugging Face Inference API adapter. Returns raw image bytes; no seed control."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Optional

from flyergen.errors import GenerationFailed

from ..provider import ImageProvider, probe_image
from ..quality import compensated_steps
from ..types import GenerationRequest, GenerationResult, ratio_sides

API_BASE_URL = "https://api-inference.huggingface.co"
DEFAULT_MODEL = "stabilityai/stable-diffusion-xl-base-1.0"
GUIDANCE_SCALE = 7.5
LONG_SIDE = 1024


@dataclass(frozen=True)
class _HuggingFaceResponse:
    data: bytes
    content_type: Optional[str]
    kind: Literal["huggingface"] = "huggingface"


def nominal_dimensions(aspect_ratio: str, long_side: int = LONG_SIDE) -> tuple[int, int]:
    w, h = ratio_sides(aspect_ratio)
    short = int(long_side * min(w, h) / max(w, h)) // 8 * 8
    return (long_side, short) if w >= h else (short, long_side)


class HuggingFaceProvider(ImageProvider):
    default_base_url = API_BASE_URL

    @property
    def provider_id(self) -> str:
        return "huggingface"

    @property
    def model(self) -> str:
        return str(self.entry.options.get("model") or DEFAULT_MODEL)

    def translate_aspect_ratio(self, aspect_ratio: str) -> tuple[int, int]:
        return nominal_dimensions(aspect_ratio)

    def translate_quality(self, quality: str, aspect_ratio: str) -> int:
        return compensated_steps(
            self.capabilities,
            aspect_ratio,
            quality,
            factor=self.compensation_factor,
            threshold=self.compensation_threshold,
        )

    def build_payload(
        self, req: GenerationRequest, aspect: tuple[int, int], quality: int, seed: Optional[int]
    ) -> dict[str, Any]:
        width, height = aspect
        return {
            "inputs": req.prompt,
            "parameters": {
                "guidance_scale": GUIDANCE_SCALE,
                "num_inference_steps": quality,
                "width": width,
                "height": height,
            },
        }

    def issue_call(self, payload: dict[str, Any]) -> _HuggingFaceResponse:
        response = self._post(
            f"{self.base_url}/models/{self.model}",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            json=payload,
        )
        content_type = response.headers.get("content-type")
        if content_type and not content_type.startswith("image/"):
            raise GenerationFailed(
                self.provider_id, f"expected image bytes, got {content_type}", status=response.status_code
            )
        if not response.content:
            raise GenerationFailed(self.provider_id, "empty response body")
        return _HuggingFaceResponse(data=response.content, content_type=content_type)

    def normalize_response(
        self, raw: _HuggingFaceResponse, req: GenerationRequest, seed: Optional[int], elapsed_ms: int
    ) -> GenerationResult:
        width, height, mime_type = probe_image(raw.data)
        if width is None or height is None:
            width, height = self.translate_aspect_ratio(req.aspect_ratio)
        return GenerationResult(
            image=raw.data,
            provider_used=self.provider_id,
            aspect_ratio_actual=req.aspect_ratio,
            generation_time_ms=elapsed_ms,
            prompt=req.prompt,
            mime_type=mime_type or raw.content_type or "image/png",
            width=width,
            height=height,
            cost=self.capabilities.cost_per_image,
            seed_used=None,
            provider_data={
                "model": self.model,
                "guidance_scale": GUIDANCE_SCALE,
                "num_inference_steps": self.translate_quality(req.quality, req.aspect_ratio),
            },
        )
