"""Fal-hosted adapters: Qwen Image and Ideogram v3."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Mapping, Optional, Union

from flyergen.errors import GenerationFailed

from ..provider import ImageProvider
from ..quality import compensated_steps
from ..types import GenerationRequest, GenerationResult, actual_aspect_ratio, exact_dimensions
from .ideogram import SPEED_BY_QUALITY

API_BASE_URL = "https://fal.run"
QWEN_MODEL = "fal-ai/qwen-image"
IDEOGRAM_MODEL = "fal-ai/ideogram/v3"

QWEN_COST_PER_MEGAPIXEL = 0.05
GUIDANCE_COMPENSATED = 4.5
GUIDANCE_DEFAULT = 3.0

IMAGE_SIZE_DIMENSIONS = {
    "square_hd": (1024, 1024),
    "landscape_16_9": (1024, 576),
    "portrait_16_9": (576, 1024),
    "landscape_4_3": (1024, 768),
    "portrait_4_3": (768, 1024),
}

# Ratios outside this enum are sent as an explicit {"width", "height"} object.
IMAGE_SIZE_PRESETS = {
    "1:1": "square_hd",
    "16:9": "landscape_16_9",
    "9:16": "portrait_16_9",
    "4:3": "landscape_4_3",
    "3:4": "portrait_4_3",
}

ImageSize = Union[str, dict[str, int]]


def image_size(aspect_ratio: str) -> ImageSize:
    if aspect_ratio in IMAGE_SIZE_PRESETS:
        return IMAGE_SIZE_PRESETS[aspect_ratio]
    width, height = exact_dimensions(aspect_ratio)
    return {"width": width, "height": height}


def image_size_dimensions(size: ImageSize) -> tuple[int, int]:
    if isinstance(size, dict):
        return size["width"], size["height"]
    return IMAGE_SIZE_DIMENSIONS[size]


def megapixel_cost(width: int, height: int) -> float:
    return round(width * height / 1_000_000 * QWEN_COST_PER_MEGAPIXEL, 4)


@dataclass(frozen=True)
class _FalImage:
    url: str
    width: Optional[int] = None
    height: Optional[int] = None
    content_type: Optional[str] = None


@dataclass(frozen=True)
class _FalResponse:
    images: tuple[_FalImage, ...]
    seed: Optional[int]
    timings: Mapping[str, Any] = field(default_factory=dict)
    kind: Literal["fal"] = "fal"


class FalProvider(ImageProvider):
    default_base_url = API_BASE_URL
    default_model: str = ""

    @property
    def model(self) -> str:
        return str(self.entry.options.get("model") or self.default_model).strip("/")

    def issue_call(self, payload: dict[str, Any]) -> _FalResponse:
        response = self._post(
            f"{self.base_url}/{self.model}",
            headers={
                "Authorization": f"Key {self.api_key}",
                "Content-Type": "application/json",
                "accept": "application/json",
            },
            json=payload,
        )
        body = self._json(response)
        images = tuple(
            _FalImage(
                url=img["url"],
                width=img.get("width"),
                height=img.get("height"),
                content_type=img.get("content_type"),
            )
            for img in body.get("images") or []
            if isinstance(img, dict) and img.get("url")
        )
        if not images:
            raise GenerationFailed(self.provider_id, "response did not include any images")
        return _FalResponse(images=images, seed=body.get("seed"), timings=body.get("timings") or {})

    def translate_aspect_ratio(self, aspect_ratio: str) -> ImageSize:
        return image_size(aspect_ratio)

    def _dimensions(self, raw: _FalResponse, size: ImageSize) -> tuple[int, int]:
        first = raw.images[0]
        if first.width and first.height:
            return first.width, first.height
        return image_size_dimensions(size)

    def _result(
        self,
        raw: _FalResponse,
        req: GenerationRequest,
        seed: Optional[int],
        elapsed_ms: int,
        width: int,
        height: int,
        cost: float,
        extra: Mapping[str, Any],
    ) -> GenerationResult:
        first = raw.images[0]
        return GenerationResult(
            image=first.url,
            provider_used=self.provider_id,
            aspect_ratio_actual=actual_aspect_ratio(width, height, req.aspect_ratio),
            generation_time_ms=elapsed_ms,
            prompt=req.prompt,
            mime_type=first.content_type or "image/png",
            width=width,
            height=height,
            cost=cost,
            seed_used=raw.seed if raw.seed is not None else seed,
            provider_data={"model": self.model, "timings": dict(raw.timings), **extra},
        )


class FalQwenProvider(FalProvider):
    default_model = QWEN_MODEL

    @property
    def provider_id(self) -> str:
        return "fal-qwen"

    def translate_quality(self, quality: str, aspect_ratio: str) -> int:
        return compensated_steps(
            self.capabilities,
            aspect_ratio,
            quality,
            factor=self.compensation_factor,
            threshold=self.compensation_threshold,
        )

    def estimate_cost(self, req: GenerationRequest) -> float:
        self.validate_options(req)
        return megapixel_cost(*image_size_dimensions(image_size(req.aspect_ratio)))

    def guidance_scale(self, aspect_ratio: str) -> float:
        return GUIDANCE_COMPENSATED if self.compensated(aspect_ratio) else GUIDANCE_DEFAULT

    def build_payload(
        self, req: GenerationRequest, aspect: ImageSize, quality: int, seed: Optional[int]
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "prompt": req.prompt,
            "image_size": aspect,
            "num_inference_steps": quality,
            "guidance_scale": self.guidance_scale(req.aspect_ratio),
            "num_images": 1,
            "enable_safety_checker": True,
            "output_format": "png",
        }
        if seed is not None:
            payload["seed"] = seed
        return payload

    def normalize_response(
        self, raw: _FalResponse, req: GenerationRequest, seed: Optional[int], elapsed_ms: int
    ) -> GenerationResult:
        size = self.translate_aspect_ratio(req.aspect_ratio)
        width, height = self._dimensions(raw, size)
        cost = megapixel_cost(width, height)
        return self._result(
            raw,
            req,
            seed,
            elapsed_ms,
            width,
            height,
            cost,
            {
                "image_size": size,
                "num_inference_steps": self.translate_quality(req.quality, req.aspect_ratio),
                "guidance_scale": self.guidance_scale(req.aspect_ratio),
            },
        )


class FalIdeogramProvider(FalProvider):
    default_model = IDEOGRAM_MODEL

    @property
    def provider_id(self) -> str:
        return "fal-ideogram"

    def translate_quality(self, quality: str, aspect_ratio: str) -> str:
        return SPEED_BY_QUALITY[quality]

    def build_payload(
        self, req: GenerationRequest, aspect: ImageSize, quality: str, seed: Optional[int]
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "prompt": req.prompt,
            "image_size": aspect,
            "rendering_speed": quality,
            "num_images": 1,
            "expand_prompt": False,
        }
        if seed is not None:
            payload["seed"] = seed
        return payload

    def normalize_response(
        self, raw: _FalResponse, req: GenerationRequest, seed: Optional[int], elapsed_ms: int
    ) -> GenerationResult:
        size = self.translate_aspect_ratio(req.aspect_ratio)
        width, height = self._dimensions(raw, size)
        return self._result(
            raw,
            req,
            seed,
            elapsed_ms,
            width,
            height,
            self.capabilities.cost_per_image,
            {
                "image_size": size,
                "rendering_speed": self.translate_quality(req.quality, req.aspect_ratio),
            },
        )
