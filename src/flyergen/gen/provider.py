from __future__ import annotations

import io
import json
import logging
import random
import time
from abc import ABC, abstractmethod
from typing import Any, Optional

import requests
from PIL import Image

from flyergen.errors import GenerationFailed, InvalidRequest, UnsupportedAspectRatio

from .capabilities import ProviderCapabilities, get_capabilities
from .quality import DEFAULT_COMPENSATION_FACTOR, DEFAULT_COMPENSATION_THRESHOLD, needs_compensation
from .types import QUALITY_TIERS, GenerationRequest, GenerationResult, ProviderEntry

logger = logging.getLogger(__name__)

SEED_RANGE = 1_000_000
MAX_ERROR_DETAIL = 500


def summarize_error(response: requests.Response) -> str:
    detail = ""
    try:
        detail = json.dumps(response.json(), ensure_ascii=True)
    except ValueError:
        detail = response.text or ""
    detail = str(detail).strip().replace("\n", " ")
    if len(detail) > MAX_ERROR_DETAIL:
        detail = detail[:MAX_ERROR_DETAIL].rstrip() + "..."
    return detail


def probe_image(data: bytes) -> tuple[Optional[int], Optional[int], Optional[str]]:
    """Return (width, height, mime_type) read from image bytes, or Nones if unreadable."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            return img.width, img.height, Image.MIME.get(img.format or "")
    except OSError:
        return None, None, None


class ImageProvider(ABC):
    """Adapter for one text-to-image backend.

    ``generate`` runs the fixed pipeline
    ``validate -> translate_aspect_ratio -> translate_quality -> build_payload
    -> issue_call -> normalize_response``. Everything up to ``build_payload``
    is local; a rejected request never reaches the network.
    """

    default_base_url: str = ""

    def __init__(
        self,
        entry: ProviderEntry,
        session: Optional[requests.Session] = None,
        compensation_factor: float = DEFAULT_COMPENSATION_FACTOR,
        compensation_threshold: float = DEFAULT_COMPENSATION_THRESHOLD,
    ):
        self.entry = entry
        self.session = session if session is not None else requests.Session()
        self.compensation_factor = compensation_factor
        self.compensation_threshold = compensation_threshold

    @property
    @abstractmethod
    def provider_id(self) -> str: ...

    @property
    def capabilities(self) -> ProviderCapabilities:
        return get_capabilities(self.provider_id)

    @property
    def base_url(self) -> str:
        return (self.entry.base_url or self.default_base_url).rstrip("/")

    @property
    def api_key(self) -> str:
        return self.entry.api_key or ""

    def generate(self, req: GenerationRequest) -> GenerationResult:
        started = time.monotonic()
        self.validate(req)
        aspect = self.translate_aspect_ratio(req.aspect_ratio)
        quality = self.translate_quality(req.quality, req.aspect_ratio)
        seed = self.resolve_seed(req)
        payload = self.build_payload(req, aspect, quality, seed)

        logger.info("[%s] Generating %s image: %s", self.provider_id, req.aspect_ratio, req.prompt[:100])
        raw = self.issue_call(payload)
        elapsed_ms = int((time.monotonic() - started) * 1000)
        return self.normalize_response(raw, req, seed, elapsed_ms)

    def validate(self, req: GenerationRequest) -> None:
        caps = self.capabilities
        if not req.prompt or not req.prompt.strip():
            raise InvalidRequest("Prompt is required", provider_id=self.provider_id)
        if len(req.prompt) > caps.max_prompt_length:
            raise InvalidRequest(
                f"Prompt too long ({len(req.prompt)} chars). "
                f"Maximum length is {caps.max_prompt_length} characters",
                provider_id=self.provider_id,
            )
        self.validate_options(req)

    def validate_options(self, req: GenerationRequest) -> None:
        caps = self.capabilities
        if req.quality not in QUALITY_TIERS:
            raise InvalidRequest(
                f"Unknown quality '{req.quality}'. Expected one of {list(QUALITY_TIERS)}",
                provider_id=self.provider_id,
            )
        if req.aspect_ratio not in caps.supported_aspect_ratios:
            raise UnsupportedAspectRatio(req.aspect_ratio, caps.supported_aspect_ratios, self.provider_id)

    def estimate_cost(self, req: GenerationRequest) -> float:
        """Expected USD cost of ``generate(req)``, without touching the network.

        Raises:
            InvalidRequest: If the quality tier is unknown.
            UnsupportedAspectRatio: If the provider cannot render the ratio.
        """
        self.validate_options(req)
        return self.capabilities.cost_per_image

    def compensated(self, aspect_ratio: str) -> bool:
        return self.capabilities.compensates_quality and needs_compensation(
            aspect_ratio, self.compensation_threshold
        )

    def resolve_seed(self, req: GenerationRequest) -> Optional[int]:
        if not self.capabilities.supports_seeds:
            return None
        if req.seed is not None:
            return req.seed
        if req.randomize_seed:
            return random.randrange(SEED_RANGE)
        return None

    @abstractmethod
    def translate_aspect_ratio(self, aspect_ratio: str) -> Any: ...

    @abstractmethod
    def translate_quality(self, quality: str, aspect_ratio: str) -> Any: ...

    @abstractmethod
    def build_payload(
        self, req: GenerationRequest, aspect: Any, quality: Any, seed: Optional[int]
    ) -> dict[str, Any]: ...

    @abstractmethod
    def issue_call(self, payload: dict[str, Any]) -> Any:
        """Perform the HTTP call and parse the body into the adapter's response type."""
        raise NotImplementedError

    @abstractmethod
    def normalize_response(
        self, raw: Any, req: GenerationRequest, seed: Optional[int], elapsed_ms: int
    ) -> GenerationResult: ...

    def _post(self, url: str, **kwargs: Any) -> requests.Response:
        try:
            response = self.session.post(url, timeout=self.entry.timeout, **kwargs)
        except requests.Timeout as e:
            raise GenerationFailed(
                self.provider_id, f"request timed out after {self.entry.timeout:g}s"
            ) from e
        except requests.RequestException as e:
            raise GenerationFailed(self.provider_id, str(e)) from e

        try:
            response.raise_for_status()
        except requests.HTTPError as e:
            raise GenerationFailed(
                self.provider_id, summarize_error(response), status=response.status_code
            ) from e
        return response

    def _json(self, response: requests.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise GenerationFailed(self.provider_id, "invalid JSON in response") from e
        if not isinstance(data, dict):
            raise GenerationFailed(self.provider_id, f"unexpected response: {str(data)[:MAX_ERROR_DETAIL]}")
        return data
