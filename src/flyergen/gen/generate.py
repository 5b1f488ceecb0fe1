from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

import requests
import yaml

from flyergen.config import ConfigError, FlyerGenConfig, load_settings
from flyergen.errors import StorageError
from flyergen.storage.r2 import ObjectStorage, convert_to_webp, file_extension, generate_image_key, webp_key

from .fragments import InMemoryFragmentStore, PromptFragmentStore, YamlFragmentStore, default_fragments
from .prompting import PromptAssembler, normalize_prompt
from .registry import ProviderRegistry
from .types import GenerationRequest, GenerationResult, normalize_aspect_ratio

logger = logging.getLogger(__name__)

DOWNLOAD_TIMEOUT = 60.0


def build_fragment_store(config: FlyerGenConfig) -> InMemoryFragmentStore:
    """Fragments from ``[prompts] fragments_file`` first, then the packaged defaults."""
    fragments = []
    path = config.prompts.fragments_file
    if path is not None:
        try:
            fragments.extend(YamlFragmentStore.from_file(path).fragments)
        except (OSError, yaml.YAMLError, ValueError) as e:
            raise ConfigError(f"Failed to load prompt fragments: {e}", path=path) from e
    if config.prompts.use_default_fragments:
        fragments.extend(default_fragments())
    return InMemoryFragmentStore(fragments)


def compose_base_prompt(prompt: str, quality_suffix: str) -> str:
    return normalize_prompt(", ".join(p for p in (prompt, quality_suffix) if p and p.strip()))


def generate_image(
    prompt: str,
    aspect_ratio: str,
    event_type: Optional[str] = None,
    event_details: Optional[Mapping[str, Any]] = None,
    style_name: Optional[str] = None,
    preferred_provider: Optional[str] = None,
    quality: Optional[str] = None,
    *,
    user_id: str = "anonymous",
    seed: Optional[int] = None,
    randomize_seed: bool = False,
    registry: Optional[ProviderRegistry] = None,
    fragment_store: Optional[PromptFragmentStore] = None,
    settings: Optional[FlyerGenConfig] = None,
) -> GenerationResult:
    """Select a provider, assemble the prompt, and run one generation.

    Provider selection and prompt assembly are local; the only network call is
    the adapter's. Errors propagate as ``FlyerGenError`` subclasses, retrying is
    left to the caller.
    """
    if settings is None:
        settings = load_settings()
    if registry is None:
        registry = ProviderRegistry.from_config(settings)
    if fragment_store is None:
        fragment_store = build_fragment_store(settings)

    ratio = normalize_aspect_ratio(aspect_ratio)
    entry = registry.select_provider(preferred_provider)
    adapter = registry.get_adapter(entry.provider_id)

    final_prompt = PromptAssembler(fragment_store).assemble(
        compose_base_prompt(prompt, settings.generation.base_prompt),
        event_type,
        event_details,
        style_name,
        max_length=adapter.capabilities.max_prompt_length,
    )

    request = GenerationRequest(
        prompt=final_prompt,
        aspect_ratio=ratio,
        user_id=user_id,
        quality=quality or settings.generation.default_quality,
        seed=seed,
        randomize_seed=randomize_seed,
        preferred_provider=preferred_provider,
    )

    logger.info(
        "Generating with %s (%s, %s) for user %s",
        entry.provider_id,
        request.aspect_ratio,
        request.quality,
        user_id,
    )
    result = adapter.generate(request)
    logger.info(
        "Generated with %s in %dms, cost $%.4f",
        result.provider_used,
        result.generation_time_ms,
        result.cost,
    )
    return result


def persist_result(
    result: GenerationResult,
    storage: ObjectStorage,
    user_id: str,
    image_id: str,
    session: Optional[requests.Session] = None,
    webp: bool = False,
) -> str:
    """Upload the generated image to object storage and return its key.

    With ``webp`` set the image is re-encoded as WebP and stored under the
    ``.webp`` key; if Pillow cannot decode it the original bytes are kept.
    """
    if isinstance(result.image, bytes):
        data = result.image
        content_type = result.mime_type
    else:
        http = session if session is not None else requests.Session()
        try:
            response = http.get(result.image, timeout=DOWNLOAD_TIMEOUT)
            response.raise_for_status()
        except requests.RequestException as e:
            raise StorageError(f"Failed to download generated image: {e}") from e
        data = response.content
        content_type = response.headers.get("content-type") or result.mime_type

    content_type = content_type.split(";")[0].strip()
    key = generate_image_key(user_id, image_id, file_extension(content_type))
    if webp and file_extension(content_type) != "webp":
        try:
            data = convert_to_webp(data)
        except OSError as e:
            logger.warning("WebP conversion failed for %s, storing %s: %s", key, content_type, e)
        else:
            key, content_type = webp_key(key), "image/webp"
    return storage.upload(key, data, content_type)
