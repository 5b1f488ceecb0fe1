from __future__ import annotations

from .cache import (
    CacheEntry,
    SignedUrlCache,
    configure_default_cache,
    configure_default_cache_from_settings,
    get_cached_signed_url,
    get_cached_signed_urls,
)
from .r2 import ObjectStorage, R2Storage, convert_to_webp, file_extension, generate_image_key, webp_key

__all__ = [
    "CacheEntry",
    "SignedUrlCache",
    "configure_default_cache",
    "configure_default_cache_from_settings",
    "get_cached_signed_url",
    "get_cached_signed_urls",
    "ObjectStorage",
    "R2Storage",
    "convert_to_webp",
    "file_extension",
    "generate_image_key",
    "webp_key",
]
