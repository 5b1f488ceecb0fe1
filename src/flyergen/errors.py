from __future__ import annotations

from typing import Iterable, Optional


class FlyerGenError(Exception):
    """Base class for every error raised by the generation pipeline."""


class NoProviderAvailable(FlyerGenError):
    def __init__(self, message: str = "No enabled image provider with credentials is configured"):
        super().__init__(message)


class UnsupportedAspectRatio(FlyerGenError):
    def __init__(self, requested: str, supported: Iterable[str], provider_id: Optional[str] = None):
        self.requested = requested
        self.supported = tuple(sorted(supported))
        self.provider_id = provider_id
        who = f" by provider '{provider_id}'" if provider_id else ""
        super().__init__(
            f"Unsupported aspect ratio '{requested}'{who}. "
            f"Supported ratios: {', '.join(self.supported)}"
        )


class InvalidRequest(FlyerGenError):
    def __init__(self, message: str, provider_id: Optional[str] = None):
        self.provider_id = provider_id
        super().__init__(message)


class GenerationFailed(FlyerGenError):
    """Raised when the upstream provider call fails or times out."""

    def __init__(self, provider_id: str, detail: str, status: Optional[int] = None):
        self.provider_id = provider_id
        self.detail = detail
        self.status = status
        parts = [f"{provider_id} generation failed"]
        if status is not None:
            parts[0] += f" ({status})"
        if detail:
            parts.append(detail)
        super().__init__(": ".join(parts))


class PromptFragmentUnavailable(FlyerGenError):
    def __init__(self, category: str, subcategory: str, detail: str = ""):
        self.category = category
        self.subcategory = subcategory
        message = f"No active prompt fragment for {category}/{subcategory}"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class SignedUrlGenerationFailed(FlyerGenError):
    def __init__(self, object_key: str, detail: str = ""):
        self.object_key = object_key
        self.detail = detail
        message = f"Failed to sign URL for '{object_key}'"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class StorageError(FlyerGenError):
    def __init__(self, message: str, object_key: Optional[str] = None):
        self.object_key = object_key
        super().__init__(message)
