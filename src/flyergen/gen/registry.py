from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Optional, Protocol

import requests

from flyergen.config import FlyerGenConfig, load_settings
from flyergen.errors import NoProviderAvailable

from .capabilities import get_capabilities
from .provider import ImageProvider
from .providers.fal import FalIdeogramProvider, FalQwenProvider
from .providers.huggingface import HuggingFaceProvider
from .providers.ideogram import IdeogramProvider
from .providers.stability import StabilityProvider
from .quality import DEFAULT_COMPENSATION_FACTOR, DEFAULT_COMPENSATION_THRESHOLD
from .types import ProviderEntry

logger = logging.getLogger(__name__)

ADAPTERS: dict[str, type[ImageProvider]] = {
    "ideogram": IdeogramProvider,
    "fal-qwen": FalQwenProvider,
    "fal-ideogram": FalIdeogramProvider,
    "huggingface": HuggingFaceProvider,
    "stability": StabilityProvider,
}

AdapterFactory = Callable[[ProviderEntry], ImageProvider]


@dataclass(frozen=True)
class ProviderSnapshot:
    entries: tuple[ProviderEntry, ...]
    default_provider: Optional[str] = None

    def get(self, provider_id: str) -> Optional[ProviderEntry]:
        for entry in self.entries:
            if entry.provider_id == provider_id:
                return entry
        return None


class ProviderConfigSource(Protocol):
    def load(self) -> ProviderSnapshot: ...


class StaticConfigSource:
    def __init__(self, entries: Iterable[ProviderEntry], default_provider: Optional[str] = None):
        self._snapshot = ProviderSnapshot(tuple(entries), default_provider)

    def load(self) -> ProviderSnapshot:
        return self._snapshot


class SettingsConfigSource:
    """Builds provider entries from ``flyergen.toml`` settings, reading API keys from the environment."""

    def __init__(self, config: FlyerGenConfig, environ: Optional[Mapping[str, str]] = None):
        self.config = config
        self.environ = environ if environ is not None else os.environ

    def load(self) -> ProviderSnapshot:
        entries = []
        for provider_id, settings in self.config.providers.items():
            api_key = self.environ.get(settings.api_key_env) if settings.api_key_env else None
            priority = settings.priority
            if priority is None:
                priority = get_capabilities(provider_id).priority
            options: dict[str, Any] = {}
            if settings.model:
                options["model"] = settings.model
            entries.append(
                ProviderEntry(
                    provider_id=provider_id,
                    enabled=settings.enabled,
                    api_key=api_key or None,
                    priority=priority,
                    base_url=settings.base_url,
                    timeout=settings.timeout,
                    options=options,
                )
            )
        return ProviderSnapshot(tuple(entries), self.config.default_provider)


@dataclass(frozen=True)
class _RegistryState:
    snapshot: ProviderSnapshot
    adapters: dict[str, ImageProvider] = field(default_factory=dict)


class ProviderRegistry:
    """Selects providers from an immutable configuration snapshot and caches their adapters.

    The snapshot is read once at construction. ``reload()`` re-reads the source
    and replaces snapshot and adapter cache together in a single assignment.
    """

    def __init__(
        self,
        source: ProviderConfigSource,
        session: Optional[requests.Session] = None,
        compensation_factor: float = DEFAULT_COMPENSATION_FACTOR,
        compensation_threshold: float = DEFAULT_COMPENSATION_THRESHOLD,
        adapter_factory: Optional[AdapterFactory] = None,
    ):
        self._source = source
        self._session = session
        self._compensation_factor = compensation_factor
        self._compensation_threshold = compensation_threshold
        self._adapter_factory = adapter_factory
        self._lock = threading.Lock()
        self._state = _RegistryState(source.load())

    @classmethod
    def from_config(
        cls,
        config: FlyerGenConfig,
        environ: Optional[Mapping[str, str]] = None,
        session: Optional[requests.Session] = None,
    ) -> "ProviderRegistry":
        return cls(
            SettingsConfigSource(config, environ),
            session=session,
            compensation_factor=config.generation.compensation_factor,
            compensation_threshold=config.generation.compensation_threshold,
        )

    @classmethod
    def from_config_file(cls, config_path: Optional[Path] = None) -> "ProviderRegistry":
        return cls.from_config(load_settings(config_path))

    @property
    def snapshot(self) -> ProviderSnapshot:
        return self._state.snapshot

    def candidates(self) -> list[ProviderEntry]:
        return [e for e in self._state.snapshot.entries if e.enabled and e.configured]

    def select_provider(self, preferred: Optional[str] = None) -> ProviderEntry:
        snapshot = self._state.snapshot
        candidates = [e for e in snapshot.entries if e.enabled and e.configured]
        if not candidates:
            raise NoProviderAvailable()
        by_id = {e.provider_id: e for e in candidates}

        if preferred:
            key = preferred.strip().lower()
            if key in by_id:
                return by_id[key]
            logger.info("Preferred provider '%s' is not available, selecting by priority", preferred)

        if snapshot.default_provider in by_id:
            return by_id[snapshot.default_provider]

        # max() keeps the first maximal element, so ties go to registration order
        return max(candidates, key=lambda e: e.priority)

    def get_adapter(self, provider_id: str) -> ImageProvider:
        state = self._state
        with self._lock:
            adapter = state.adapters.get(provider_id)
            if adapter is not None:
                return adapter
            entry = state.snapshot.get(provider_id)
            if entry is None or not entry.enabled or not entry.configured:
                raise NoProviderAvailable(
                    f"Provider '{provider_id}' is not enabled or has no API key configured"
                )
            adapter = self._build_adapter(entry)
            state.adapters[provider_id] = adapter
            return adapter

    def _build_adapter(self, entry: ProviderEntry) -> ImageProvider:
        if self._adapter_factory is not None:
            return self._adapter_factory(entry)
        adapter_cls = ADAPTERS.get(entry.provider_id)
        if adapter_cls is None:
            raise NoProviderAvailable(
                f"Unknown provider: '{entry.provider_id}'. Available providers: {sorted(ADAPTERS)}"
            )
        return adapter_cls(
            entry,
            session=self._session,
            compensation_factor=self._compensation_factor,
            compensation_threshold=self._compensation_threshold,
        )

    def reload(self) -> ProviderSnapshot:
        snapshot = self._source.load()
        self._state = _RegistryState(snapshot)
        logger.info("Provider configuration reloaded: %d providers", len(snapshot.entries))
        return snapshot

    def summary(self) -> list[dict[str, Any]]:
        snapshot = self._state.snapshot
        return [
            {
                "provider": e.provider_id,
                "enabled": e.enabled,
                "configured": e.configured,
                "priority": e.priority,
                "is_default": e.provider_id == snapshot.default_provider,
            }
            for e in snapshot.entries
        ]
