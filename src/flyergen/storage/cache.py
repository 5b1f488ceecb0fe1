from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping, Optional

from flyergen.config import FlyerGenConfig
from flyergen.errors import SignedUrlGenerationFailed, StorageError

from .r2 import ObjectStorage, R2Storage

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN = 3600
DEFAULT_TTL_SECONDS = 50 * 60
DEFAULT_SWEEP_INTERVAL = 5 * 60
MAX_BATCH_WORKERS = 8


@dataclass(frozen=True)
class CacheEntry:
    key: str
    url: str
    expires_at: int  # epoch ms


def cache_key(object_key: str, expires_in: int) -> str:
    return f"{object_key}_{expires_in}"


class SignedUrlCache:
    """Process-local cache of pre-signed object URLs.

    Entries live for ``min(ttl_seconds, expires_in * 5/6)`` so a cached URL is
    always handed out well before its signature lapses. All map access goes
    through one lock; an optional daemon thread sweeps expired entries.
    """

    def __init__(
        self,
        storage: ObjectStorage,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
        clock: Callable[[], float] = time.time,
    ):
        self.storage = storage
        self.ttl_seconds = ttl_seconds
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _ttl_ms(self, expires_in: int) -> int:
        return int(min(self.ttl_seconds, expires_in * 5 / 6) * 1000)

    def get_signed_url(self, key: str, expires_in: int = DEFAULT_EXPIRES_IN) -> str:
        ck = cache_key(key, expires_in)
        now = self._now_ms()
        with self._lock:
            entry = self._entries.get(ck)
            if entry is not None and entry.expires_at > now:
                return entry.url

        try:
            url = self.storage.sign(key, expires_in)
        except Exception as e:
            logger.warning("Cached signing failed for %s (%s); trying direct signing", key, e)
            return self._sign_direct(key, expires_in)

        with self._lock:
            self._entries[ck] = CacheEntry(ck, url, now + self._ttl_ms(expires_in))
        return url

    def _sign_direct(self, key: str, expires_in: int) -> str:
        try:
            return self.storage.sign(key, expires_in)
        except Exception as e:
            raise SignedUrlGenerationFailed(key, str(e)) from e

    def get_signed_urls(self, keys: Iterable[str], expires_in: int = DEFAULT_EXPIRES_IN) -> dict[str, str]:
        """Sign many keys concurrently. Keys that fail are logged and left out of the result."""
        unique = list(dict.fromkeys(keys))
        if not unique:
            return {}

        def _one(key: str) -> Optional[str]:
            try:
                return self.get_signed_url(key, expires_in)
            except SignedUrlGenerationFailed as e:
                logger.error("%s", e)
                return None

        with ThreadPoolExecutor(max_workers=min(MAX_BATCH_WORKERS, len(unique))) as pool:
            urls = list(pool.map(_one, unique))
        return {key: url for key, url in zip(unique, urls) if url is not None}

    def cleanup(self) -> int:
        now = self._now_ms()
        with self._lock:
            expired = [k for k, e in self._entries.items() if e.expires_at <= now]
            for k in expired:
                del self._entries[k]
        if expired:
            logger.debug("Removed %d expired signed URLs", len(expired))
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> dict[str, Any]:
        with self._lock:
            entries = [{"key": e.key, "expires_at": e.expires_at} for e in self._entries.values()]
        return {"size": len(entries), "entries": entries}

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._sweep_loop, name="signed-url-cache-sweep", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self.sweep_interval)
            self._thread = None

    def _sweep_loop(self) -> None:
        while not self._stop.wait(self.sweep_interval):
            self.cleanup()


_default_cache: Optional[SignedUrlCache] = None


def configure_default_cache(
    storage: ObjectStorage,
    ttl_seconds: int = DEFAULT_TTL_SECONDS,
    sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
    start: bool = True,
) -> SignedUrlCache:
    global _default_cache
    if _default_cache is not None:
        _default_cache.stop()
    _default_cache = SignedUrlCache(storage, ttl_seconds=ttl_seconds, sweep_interval=sweep_interval)
    if start:
        _default_cache.start()
    return _default_cache


def configure_default_cache_from_settings(
    config: FlyerGenConfig,
    environ: Optional[Mapping[str, str]] = None,
    storage: Optional[ObjectStorage] = None,
    start: bool = True,
) -> SignedUrlCache:
    """Install the default cache using ``[storage]`` and ``[cache]`` settings."""
    if storage is None:
        storage = R2Storage.from_settings(config.storage, environ)
    return configure_default_cache(
        storage,
        ttl_seconds=config.cache.ttl_seconds,
        sweep_interval=config.cache.sweep_interval_seconds,
        start=start,
    )


def get_default_cache() -> SignedUrlCache:
    if _default_cache is None:
        raise StorageError("Signed URL cache is not configured; call configure_default_cache() first")
    return _default_cache


def get_cached_signed_url(key: str, expires_in: int = DEFAULT_EXPIRES_IN) -> str:
    return get_default_cache().get_signed_url(key, expires_in)


def get_cached_signed_urls(keys: Iterable[str], expires_in: int = DEFAULT_EXPIRES_IN) -> dict[str, str]:
    return get_default_cache().get_signed_urls(keys, expires_in)
