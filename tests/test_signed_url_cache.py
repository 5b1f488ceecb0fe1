from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

import pytest

from flyergen.config import CacheSettings, FlyerGenConfig, StorageSettings
from flyergen.errors import SignedUrlGenerationFailed, StorageError
from flyergen.storage import cache as cache_module
from flyergen.storage.cache import SignedUrlCache, cache_key
from flyergen.storage.r2 import R2Storage


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class CountingStorage:
    def __init__(self, failing: frozenset[str] = frozenset()):
        self.calls: list[tuple[str, int]] = []
        self.failing = failing
        self._lock = threading.Lock()

    def sign(self, key: str, expires_in: int) -> str:
        with self._lock:
            self.calls.append((key, expires_in))
            n = len(self.calls)
        if key in self.failing:
            raise RuntimeError(f"cannot sign {key}")
        return f"https://r2/{key}?exp={expires_in}&n={n}"

    def upload(self, key: str, data: bytes, content_type: str) -> str:
        return key

    def delete(self, key: str) -> None:
        return None


class TestSignedUrlCache:
    def test_second_call_within_ttl_hits_cache(self) -> None:
        storage = CountingStorage()
        clock = FakeClock()
        cache = SignedUrlCache(storage, clock=clock)

        first = cache.get_signed_url("u/1.png", 3600)
        clock.advance(60)
        second = cache.get_signed_url("u/1.png", 3600)

        assert first == second
        assert len(storage.calls) == 1

    def test_resigns_after_ttl(self) -> None:
        storage = CountingStorage()
        clock = FakeClock()
        cache = SignedUrlCache(storage, clock=clock)

        first = cache.get_signed_url("u/1.png", 3600)
        clock.advance(50 * 60)
        second = cache.get_signed_url("u/1.png", 3600)

        assert first != second
        assert len(storage.calls) == 2

    def test_entries_expire_before_signature(self) -> None:
        storage = CountingStorage()
        clock = FakeClock()
        cache = SignedUrlCache(storage, ttl_seconds=3000, clock=clock)

        cache.get_signed_url("short.png", 600)
        entry = cache.stats()["entries"][0]
        assert entry["expires_at"] == int(clock.now * 1000) + 500 * 1000
        assert entry["expires_at"] < int(clock.now * 1000) + 600 * 1000

    def test_expiry_is_part_of_the_key(self) -> None:
        storage = CountingStorage()
        cache = SignedUrlCache(storage, clock=FakeClock())
        cache.get_signed_url("a.png", 3600)
        cache.get_signed_url("a.png", 600)
        assert len(storage.calls) == 2
        keys = {e["key"] for e in cache.stats()["entries"]}
        assert keys == {cache_key("a.png", 3600), cache_key("a.png", 600)} == {"a.png_3600", "a.png_600"}

    def test_falls_back_to_direct_signing(self) -> None:
        storage = MagicMock()
        storage.sign.side_effect = [RuntimeError("transient"), "https://r2/direct"]
        cache = SignedUrlCache(storage, clock=FakeClock())

        assert cache.get_signed_url("k", 3600) == "https://r2/direct"
        assert storage.sign.call_count == 2
        assert cache.stats()["size"] == 0

    def test_raises_when_direct_signing_fails(self) -> None:
        cache = SignedUrlCache(CountingStorage(failing=frozenset({"bad"})), clock=FakeClock())
        with pytest.raises(SignedUrlGenerationFailed) as exc_info:
            cache.get_signed_url("bad")
        assert exc_info.value.object_key == "bad"

    def test_batch_omits_failed_keys(self) -> None:
        storage = CountingStorage(failing=frozenset({"b"}))
        cache = SignedUrlCache(storage, clock=FakeClock())
        urls = cache.get_signed_urls(["a", "b", "c"], 3600)
        assert set(urls) == {"a", "c"}
        assert urls["a"].startswith("https://r2/a")

    def test_batch_empty(self) -> None:
        assert SignedUrlCache(CountingStorage(), clock=FakeClock()).get_signed_urls([]) == {}

    def test_cleanup_removes_expired(self) -> None:
        clock = FakeClock()
        cache = SignedUrlCache(CountingStorage(), clock=clock)
        cache.get_signed_url("old", 3600)
        clock.advance(40 * 60)
        cache.get_signed_url("new", 3600)
        clock.advance(15 * 60)

        assert cache.cleanup() == 1
        assert [e["key"] for e in cache.stats()["entries"]] == ["new_3600"]

    def test_clear(self) -> None:
        cache = SignedUrlCache(CountingStorage(), clock=FakeClock())
        cache.get_signed_url("a")
        cache.clear()
        assert cache.stats() == {"size": 0, "entries": []}

    def test_sweeper_thread_starts_and_stops(self) -> None:
        cache = SignedUrlCache(CountingStorage(), sweep_interval=0.01)
        cache.start()
        cache.start()
        cache.stop()
        assert cache._thread is None

    def test_sweeper_removes_expired_entries(self) -> None:
        clock = FakeClock()
        cache = SignedUrlCache(CountingStorage(), sweep_interval=0.01, clock=clock)
        cache.get_signed_url("old", 3600)
        clock.advance(3600)

        cache.start()
        try:
            deadline = time.monotonic() + 5
            while cache.stats()["size"] and time.monotonic() < deadline:
                time.sleep(0.01)
        finally:
            cache.stop()
        assert cache.stats()["size"] == 0

    def test_concurrent_hits_share_one_signature(self) -> None:
        storage = CountingStorage()
        cache = SignedUrlCache(storage, clock=FakeClock())
        first = cache.get_signed_url("shared.png", 3600)

        with ThreadPoolExecutor(max_workers=16) as pool:
            urls = list(pool.map(lambda _: cache.get_signed_url("shared.png", 3600), range(200)))

        assert set(urls) == {first}
        assert len(storage.calls) == 1

    def test_concurrent_misses_fill_the_map(self) -> None:
        storage = CountingStorage()
        cache = SignedUrlCache(storage, clock=FakeClock())
        keys = [f"u/{i}.png" for i in range(100)]

        with ThreadPoolExecutor(max_workers=16) as pool:
            urls = list(pool.map(lambda k: cache.get_signed_url(k, 3600), keys))

        assert all(url.startswith(f"https://r2/{k}?") for k, url in zip(keys, urls))
        assert cache.stats()["size"] == 100
        assert len(storage.calls) == 100


class TestDefaultCache:
    def test_unconfigured(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(cache_module, "_default_cache", None)
        with pytest.raises(StorageError):
            cache_module.get_cached_signed_url("k")

    def test_module_level_helpers(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(cache_module, "_default_cache", None)
        storage = CountingStorage(failing=frozenset({"x"}))
        cache_module.configure_default_cache(storage, start=False)

        url = cache_module.get_cached_signed_url("k")
        assert cache_module.get_cached_signed_url("k") == url
        assert cache_module.get_cached_signed_urls(["k", "x"]) == {"k": url}
        assert storage.calls.count(("k", 3600)) == 1

    def test_configured_from_settings(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(cache_module, "_default_cache", None)
        config = FlyerGenConfig(cache=CacheSettings(ttl_seconds=600, sweep_interval_seconds=30))
        storage = CountingStorage()

        cache = cache_module.configure_default_cache_from_settings(config, storage=storage, start=False)

        assert cache_module.get_default_cache() is cache
        assert cache.storage is storage
        assert cache.ttl_seconds == 600
        assert cache.sweep_interval == 30

    def test_settings_build_r2_storage(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(cache_module, "_default_cache", None)
        config = FlyerGenConfig(storage=StorageSettings(account_id="acct", bucket="flyers"))
        cache = cache_module.configure_default_cache_from_settings(config, environ={}, start=False)
        assert isinstance(cache.storage, R2Storage)
        assert cache.storage.bucket == "flyers"
        assert cache.sweep_interval == 300
