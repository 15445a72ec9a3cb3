"""Shared fixtures for BlobCache tests.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

import threading

import pytest

from blobcache_core.cache.cache import CacheConfig, DiskCache


class FakeClock:
    """Manually advanced timestamp source."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self._lock = threading.Lock()

    def __call__(self) -> float:
        with self._lock:
            return self.now

    def advance(self, seconds: float = 1.0) -> float:
        with self._lock:
            self.now += seconds
            return self.now


class CountingFetcher:
    """Fetcher returning fixed payloads and counting calls per key."""

    def __init__(self, payloads=None, default: bytes = b"blob"):
        self.payloads = dict(payloads or {})
        self.default = default
        self.calls = {}
        self._lock = threading.Lock()

    def __call__(self, key: str) -> bytes:
        with self._lock:
            self.calls[key] = self.calls.get(key, 0) + 1
        return self.payloads.get(key, self.default)

    @property
    def total_calls(self) -> int:
        with self._lock:
            return sum(self.calls.values())


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage_dir(tmp_path):
    return tmp_path / "imagecache"


@pytest.fixture
def make_cache(storage_dir, clock):
    """Factory for caches that are closed after the test."""
    caches = []

    def factory(max_bytes: int = 1000, **options):
        options.setdefault("max_workers", 4)
        cache = DiskCache(
            CacheConfig(storage_dir=storage_dir, max_bytes=max_bytes, **options),
            clock=clock,
        )
        caches.append(cache)
        return cache

    yield factory

    for cache in caches:
        cache.close()


@pytest.fixture
def fetcher():
    return CountingFetcher()
