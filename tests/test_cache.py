"""Tests for DiskCache and the fetch coordinator.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

import json
import os
import shutil
import threading
import time
from pathlib import Path

import pytest

from blobcache_core.cache.cache import CacheConfig, DiskCache, WriteMode
from blobcache_core.cache.coordinator import FetchState
from blobcache_core.cache.entry import file_name_for_key
from blobcache_core.cache.sink import CallbackSink, FutureSink, Sink
from blobcache_core.errors import CacheClosed, FetchFailed, StorageUnavailable
from blobcache_core.eviction.lru import LRUPolicy


class GatedFetcher:
    """Fetcher that blocks until its gate opens."""

    def __init__(self, data=b"payload", error=None):
        self.data = data
        self.error = error
        self.gate = threading.Event()
        self.calls = 0
        self._lock = threading.Lock()

    def __call__(self, key):
        with self._lock:
            self.calls += 1
        self.gate.wait(timeout=5)
        if self.error is not None:
            raise self.error
        return self.data


class ExplodingSink(Sink):
    """Sink whose callbacks raise."""

    def on_success(self, handle):
        raise RuntimeError("sink blew up")

    def on_failure(self, key, error):
        raise RuntimeError("sink blew up")


def blob_files(storage_dir, key):
    """Files in the storage directory belonging to a key, temp files included."""
    prefix = file_name_for_key(key)
    return [p for p in storage_dir.iterdir() if p.name.startswith(prefix)]


def failing_fetcher(key):
    raise AssertionError(f"unexpected fetch of {key}")


class TestDiskCache:
    """Tests for DiskCache."""

    def test_miss_then_hit(self, make_cache, fetcher):
        """Test the first request fetches and the second is served from disk."""
        cache = make_cache()
        fetcher.payloads["k"] = b"image bytes"

        first = cache.fetch("k", fetcher, timeout=5)
        second = cache.fetch("k", fetcher, timeout=5)

        assert first.read_bytes() == b"image bytes"
        assert second.path == first.path
        assert second.key == "k"
        assert fetcher.calls == {"k": 1}

        stats = cache.get_stats()
        assert stats.hits == 1
        assert stats.misses == 1
        assert stats.entry_count == 1
        assert stats.size_bytes == len(b"image bytes")

    def test_handle(self, make_cache, fetcher, storage_dir):
        """Test the handle exposes the stored file."""
        cache = make_cache()
        fetcher.payloads["k"] = b"0123456789"

        handle = cache.fetch("k", fetcher, timeout=5)

        assert handle.path == storage_dir / file_name_for_key("k")
        assert handle.size == 10
        assert handle.cache_key == str(handle.path)
        with handle.open() as f:
            assert f.read() == b"0123456789"

    def test_hit_is_delivered_synchronously(self, make_cache, fetcher):
        """Test a hit reaches the sink before request returns."""
        cache = make_cache()
        cache.fetch("k", fetcher, timeout=5)
        received = []

        state = cache.request("k", failing_fetcher, CallbackSink(received.append))

        assert state is FetchState.DONE
        assert len(received) == 1
        assert received[0].key == "k"

    def test_concurrent_requests_fetch_once(self, make_cache):
        """Test N requests for an uncached key share one fetch."""
        cache = make_cache()
        fetcher = GatedFetcher(data=b"shared")
        sinks = [FutureSink() for _ in range(8)]

        states = [cache.request("k", fetcher, sink) for sink in sinks]
        assert all(state is FetchState.FETCHING for state in states)
        assert cache.in_flight("k")

        fetcher.gate.set()
        handles = [sink.result(timeout=5) for sink in sinks]

        assert fetcher.calls == 1
        assert len({handle.path for handle in handles}) == 1
        assert handles[0].read_bytes() == b"shared"
        assert not cache.in_flight("k")

        stats = cache.get_stats()
        assert stats.fetches == 1
        assert stats.misses == 1
        assert stats.deduplicated == 7

    def test_two_threads_slow_fetch(self, make_cache, storage_dir):
        """Test two concurrent callers with a slow fetcher leave one file."""
        cache = make_cache()
        calls = []
        results = []
        done = threading.Semaphore(0)
        barrier = threading.Barrier(2)

        def slow_fetch(key):
            calls.append(key)
            time.sleep(0.1)
            return b"slow bytes"

        def on_success(handle):
            results.append(handle)
            done.release()

        def on_failure(key, error):
            results.append(error)
            done.release()

        def caller():
            barrier.wait()
            cache.request("k", slow_fetch, CallbackSink(on_success, on_failure))

        threads = [threading.Thread(target=caller) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert done.acquire(timeout=5)
        assert done.acquire(timeout=5)

        assert calls == ["k"]
        assert len(results) == 2
        assert all(r.read_bytes() == b"slow bytes" for r in results)
        assert len(blob_files(storage_dir, "k")) == 1

    def test_fetch_failure(self, make_cache, storage_dir):
        """Test a raising fetcher surfaces FetchFailed and leaves no file."""
        cache = make_cache()

        def broken(key):
            raise OSError("connection reset")

        with pytest.raises(FetchFailed) as excinfo:
            cache.fetch("k", broken, timeout=5)

        assert excinfo.value.key == "k"
        assert isinstance(excinfo.value.__cause__, OSError)
        assert blob_files(storage_dir, "k") == []
        assert "k" not in cache
        assert not cache.in_flight("k")
        assert cache.get_stats().fetch_failures == 1

    def test_failure_is_not_cached(self, make_cache, fetcher):
        """Test a failed key is fetched again on the next request."""
        cache = make_cache()

        def broken(key):
            raise OSError("timeout")

        with pytest.raises(FetchFailed):
            cache.fetch("k", broken, timeout=5)

        handle = cache.fetch("k", fetcher, timeout=5)
        assert handle.read_bytes() == b"blob"

    def test_failure_reaches_all_waiters(self, make_cache):
        """Test every waiter sees the same error."""
        cache = make_cache()
        fetcher = GatedFetcher(error=OSError("404"))
        sinks = [FutureSink() for _ in range(3)]

        for sink in sinks:
            cache.request("k", fetcher, sink)
        fetcher.gate.set()

        errors = [sink.future.exception(timeout=5) for sink in sinks]

        assert fetcher.calls == 1
        assert isinstance(errors[0], FetchFailed)
        assert errors[0] is errors[1] is errors[2]

    def test_non_bytes_result_fails(self, make_cache):
        """Test a fetcher returning text is a failure."""
        cache = make_cache()

        with pytest.raises(FetchFailed):
            cache.fetch("k", lambda key: "not bytes", timeout=5)

    def test_bytearray_result_accepted(self, make_cache):
        """Test bytes-like results are stored."""
        cache = make_cache()

        handle = cache.fetch("k", lambda key: bytearray(b"abc"), timeout=5)

        assert handle.read_bytes() == b"abc"

    def test_raising_sink_does_not_block_others(self, make_cache):
        """Test one broken sink does not stop delivery to the rest."""
        cache = make_cache()
        fetcher = GatedFetcher()
        good = FutureSink()

        cache.request("k", fetcher, ExplodingSink())
        cache.request("k", fetcher, good)
        fetcher.gate.set()

        assert good.result(timeout=5).read_bytes() == b"payload"

    def test_store_failure_reaches_all_waiters(self, make_cache, storage_dir, monkeypatch):
        """Test a failed rename fails every waiter and leaves no files."""
        cache = make_cache()
        target = file_name_for_key("k")
        real_replace = os.replace

        def replace(src, dst):
            if Path(dst).name == target:
                raise OSError(28, "No space left on device")
            return real_replace(src, dst)

        monkeypatch.setattr(os, "replace", replace)
        fetcher = GatedFetcher()
        sinks = [FutureSink(), FutureSink()]

        for sink in sinks:
            cache.request("k", fetcher, sink)
        fetcher.gate.set()

        errors = [sink.future.exception(timeout=5) for sink in sinks]

        assert fetcher.calls == 1
        assert isinstance(errors[0], StorageUnavailable)
        assert errors[0] is errors[1]
        assert blob_files(storage_dir, "k") == []
        assert "k" not in cache
        assert not cache.in_flight("k")
        assert cache.get_stats().fetch_failures == 1

    def test_eviction_error_fails_request(self, storage_dir, clock):
        """Test an error inside the eviction policy still reaches the waiter."""

        class BrokenPolicy(LRUPolicy):
            def choose_eviction(self, store, protect=()):
                raise RuntimeError("policy bug")

        cache = DiskCache(
            CacheConfig(storage_dir=storage_dir, max_bytes=10, max_workers=2),
            eviction=BrokenPolicy(),
            clock=clock,
        )
        fetcher = lambda key: b"x" * 20
        try:
            with pytest.raises(FetchFailed) as excinfo:
                cache.fetch("k", fetcher, timeout=5)

            assert isinstance(excinfo.value.__cause__, RuntimeError)
            assert not cache.in_flight("k")
            assert "k" not in cache
            assert cache.aggregate_bytes == 0
            assert blob_files(storage_dir, "k") == []

            # The key is not stuck: a second request gets its own outcome
            with pytest.raises(FetchFailed):
                cache.fetch("k", fetcher, timeout=5)
            assert cache.get_stats().fetch_failures == 2
        finally:
            cache.close()

    def test_unencodable_key_fails_request(self, make_cache, storage_dir):
        """Test a key that cannot be turned into a file name fails cleanly."""
        cache = make_cache()
        key = "img-\ud800"

        with pytest.raises(FetchFailed) as excinfo:
            cache.fetch(key, lambda k: b"x", timeout=5)

        assert isinstance(excinfo.value.__cause__, UnicodeEncodeError)
        assert not cache.in_flight(key)
        with pytest.raises(FetchFailed):
            cache.fetch(key, lambda k: b"x", timeout=5)
        assert [p.name for p in storage_dir.iterdir() if not p.name.startswith("index.")] == []

    def test_scenario_eviction(self, make_cache, fetcher, clock, storage_dir):
        """Test A(500), B(400), C(300) with a 1000 byte budget evicts A."""
        cache = make_cache(max_bytes=1000)
        fetcher.payloads.update({"A": b"a" * 500, "B": b"b" * 400, "C": b"c" * 300})

        cache.fetch("A", fetcher, timeout=5)
        clock.advance()
        cache.fetch("B", fetcher, timeout=5)
        clock.advance()
        cache.fetch("C", fetcher, timeout=5)

        assert "A" not in cache
        assert "B" in cache
        assert "C" in cache
        assert cache.aggregate_bytes == 700
        assert blob_files(storage_dir, "A") == []
        assert len(blob_files(storage_dir, "B")) == 1
        assert cache.get_stats().evictions == 1

    def test_hit_refreshes_recency(self, make_cache, fetcher, clock):
        """Test a hit protects an entry from the next eviction."""
        cache = make_cache(max_bytes=1000)
        fetcher.payloads.update({"A": b"a" * 400, "B": b"b" * 400, "C": b"c" * 400})

        cache.fetch("A", fetcher, timeout=5)
        clock.advance()
        cache.fetch("B", fetcher, timeout=5)
        clock.advance()
        cache.fetch("A", fetcher, timeout=5)
        clock.advance()
        cache.fetch("C", fetcher, timeout=5)

        assert set(cache) == {"A", "C"}
        assert fetcher.calls["A"] == 1

    def test_oversized_entry_admitted_then_evicted(self, make_cache, fetcher, clock, storage_dir):
        """Test an entry above the budget stays until the next insertion."""
        cache = make_cache(max_bytes=1000)
        fetcher.payloads.update({"big": b"x" * 1500, "small": b"y" * 10})

        cache.fetch("big", fetcher, timeout=5)
        assert "big" in cache
        assert cache.aggregate_bytes == 1500

        clock.advance()
        cache.fetch("small", fetcher, timeout=5)

        assert "big" not in cache
        assert cache.aggregate_bytes == 10
        assert blob_files(storage_dir, "big") == []

    def test_aggregate_matches_entries(self, make_cache, fetcher, clock):
        """Test the aggregate equals the sum of entry sizes under churn."""
        cache = make_cache(max_bytes=1000)
        for i in range(30):
            fetcher.payloads[f"k{i}"] = b"z" * (37 * (i % 7) + 1)

        for i in range(30):
            cache.fetch(f"k{i}", fetcher, timeout=5)
            clock.advance()

        sizes = [cache.get_entry(key).size_bytes for key in cache]
        assert cache.aggregate_bytes == sum(sizes)
        assert cache.aggregate_bytes <= 1000

    def test_persists_across_instances(self, make_cache, fetcher):
        """Test entries survive closing and reopening the directory."""
        cache = make_cache()
        fetcher.payloads["k"] = b"persisted"
        cache.fetch("k", fetcher, timeout=5)
        cache.close()

        reopened = make_cache()
        handle = reopened.fetch("k", failing_fetcher, timeout=5)

        assert handle.read_bytes() == b"persisted"

    def test_reload_drops_deleted_file(self, make_cache, fetcher, storage_dir):
        """Test metadata pointing at a deleted file is dropped on load."""
        cache = make_cache()
        fetcher.payloads.update({"A": b"a" * 100, "B": b"b" * 200})
        cache.fetch("A", fetcher, timeout=5)
        cache.fetch("B", fetcher, timeout=5)
        cache.close()

        (storage_dir / file_name_for_key("A")).unlink()
        reopened = make_cache()

        assert "A" not in reopened
        assert "B" in reopened
        assert reopened.aggregate_bytes == 200

    def test_lazy_load(self, make_cache, storage_dir):
        """Test nothing is read or cleaned until first use."""
        storage_dir.mkdir(parents=True)
        orphan = storage_dir / "orphan"
        orphan.write_bytes(b"left over")

        cache = make_cache()
        assert orphan.exists()

        assert len(cache) == 0
        assert not orphan.exists()

    def test_storage_unavailable_on_create(self, make_cache, storage_dir):
        """Test a storage path that is a file cannot back a cache."""
        storage_dir.write_bytes(b"not a directory")

        with pytest.raises(StorageUnavailable):
            make_cache()

    def test_storage_directory_recreated(self, make_cache, fetcher, storage_dir):
        """Test a removed directory is recreated and stale entries dropped."""
        cache = make_cache()
        cache.fetch("A", fetcher, timeout=5)

        shutil.rmtree(storage_dir)
        handle = cache.fetch("B", fetcher, timeout=5)

        assert handle.read_bytes() == b"blob"
        assert "A" not in cache
        assert "B" in cache

    def test_closed_cache_rejects_requests(self, make_cache, fetcher):
        """Test requests after close fail with CacheClosed."""
        cache = make_cache()
        cache.close()

        with pytest.raises(CacheClosed):
            cache.fetch("k", fetcher, timeout=5)
        assert cache.closed

    def test_remove(self, make_cache, fetcher, storage_dir):
        """Test remove deletes entry and file."""
        cache = make_cache()
        cache.fetch("k", fetcher, timeout=5)

        assert cache.remove("k")
        assert not cache.remove("k")
        assert blob_files(storage_dir, "k") == []
        assert cache.aggregate_bytes == 0

    def test_clear(self, make_cache, fetcher, storage_dir):
        """Test clear removes all blobs but keeps metadata."""
        cache = make_cache()
        cache.fetch("a", fetcher, timeout=5)
        cache.fetch("b", fetcher, timeout=5)

        assert cache.clear() == 2
        assert len(cache) == 0
        assert [p.name for p in storage_dir.iterdir()] == ["index.json"]

    def test_get_handle_without_fetch(self, make_cache, fetcher):
        """Test get_handle never fetches."""
        cache = make_cache()

        assert cache.get_handle("k") is None
        cache.fetch("k", fetcher, timeout=5)
        assert cache.get_handle("k").key == "k"

    def test_write_through_saves_metadata(self, make_cache, fetcher, storage_dir):
        """Test metadata is saved right after an insertion."""
        cache = make_cache()
        fetcher.payloads["k"] = b"12345"

        cache.fetch("k", fetcher, timeout=5)

        document = json.loads((storage_dir / "index.json").read_text())
        assert document["entries"]["k"]["size"] == 5
        assert document["entries"]["k"]["file"] == file_name_for_key("k")

    def test_write_behind_flushes_on_close(self, make_cache, fetcher, storage_dir):
        """Test write-behind metadata is saved by close()."""
        cache = make_cache(write_mode=WriteMode.WRITE_BEHIND, flush_interval=60.0)

        cache.fetch("k", fetcher, timeout=5)
        assert not (storage_dir / "index.json").exists()

        cache.close()
        document = json.loads((storage_dir / "index.json").read_text())
        assert "k" in document["entries"]

    def test_write_behind_background_flush(self, make_cache, fetcher, storage_dir):
        """Test the background thread saves dirty metadata."""
        cache = make_cache(write_mode=WriteMode.WRITE_BEHIND, flush_interval=0.05)
        cache.fetch("k", fetcher, timeout=5)

        deadline = time.time() + 5
        while time.time() < deadline and not (storage_dir / "index.json").exists():
            time.sleep(0.01)

        assert (storage_dir / "index.json").exists()

    def test_msgpack_metadata(self, make_cache, fetcher, storage_dir):
        """Test the MessagePack metadata format end to end."""
        cache = make_cache(metadata_format="msgpack")
        cache.fetch("k", fetcher, timeout=5)
        cache.close()

        assert (storage_dir / "index.msgpack").exists()
        assert "k" in make_cache(metadata_format="msgpack")

    def test_context_manager(self, storage_dir, fetcher):
        """Test context manager closes the cache."""
        with DiskCache(CacheConfig(storage_dir=storage_dir, max_bytes=1000)) as cache:
            cache.fetch("k", fetcher, timeout=5)

        assert cache.closed


class TestCacheConfig:
    """Tests for cache configuration."""

    @pytest.mark.parametrize("options", [
        {"max_bytes": 0},
        {"max_bytes": -5},
        {"max_bytes": 1.5},
        {"max_bytes": 100, "max_workers": 0},
        {"max_bytes": 100, "flush_interval": 0},
        {"max_bytes": 100, "metadata_format": "yaml"},
    ])
    def test_invalid_config(self, storage_dir, options):
        """Test invalid values raise ValueError."""
        with pytest.raises(ValueError):
            CacheConfig(storage_dir=storage_dir, **options).validate()

    def test_absolute_path(self, tmp_path, monkeypatch):
        """Test relative directories resolve against the working directory."""
        monkeypatch.chdir(tmp_path)

        config = CacheConfig(storage_dir="images", max_bytes=100)

        assert config.absolute_path == Path(os.getcwd()) / "images"


class TestCacheStats:
    """Tests for cache statistics."""

    def test_hit_rate(self, make_cache, fetcher):
        """Test hit rate calculation."""
        cache = make_cache()

        cache.fetch("k", fetcher, timeout=5)  # miss
        cache.fetch("k", fetcher, timeout=5)  # hit
        cache.fetch("k", fetcher, timeout=5)  # hit

        stats = cache.get_stats()
        assert stats.hit_rate == pytest.approx(2 / 3, rel=0.01)
        assert stats.to_dict()["hits"] == 2

    def test_reset_stats(self, make_cache, fetcher):
        """Test stats reset."""
        cache = make_cache()
        cache.fetch("k", fetcher, timeout=5)

        cache.reset_stats()
        stats = cache.get_stats()

        assert stats.hits == 0
        assert stats.misses == 0
        assert stats.entry_count == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
