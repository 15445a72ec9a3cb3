"""BlobCache Disk Cache - Size-Bounded Persistent Blob Cache.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from enum import Enum, auto
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, Optional, Union

from blobcache_core.cache.coordinator import Fetcher, FetchCoordinator, FetchState
from blobcache_core.cache.entry import CacheEntry
from blobcache_core.cache.sink import CacheHandle, FutureSink, Sink
from blobcache_core.cache.store import EntryStore
from blobcache_core.errors import CacheClosed, StorageUnavailable
from blobcache_core.eviction.lru import LRUPolicy
from blobcache_core.eviction.policy import EvictionPolicy
from blobcache_core.protocol.serializer import get_serializer
from blobcache_core.store.blobs import BlobDirectory
from blobcache_core.store.metadata import MetadataStore

logger = logging.getLogger(__name__)


class WriteMode(Enum):
    """Metadata persistence modes."""

    WRITE_THROUGH = auto()    # Save metadata after every insert/remove
    WRITE_BEHIND = auto()     # Save dirty metadata from a background thread


@dataclass
class CacheConfig:
    """Cache configuration.

    Attributes:
        storage_dir: Directory holding blobs and metadata (created if absent)
        max_bytes: Byte budget for all cached blobs
        max_workers: Fetch worker threads (None means CPU count)
        metadata_format: Metadata encoding, "json" or "msgpack"
        write_mode: When metadata is saved
        flush_interval: Seconds between write-behind flushes
    """

    storage_dir: Union[str, Path]
    max_bytes: int
    max_workers: Optional[int] = None
    metadata_format: str = "json"
    write_mode: WriteMode = WriteMode.WRITE_THROUGH
    flush_interval: float = 5.0

    def validate(self) -> None:
        """Check configuration values.

        Raises:
            ValueError: If a value is out of range
        """
        if self.storage_dir is None or str(self.storage_dir) == "":
            raise ValueError("storage_dir is required")
        if isinstance(self.max_bytes, bool) or not isinstance(self.max_bytes, int):
            raise ValueError(f"max_bytes must be an int, got {self.max_bytes!r}")
        if self.max_bytes <= 0:
            raise ValueError(f"max_bytes must be positive, got {self.max_bytes}")
        if self.max_workers is not None and self.max_workers <= 0:
            raise ValueError(f"max_workers must be positive, got {self.max_workers}")
        if self.flush_interval <= 0:
            raise ValueError(f"flush_interval must be positive, got {self.flush_interval}")
        try:
            get_serializer(self.metadata_format)
        except KeyError as e:
            raise ValueError(f"Unknown metadata_format {self.metadata_format!r}") from e

    @property
    def absolute_path(self) -> Path:
        """Get the absolute storage directory."""
        return Path(os.path.abspath(os.fspath(self.storage_dir)))


@dataclass
class CacheStats:
    """Cache statistics.

    Attributes:
        hits: Requests served from disk
        misses: Requests that started a fetch
        deduplicated: Requests that joined an in-flight fetch
        fetches: Fetches dispatched
        fetch_failures: Fetches that failed
        evictions: Entries evicted
        entry_count: Current entry count
        size_bytes: Current aggregate size
        started_at: When cache started
    """

    hits: int = 0
    misses: int = 0
    deduplicated: int = 0
    fetches: int = 0
    fetch_failures: int = 0
    evictions: int = 0
    entry_count: int = 0
    size_bytes: int = 0
    started_at: Optional[datetime] = None

    @property
    def hit_rate(self) -> float:
        """Calculate hit rate."""
        total = self.hits + self.misses + self.deduplicated
        return self.hits / total if total > 0 else 0.0

    def reset(self) -> None:
        """Reset counters."""
        self.hits = 0
        self.misses = 0
        self.deduplicated = 0
        self.fetches = 0
        self.fetch_failures = 0
        self.evictions = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "deduplicated": self.deduplicated,
            "fetches": self.fetches,
            "fetch_failures": self.fetch_failures,
            "evictions": self.evictions,
            "entry_count": self.entry_count,
            "size_bytes": self.size_bytes,
            "hit_rate": self.hit_rate,
        }


class DiskCache:
    """Persistent, size-bounded cache of fetched blobs.

    Features:
    - One fetch per key, however many concurrent requests
    - Least recently used eviction under a byte budget
    - Metadata survives restarts; orphaned files are cleaned on load
    - Lazy loading: nothing is read from disk until first use
    - Thread-safe operations

    Example:
        cache = DiskCache(CacheConfig("/var/cache/app/imagecache", 10 * 1024 * 1024))

        # Asynchronous
        cache.request(url, http_get, CallbackSink(show_image))

        # Blocking
        handle = cache.fetch(url, http_get, timeout=30)
        data = handle.read_bytes()
    """

    def __init__(
        self,
        config: CacheConfig,
        eviction: Optional[EvictionPolicy] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize cache.

        Args:
            config: Cache configuration
            eviction: Eviction policy (LRU by default)
            clock: Timestamp source for recency

        Raises:
            ValueError: If the configuration is invalid
            StorageUnavailable: If the storage directory cannot be created
        """
        config.validate()
        self.config = config
        self.storage_dir = config.absolute_path
        self._clock = clock

        self._blobs = BlobDirectory(self.storage_dir)
        self._blobs.ensure()
        self._metadata = MetadataStore(
            self._blobs,
            serializer=get_serializer(config.metadata_format),
            clock=clock,
        )
        self._eviction = eviction or LRUPolicy()

        self._lock = threading.RLock()
        self._store: Optional[EntryStore] = None
        self._stats = CacheStats(started_at=datetime.now())
        self._dirty = False
        self._closed = False

        max_workers = config.max_workers or os.cpu_count() or 1
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix=f"DiskCache-{self.storage_dir.name}",
        )
        self._coordinator = FetchCoordinator(
            self._lock,
            self._executor,
            lookup=self._lookup_handle,
            store_blob=self._store_blob,
            stats=self._stats,
        )

        # Write-behind flush thread
        self._flush_thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        if config.write_mode == WriteMode.WRITE_BEHIND:
            self._flush_thread = threading.Thread(
                target=self._flush_loop,
                daemon=True,
                name=f"DiskCache-{self.storage_dir.name}-flush",
            )
            self._flush_thread.start()

        logger.info(f"Cache opened at {self.storage_dir} (max {config.max_bytes} bytes)")

    @property
    def entries(self) -> EntryStore:
        """Get the entry store, loading it from disk on first access."""
        with self._lock:
            if self._store is None:
                self._store = self._metadata.load()
            return self._store

    @property
    def max_bytes(self) -> int:
        """Get the byte budget."""
        return self.config.max_bytes

    @property
    def aggregate_bytes(self) -> int:
        """Get the total size of cached blobs."""
        return self.entries.aggregate_bytes

    @property
    def closed(self) -> bool:
        """Check whether close() was called."""
        return self._closed

    def request(self, key: str, fetcher: Fetcher, sink: Sink) -> FetchState:
        """Deliver the blob for a key to a sink, fetching it if needed.

        Never blocks on the fetcher: a hit is delivered on the calling
        thread, a miss is delivered from a worker thread.

        Args:
            key: Cache key (e.g. source URL)
            fetcher: Returns the bytes for a key; raising means failure
            sink: Receives a CacheHandle or an error

        Returns:
            DONE for a hit, FETCHING if pending, FAILED if it failed at once
        """
        if self._closed:
            sink.on_failure(key, CacheClosed(f"Cache at {self.storage_dir} is closed", key=key))
            return FetchState.FAILED

        try:
            self._ensure_storage()
        except StorageUnavailable as e:
            logger.error(f"Storage unavailable for {key}: {e}")
            sink.on_failure(key, StorageUnavailable(str(e), key=key))
            return FetchState.FAILED

        return self._coordinator.request(key, fetcher, sink)

    def fetch(
        self,
        key: str,
        fetcher: Fetcher,
        timeout: Optional[float] = None,
    ) -> CacheHandle:
        """Get a handle for a key, waiting for the fetch if needed.

        Args:
            key: Cache key
            fetcher: Returns the bytes for a key
            timeout: Seconds to wait

        Returns:
            CacheHandle

        Raises:
            CacheError: If the fetch or store failed
            concurrent.futures.TimeoutError: If the timeout elapsed
        """
        sink = FutureSink()
        self.request(key, fetcher, sink)
        return sink.result(timeout=timeout)

    def get_handle(self, key: str) -> Optional[CacheHandle]:
        """Get a handle for a cached key without fetching.

        Args:
            key: Cache key

        Returns:
            CacheHandle or None
        """
        with self._lock:
            return self._lookup_handle(key)

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        """Get entry metadata without updating recency."""
        return self.entries.peek(key)

    def contains(self, key: str) -> bool:
        """Check if key is cached."""
        return key in self.entries

    def in_flight(self, key: str) -> bool:
        """Check if a fetch for the key is running."""
        return self._coordinator.in_flight(key)

    def remove(self, key: str) -> bool:
        """Remove a key and its blob file.

        Args:
            key: Cache key

        Returns:
            True if the key was cached
        """
        with self._lock:
            entry = self.entries.remove(key)
            if entry is None:
                return False
            self._blobs.delete_entry(entry)
            self._mark_dirty(persist=True)
            return True

    def clear(self) -> int:
        """Remove all entries and their files.

        Returns:
            Number of entries removed
        """
        with self._lock:
            removed = self.entries.clear()
            for entry in removed:
                self._blobs.delete_entry(entry)
            self._mark_dirty(persist=True)
            return len(removed)

    def flush(self) -> bool:
        """Save metadata if it changed since the last save.

        Returns:
            True if metadata is on disk and current
        """
        with self._lock:
            if self._store is None or not self._dirty:
                return True
            self._dirty = False
            saved = self._metadata.save(self._store)
            if not saved:
                self._dirty = True
            return saved

    def close(self) -> None:
        """Wait for running fetches, stop background work and flush."""
        if self._closed:
            return
        self._closed = True

        self._executor.shutdown(wait=True)
        self._stop_event.set()
        if self._flush_thread:
            self._flush_thread.join(timeout=5.0)
            self._flush_thread = None

        self.flush()
        logger.info(f"Cache at {self.storage_dir} closed")

    def get_stats(self) -> CacheStats:
        """Get cache statistics.

        Returns:
            CacheStats instance
        """
        with self._lock:
            store = self.entries
            self._stats.entry_count = len(store)
            self._stats.size_bytes = store.aggregate_bytes
            return self._stats

    def reset_stats(self) -> None:
        """Reset statistics."""
        with self._lock:
            self._stats.reset()

    def _ensure_storage(self) -> None:
        """Recreate the storage directory if it vanished."""
        if self._blobs.path.is_dir():
            return

        self._blobs.ensure()
        with self._lock:
            if self._store is not None and len(self._store):
                logger.warning(
                    f"Cache folder {self.storage_dir} was removed; dropping {len(self._store)} entries"
                )
                self._store.clear()
                self._mark_dirty(persist=True)

    def _lookup_handle(self, key: str) -> Optional[CacheHandle]:
        """Touch a cached key and build its handle (cache lock held)."""
        entry = self.entries.get(key)
        if entry is None:
            return None
        self._dirty = True
        return CacheHandle(key=key, path=self._blobs.path_for(entry.file_name))

    def _store_blob(self, key: str, data: bytes) -> CacheHandle:
        """Write fetched bytes, index them and enforce the budget."""
        temp_path = self._blobs.write_temp(key, data)

        with self._lock:
            file_name, size = self._blobs.commit(key, temp_path)
            try:
                return self._index_blob(key, file_name, size)
            except Exception:
                # Undo the insertion so a failed store leaves no blob behind
                self.entries.remove(key)
                self._blobs.delete(file_name)
                self._mark_dirty(persist=True)
                raise

    def _index_blob(self, key: str, file_name: str, size: int) -> CacheHandle:
        """Index a committed blob and enforce the budget (cache lock held)."""
        store = self.entries

        logger.debug(f"Adding new object to disk cache: {key}")
        store.put(key, CacheEntry(
            key=key,
            file_name=file_name,
            size_bytes=size,
            last_access=self._clock(),
        ))

        if store.aggregate_bytes > self.config.max_bytes:
            evicted = self._eviction.enforce_budget(
                store,
                self.config.max_bytes,
                self._blobs.delete_entry,
                protect=(key,),
            )
            self._stats.evictions += len(evicted)

        self._mark_dirty(persist=True)
        return CacheHandle(key=key, path=self._blobs.path_for(file_name))

    def _mark_dirty(self, persist: bool = False) -> None:
        """Record a metadata change; save now in write-through mode."""
        self._dirty = True
        if persist and self.config.write_mode == WriteMode.WRITE_THROUGH:
            self.flush()

    def _flush_loop(self) -> None:
        """Background write-behind loop."""
        while not self._stop_event.wait(self.config.flush_interval):
            try:
                self.flush()
            except Exception as e:
                logger.error(f"Flush error: {e}")

    def __contains__(self, key: str) -> bool:
        """Check if key is cached."""
        return self.contains(key)

    def __len__(self) -> int:
        """Get entry count."""
        return len(self.entries)

    def __iter__(self) -> Iterator[str]:
        """Iterate over cached keys."""
        return iter(self.entries.keys())

    def __enter__(self) -> "DiskCache":
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        self.close()

    def __repr__(self) -> str:
        return f"DiskCache(path={str(self.storage_dir)!r}, max_bytes={self.config.max_bytes})"


__all__ = ["DiskCache", "CacheConfig", "CacheStats", "WriteMode"]
