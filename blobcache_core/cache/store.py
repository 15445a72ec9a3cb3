"""BlobCache Entry Store - Thread-Safe Key to Entry Index.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Container, Dict, Iterable, Iterator, List, Optional, Tuple

from blobcache_core.cache.entry import CacheEntry

logger = logging.getLogger(__name__)


class EntryStore:
    """Thread-safe mapping from cache key to entry metadata.

    Tracks the aggregate byte size of all entries. Entries are owned by
    the store: every accessor returns a copy, so callers can never mutate
    the indexed record behind the store's back.

    Features:
    - O(1) get/put/remove
    - Aggregate size tracking
    - Oldest-access lookup for eviction
    - Injectable clock for recency

    Example:
        store = EntryStore()
        store.put("url", CacheEntry(key="url", file_name="ab12", size_bytes=512))
        entry = store.get("url")  # touches last_access
        key, oldest = store.oldest_entry()
    """

    def __init__(
        self,
        entries: Optional[Iterable[CacheEntry]] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize entry store.

        Args:
            entries: Initial entries
            clock: Source of timestamps for recency updates
        """
        self._entries: Dict[str, CacheEntry] = {}
        self._aggregate_bytes = 0
        self._lock = threading.RLock()
        self._clock = clock

        for entry in entries or ():
            self.put(entry.key, entry)

    @property
    def clock(self) -> Callable[[], float]:
        """Get the timestamp source."""
        return self._clock

    @property
    def aggregate_bytes(self) -> int:
        """Get the sum of all entry sizes."""
        with self._lock:
            return self._aggregate_bytes

    def get(self, key: str) -> Optional[CacheEntry]:
        """Get entry by key and mark it as used.

        Args:
            key: Cache key

        Returns:
            Copy of the entry or None
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            entry.touch(self._clock())
            return entry.copy()

    def peek(self, key: str) -> Optional[CacheEntry]:
        """Get entry by key without updating recency.

        Args:
            key: Cache key

        Returns:
            Copy of the entry or None
        """
        with self._lock:
            entry = self._entries.get(key)
            return entry.copy() if entry is not None else None

    def put(self, key: str, entry: CacheEntry) -> None:
        """Insert or overwrite an entry.

        Args:
            key: Cache key
            entry: Entry metadata
        """
        stored = entry.copy()
        stored.key = key

        with self._lock:
            previous = self._entries.get(key)
            if previous is not None:
                self._aggregate_bytes -= previous.size_bytes
            self._entries[key] = stored
            self._aggregate_bytes += stored.size_bytes

    def remove(self, key: str) -> Optional[CacheEntry]:
        """Remove an entry.

        Args:
            key: Cache key

        Returns:
            The removed entry, or None if the key was absent
        """
        with self._lock:
            entry = self._entries.pop(key, None)
            if entry is None:
                return None
            self._aggregate_bytes -= entry.size_bytes
            return entry

    def oldest_entry(self, exclude: Container[str] = ()) -> Optional[Tuple[str, CacheEntry]]:
        """Find the least recently used entry.

        Ties go to the first entry encountered in iteration order.

        Args:
            exclude: Keys never to return

        Returns:
            (key, entry copy) or None if empty
        """
        with self._lock:
            oldest: Optional[CacheEntry] = None
            for entry in self._entries.values():
                if entry.key in exclude:
                    continue
                if oldest is None or entry.last_access < oldest.last_access:
                    oldest = entry
            if oldest is None:
                return None
            return oldest.key, oldest.copy()

    def keys(self) -> List[str]:
        """Get all keys."""
        with self._lock:
            return list(self._entries.keys())

    def snapshot(self) -> List[CacheEntry]:
        """Get copies of all entries."""
        with self._lock:
            return [entry.copy() for entry in self._entries.values()]

    def clear(self) -> List[CacheEntry]:
        """Remove all entries.

        Returns:
            The removed entries
        """
        with self._lock:
            removed = list(self._entries.values())
            self._entries.clear()
            self._aggregate_bytes = 0
            return removed

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    def __repr__(self) -> str:
        return f"EntryStore(entries={len(self)}, bytes={self.aggregate_bytes})"


__all__ = ["EntryStore"]
