"""BlobCache LRU Policy - Oldest Access First Eviction.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

from typing import Container, List, Optional, Tuple

from blobcache_core.cache.entry import CacheEntry
from blobcache_core.cache.store import EntryStore
from blobcache_core.eviction.policy import EvictionPolicy, RemoveFile


class LRUPolicy(EvictionPolicy):
    """Least Recently Used eviction policy.

    Evicts the entry with the smallest last_access timestamp. Selection
    is a full scan of the store, which is fine for the few thousand
    entries an image cache holds.

    Example:
        policy = LRUPolicy()
        key, entry = policy.choose_eviction(store)
    """

    def choose_eviction(
        self,
        store: EntryStore,
        protect: Container[str] = (),
    ) -> Optional[Tuple[str, CacheEntry]]:
        """Choose LRU entry to evict.

        Args:
            store: Entry store
            protect: Keys that must not be chosen

        Returns:
            Oldest (key, entry) or None
        """
        return store.oldest_entry(exclude=protect)

    def __repr__(self) -> str:
        return f"LRUPolicy(evictions={self._stats.evictions})"


def enforce_budget(
    store: EntryStore,
    max_bytes: int,
    remove_file: RemoveFile,
    protect: Container[str] = (),
) -> List[CacheEntry]:
    """Evict oldest entries until the store fits in ``max_bytes``.

    Args:
        store: Entry store
        max_bytes: Byte budget
        remove_file: Deletes an entry's backing file, returns success
        protect: Keys that must not be evicted

    Returns:
        Evicted entries, oldest first
    """
    return LRUPolicy().enforce_budget(store, max_bytes, remove_file, protect)


__all__ = ["LRUPolicy", "enforce_budget"]
