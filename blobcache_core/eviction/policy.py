"""BlobCache Eviction Policy - Byte Budget Enforcement.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Container, List, Optional, Tuple

from blobcache_core.cache.entry import CacheEntry
from blobcache_core.cache.store import EntryStore

logger = logging.getLogger(__name__)

RemoveFile = Callable[[CacheEntry], bool]


@dataclass
class EvictionStats:
    """Eviction policy statistics.

    Attributes:
        passes: Number of budget enforcement passes
        evictions: Number of entries evicted
        bytes_evicted: Total size of evicted entries
        undeletable_files: Evicted entries whose file could not be deleted
    """

    passes: int = 0
    evictions: int = 0
    bytes_evicted: int = 0
    undeletable_files: int = 0


class EvictionPolicy(ABC):
    """Abstract base for eviction policies.

    A policy picks victims from an EntryStore; the budget loop in
    enforce_budget() is shared by all policies. Metadata removal always
    happens, even when the backing file cannot be deleted, so the store's
    aggregate size stays the source of truth for the budget.

    Example:
        policy = LRUPolicy()
        evicted = policy.enforce_budget(store, max_bytes=10_000_000, remove_file=delete)
    """

    def __init__(self):
        self._stats = EvictionStats()
        self._stats_lock = threading.Lock()

    @abstractmethod
    def choose_eviction(
        self,
        store: EntryStore,
        protect: Container[str] = (),
    ) -> Optional[Tuple[str, CacheEntry]]:
        """Choose the next entry to evict.

        Args:
            store: Entry store
            protect: Keys that must not be chosen

        Returns:
            (key, entry) or None if the store is empty
        """
        pass

    def enforce_budget(
        self,
        store: EntryStore,
        max_bytes: int,
        remove_file: RemoveFile,
        protect: Container[str] = (),
    ) -> List[CacheEntry]:
        """Evict entries until the store fits in the byte budget.

        Stops early if only protected entries are left, which is how a
        freshly inserted entry larger than the budget stays admitted.

        Args:
            store: Entry store
            max_bytes: Byte budget
            remove_file: Deletes an entry's backing file, returns success
            protect: Keys that must not be evicted in this pass

        Returns:
            Evicted entries in eviction order
        """
        evicted: List[CacheEntry] = []

        while store.aggregate_bytes > max_bytes:
            victim = self.choose_eviction(store, protect)
            if victim is None:
                break

            key, _ = victim
            entry = store.remove(key)
            if entry is None:
                continue

            logger.info(f"Evicting cached object: {key} ({entry.size_bytes} bytes)")
            deleted = remove_file(entry)
            if not deleted:
                logger.warning(f"Could not delete file {entry.file_name} of evicted {key}")
            evicted.append(entry)

            with self._stats_lock:
                self._stats.evictions += 1
                self._stats.bytes_evicted += entry.size_bytes
                if not deleted:
                    self._stats.undeletable_files += 1

        with self._stats_lock:
            self._stats.passes += 1

        return evicted

    def get_stats(self) -> EvictionStats:
        """Get eviction statistics.

        Returns:
            EvictionStats instance
        """
        return self._stats

    def reset_stats(self) -> None:
        """Reset statistics."""
        with self._stats_lock:
            self._stats = EvictionStats()


__all__ = ["EvictionPolicy", "EvictionStats", "RemoveFile"]
