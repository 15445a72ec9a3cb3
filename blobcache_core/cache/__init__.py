"""Cache module - Entry index, fetch coordination and cache instances.

This module provides the disk cache interface and entry management.
"""

from blobcache_core.cache.entry import CacheEntry, file_name_for_key
from blobcache_core.cache.store import EntryStore
from blobcache_core.cache.sink import (
    CacheHandle,
    Sink,
    CallbackSink,
    FutureSink,
)
from blobcache_core.cache.coordinator import (
    FetchCoordinator,
    FetchState,
    InFlightFetch,
)
from blobcache_core.cache.cache import (
    DiskCache,
    CacheConfig,
    CacheStats,
    WriteMode,
)
from blobcache_core.cache.registry import (
    CacheRegistry,
    default_registry,
    get_instance,
)
from blobcache_core.cache.warmup import CacheWarmer, WarmupConfig, WarmupStats

__all__ = [
    "CacheEntry",
    "file_name_for_key",
    "EntryStore",
    "CacheHandle",
    "Sink",
    "CallbackSink",
    "FutureSink",
    "FetchCoordinator",
    "FetchState",
    "InFlightFetch",
    "DiskCache",
    "CacheConfig",
    "CacheStats",
    "WriteMode",
    "CacheRegistry",
    "default_registry",
    "get_instance",
    "CacheWarmer",
    "WarmupConfig",
    "WarmupStats",
]
