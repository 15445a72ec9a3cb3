"""BlobCache - Persistent Size-Bounded Cache for Fetched Blobs.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.

An on-disk cache for remotely fetched binary blobs (images) with:
- A byte budget enforced by least recently used eviction
- Exactly one fetch per key, however many concurrent requests
- Crash-tolerant metadata with orphan cleanup on load
- One cache per storage directory via an explicit registry

Architecture:
    ┌─────────────────────────────────────────────────────────────────┐
    │                        BlobCache System                         │
    ├─────────────────────────────────────────────────────────────────┤
    │  ┌─────────────┐  ┌─────────────┐  ┌─────────────┐             │
    │  │  Registry   │  │  DiskCache  │  │    Sink     │   CACHE     │
    │  │  one/path   │  │  request    │  │  handle/err │   LAYER     │
    │  └──────┬──────┘  └──────┬──────┘  └──────┬──────┘             │
    │         │                │                │                     │
    │  ┌──────┴────────────────┴────────────────┴──────┐             │
    │  │              Fetch Coordinator                 │   FETCH     │
    │  │   hit ─► sink     miss ─► worker pool ─► store │   LAYER     │
    │  └──────────────────────┬────────────────────────┘             │
    │                         │                                       │
    │  ┌──────────────────────┴────────────────────────┐             │
    │  │      Entry Store   ◄──   LRU Eviction          │   INDEX     │
    │  │      key ─► file, size, last access            │   LAYER     │
    │  └──────────────────────┬────────────────────────┘             │
    │                         │                                       │
    │  ┌──────────────────────┴────────────────────────┐             │
    │  │   Blob Directory   │   Metadata (JSON/msgpack) │   STORAGE   │
    │  │   one file per key │   load/reconcile/save     │   LAYER     │
    │  └──────────────────────────────────────────────┘             │
    └─────────────────────────────────────────────────────────────────┘

Example Usage:
    from blobcache_core import CacheRegistry, CallbackSink

    registry = CacheRegistry()
    cache = registry.get("/var/cache/app/imagecache", max_bytes=10 * 1024 * 1024)

    # Asynchronous: delivered on a worker thread (or at once on a hit)
    cache.request(url, http_get, CallbackSink(lambda handle: show(handle.read_bytes())))

    # Blocking
    handle = cache.fetch(url, http_get, timeout=30)
    with handle.open() as f:
        decode(f)

    registry.close_all()
"""

__version__ = "1.0.0"
__author__ = "BlackRoad OS"

from blobcache_core.cache.entry import (
    CacheEntry,
    file_name_for_key,
)
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
from blobcache_core.eviction.policy import (
    EvictionPolicy,
    EvictionStats,
)
from blobcache_core.eviction.lru import LRUPolicy, enforce_budget
from blobcache_core.store.blobs import BlobDirectory
from blobcache_core.store.metadata import MetadataStore, LoadReport
from blobcache_core.protocol.serializer import (
    Serializer,
    JSONSerializer,
    MsgPackSerializer,
    get_serializer,
)
from blobcache_core.errors import (
    CacheError,
    StorageUnavailable,
    FetchFailed,
    CacheClosed,
    MetadataCorrupt,
)

__all__ = [
    # Cache
    "DiskCache",
    "CacheConfig",
    "CacheStats",
    "WriteMode",
    "CacheEntry",
    "file_name_for_key",
    "EntryStore",
    "CacheHandle",
    "Sink",
    "CallbackSink",
    "FutureSink",
    "FetchCoordinator",
    "FetchState",
    "CacheRegistry",
    "default_registry",
    "get_instance",
    "CacheWarmer",
    "WarmupConfig",
    "WarmupStats",
    # Eviction
    "EvictionPolicy",
    "EvictionStats",
    "LRUPolicy",
    "enforce_budget",
    # Storage
    "BlobDirectory",
    "MetadataStore",
    "LoadReport",
    # Protocol
    "Serializer",
    "JSONSerializer",
    "MsgPackSerializer",
    "get_serializer",
    # Errors
    "CacheError",
    "StorageUnavailable",
    "FetchFailed",
    "CacheClosed",
    "MetadataCorrupt",
]
