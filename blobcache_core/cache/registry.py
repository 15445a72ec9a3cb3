"""BlobCache Registry - One Cache per Storage Directory.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from blobcache_core.cache.cache import CacheConfig, DiskCache
from blobcache_core.errors import CacheClosed

logger = logging.getLogger(__name__)

DEFAULT_DIR_NAME = "imagecache"
DEFAULT_MAX_BYTES = 10 * 1024 * 1024


class CacheRegistry:
    """Table of caches keyed by absolute storage directory.

    Two DiskCache objects must never share a directory: each assumes it
    owns every file in it. The registry creates caches lazily and keeps
    them for its whole lifetime. Applications construct one registry and
    pass it down; default_registry() offers a process-wide one.

    Example:
        registry = CacheRegistry()
        covers = registry.get("/var/cache/app/covers", max_bytes=50 * 1024 * 1024)
        assert registry.get("/var/cache/app/../app/covers", 1) is covers
    """

    def __init__(self):
        self._caches: Dict[str, DiskCache] = {}
        self._lock = threading.Lock()

    @staticmethod
    def normalize(storage_dir: Union[str, Path]) -> str:
        """Get the registry key for a storage directory."""
        return os.path.abspath(os.fspath(storage_dir))

    def get(
        self,
        storage_dir: Union[str, Path],
        max_bytes: int,
        **options: Any,
    ) -> DiskCache:
        """Get or create the cache for a storage directory.

        Args:
            storage_dir: Storage directory
            max_bytes: Byte budget, used only when the cache is created
            **options: Further CacheConfig fields

        Returns:
            DiskCache instance

        Raises:
            ValueError: If the configuration is invalid
            StorageUnavailable: If the directory cannot be created
            CacheClosed: If the directory's cache was closed. Closed caches
                stay registered so no second instance can take over the
                directory; a new registry is needed to reopen it.
        """
        if storage_dir is None:
            raise ValueError("storage_dir is required")

        path = self.normalize(storage_dir)

        with self._lock:
            cache = self._caches.get(path)
            if cache is not None:
                if cache.closed:
                    raise CacheClosed(f"Cache at {path} was closed")
                if cache.max_bytes != max_bytes:
                    logger.warning(
                        f"Cache at {path} already exists with max_bytes={cache.max_bytes}; "
                        f"ignoring max_bytes={max_bytes}"
                    )
                return cache

            cache = DiskCache(CacheConfig(storage_dir=path, max_bytes=max_bytes, **options))
            self._caches[path] = cache
            return cache

    def get_default(
        self,
        base_dir: Union[str, Path],
        max_bytes: int = DEFAULT_MAX_BYTES,
    ) -> DiskCache:
        """Get the default image cache below an application cache directory.

        Args:
            base_dir: Application cache directory
            max_bytes: Byte budget

        Returns:
            DiskCache stored in ``base_dir/imagecache``
        """
        return self.get(Path(base_dir) / DEFAULT_DIR_NAME, max_bytes)

    def find(self, storage_dir: Union[str, Path]) -> Optional[DiskCache]:
        """Get an existing cache without creating one."""
        with self._lock:
            return self._caches.get(self.normalize(storage_dir))

    def paths(self) -> List[str]:
        """Get registered storage directories."""
        with self._lock:
            return list(self._caches.keys())

    def close_all(self) -> None:
        """Close every cache. Caches stay registered; get() then raises CacheClosed."""
        with self._lock:
            caches = list(self._caches.values())

        for cache in caches:
            try:
                cache.close()
            except Exception as e:
                logger.error(f"Error closing {cache!r}: {e}")

    def __contains__(self, storage_dir: Union[str, Path]) -> bool:
        with self._lock:
            return self.normalize(storage_dir) in self._caches

    def __len__(self) -> int:
        with self._lock:
            return len(self._caches)

    def __repr__(self) -> str:
        return f"CacheRegistry(caches={len(self)})"


# Process-wide registry
_default_registry: Optional[CacheRegistry] = None
_default_lock = threading.Lock()


def default_registry() -> CacheRegistry:
    """Get the process-wide registry, creating it on first use."""
    global _default_registry
    with _default_lock:
        if _default_registry is None:
            _default_registry = CacheRegistry()
        return _default_registry


def get_instance(storage_dir: Union[str, Path], max_bytes: int, **options: Any) -> DiskCache:
    """Get a cache from the process-wide registry.

    Args:
        storage_dir: Storage directory
        max_bytes: Byte budget
        **options: Further CacheConfig fields

    Returns:
        DiskCache instance
    """
    return default_registry().get(storage_dir, max_bytes, **options)


__all__ = [
    "CacheRegistry",
    "default_registry",
    "get_instance",
    "DEFAULT_DIR_NAME",
    "DEFAULT_MAX_BYTES",
]
