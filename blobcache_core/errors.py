"""BlobCache Errors - Cache Error Taxonomy.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

from typing import Optional


class CacheError(Exception):
    """Base class for cache errors.

    Attributes:
        key: Cache key the error relates to, if any
    """

    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(message)
        self.key = key


class StorageUnavailable(CacheError):
    """Storage directory cannot be created, accessed or written."""


class FetchFailed(CacheError):
    """The fetcher raised or returned something that is not bytes.

    The original exception, if any, is chained as ``__cause__``.
    """


class CacheClosed(CacheError):
    """The cache was closed and accepts no new fetches."""


class MetadataCorrupt(CacheError):
    """Persisted metadata could not be decoded.

    Only raised inside the persistence layer; loading recovers from it.
    """


__all__ = [
    "CacheError",
    "StorageUnavailable",
    "FetchFailed",
    "CacheClosed",
    "MetadataCorrupt",
]
