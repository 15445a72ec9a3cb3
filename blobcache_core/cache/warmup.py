"""BlobCache Warmup - Prefetching Keys into a Cache.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Tuple, TYPE_CHECKING

from blobcache_core.cache.coordinator import Fetcher
from blobcache_core.cache.sink import FutureSink
from blobcache_core.errors import CacheError

if TYPE_CHECKING:
    from blobcache_core.cache.cache import DiskCache

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


@dataclass
class WarmupConfig:
    """Warmup settings.

    Attributes:
        timeout_per_key: Seconds to wait on each outstanding key
        skip_existing: Leave keys that are already cached alone
    """

    timeout_per_key: float = 30.0
    skip_existing: bool = True


@dataclass
class WarmupStats:
    """Outcome of one warm() call.

    Attributes:
        total_keys: Distinct keys requested
        warmed: Keys fetched and stored
        failed: Keys whose fetch failed or timed out
        skipped: Keys already in the cache
        duration_seconds: Wall time of the call
        started_at: When warm() started
        completed_at: When warm() returned
    """

    total_keys: int = 0
    warmed: int = 0
    failed: int = 0
    skipped: int = 0
    duration_seconds: float = 0.0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def success_rate(self) -> float:
        attempted = self.warmed + self.failed
        if attempted == 0:
            return 0.0
        return self.warmed / attempted


class CacheWarmer:
    """Fills a cache ahead of use, e.g. with the images of a feed.

    Every missing key is requested up front, so parallelism is bounded by
    the cache's worker pool and repeated keys share one fetch.

    Example:
        stats = CacheWarmer(cache).warm(feed_image_urls, http_get)
        logger.info(f"{stats.warmed}/{stats.total_keys} images prefetched")
    """

    def __init__(self, cache: "DiskCache", config: Optional[WarmupConfig] = None):
        self.cache = cache
        self.config = config or WarmupConfig()
        self._last = WarmupStats()

    def warm(
        self,
        keys: Iterable[str],
        fetcher: Fetcher,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> WarmupStats:
        """Fetch every key not yet cached and wait for the outcomes.

        Failures are counted, not raised.

        Args:
            keys: Keys to warm; duplicates are ignored
            fetcher: Returns the bytes for a key
            progress_callback: Receives (finished, total) after each key

        Returns:
            WarmupStats for this call
        """
        unique = list(dict.fromkeys(keys))
        stats = WarmupStats(total_keys=len(unique), started_at=datetime.now())
        began = time.monotonic()
        logger.info(f"Warming {len(unique)} keys into {self.cache!r}")

        outstanding: List[Tuple[str, FutureSink]] = []
        for key in unique:
            if self.config.skip_existing and self.cache.contains(key):
                stats.skipped += 1
                continue
            sink = FutureSink()
            self.cache.request(key, fetcher, sink)
            outstanding.append((key, sink))

        finished = stats.skipped
        for key, sink in outstanding:
            try:
                sink.result(timeout=self.config.timeout_per_key)
            except (CacheError, FutureTimeoutError) as e:
                logger.warning(f"Could not warm {key}: {e!r}")
                stats.failed += 1
            else:
                stats.warmed += 1

            finished += 1
            if progress_callback:
                progress_callback(finished, stats.total_keys)

        stats.completed_at = datetime.now()
        stats.duration_seconds = time.monotonic() - began
        logger.info(
            f"Warmup done in {stats.duration_seconds:.2f}s: "
            f"{stats.warmed} warmed, {stats.skipped} skipped, {stats.failed} failed"
        )

        self._last = stats
        return stats

    def get_stats(self) -> WarmupStats:
        """Get stats of the most recent warm() call."""
        return self._last


__all__ = ["CacheWarmer", "WarmupConfig", "WarmupStats"]
