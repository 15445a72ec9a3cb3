"""BlobCache Fetch Coordinator - One Fetch per Key.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Callable, Dict, List, Optional, TYPE_CHECKING, Union

from blobcache_core.cache.sink import CacheHandle, Sink
from blobcache_core.errors import CacheClosed, CacheError, FetchFailed

if TYPE_CHECKING:
    from blobcache_core.cache.cache import CacheStats

logger = logging.getLogger(__name__)

Fetcher = Callable[[str], bytes]


class FetchState(Enum):
    """Lifecycle of a fetch for one key."""

    IDLE = auto()        # Nothing in flight
    FETCHING = auto()    # Fetcher dispatched
    DONE = auto()        # Bytes stored, waiters notified
    FAILED = auto()      # Fetch or store failed, waiters notified


@dataclass
class InFlightFetch:
    """In-flight token for a key.

    Attributes:
        key: Cache key
        waiters: Sinks to notify on completion
        state: Current fetch state
    """

    key: str
    waiters: List[Sink] = field(default_factory=list)
    state: FetchState = FetchState.FETCHING


class FetchCoordinator:
    """Serves hits directly and deduplicates concurrent misses.

    For a given key at most one fetch is in flight. Requests arriving
    while it runs join its waiter list and all receive the same handle or
    the same error. The hit check and waiter registration happen under
    the cache lock; the fetcher runs on the executor without it.

    Example:
        coordinator = FetchCoordinator(lock, executor, lookup, store_blob)
        coordinator.request("https://example.com/a.png", http_get, sink)
    """

    def __init__(
        self,
        lock: Union[threading.Lock, threading.RLock],
        executor: Executor,
        lookup: Callable[[str], Optional[CacheHandle]],
        store_blob: Callable[[str, bytes], CacheHandle],
        stats: Optional["CacheStats"] = None,
    ):
        """Initialize coordinator.

        Args:
            lock: Cache lock guarding the entry store and in-flight table
            executor: Worker pool running fetchers
            lookup: Returns a handle for a cached key (touching it) or None
            store_blob: Persists fetched bytes and returns their handle
            stats: Statistics to update
        """
        self._lock = lock
        self._executor = executor
        self._lookup = lookup
        self._store_blob = store_blob
        self._stats = stats
        self._in_flight: Dict[str, InFlightFetch] = {}

    def request(self, key: str, fetcher: Fetcher, sink: Sink) -> FetchState:
        """Deliver the blob for a key to a sink.

        Args:
            key: Cache key
            fetcher: Called with the key on a worker thread; returns bytes
            sink: Receives the outcome

        Returns:
            DONE for a cache hit, FETCHING if the outcome will arrive later,
            FAILED if the fetch could not be dispatched
        """
        error: Optional[CacheError] = None

        with self._lock:
            handle = self._lookup(key)
            if handle is None:
                token = self._in_flight.get(key)
                if token is not None:
                    token.waiters.append(sink)
                    self._count("deduplicated")
                    logger.debug(f"Joined in-flight fetch for {key}")
                    return FetchState.FETCHING

                token = InFlightFetch(key=key, waiters=[sink])
                self._in_flight[key] = token
                self._count("misses")
                try:
                    self._executor.submit(self._run, token, fetcher)
                except RuntimeError as e:
                    # executor already shut down
                    del self._in_flight[key]
                    token.state = FetchState.FAILED
                    error = CacheClosed(f"Cannot fetch {key}: {e}", key=key)
                else:
                    self._count("fetches")
                    logger.debug(f"Dispatched fetch for {key}")
                    return FetchState.FETCHING
            else:
                self._count("hits")

        if handle is not None:
            logger.debug(f"Cache hit for {key}")
            self._deliver(key, [sink], handle=handle)
            return FetchState.DONE

        self._deliver(key, [sink], error=error)
        return FetchState.FAILED

    def state(self, key: str) -> FetchState:
        """Get the fetch state of a key (IDLE unless in flight)."""
        with self._lock:
            token = self._in_flight.get(key)
            return token.state if token is not None else FetchState.IDLE

    def in_flight(self, key: str) -> bool:
        """Check whether a fetch for the key is running."""
        return self.state(key) is FetchState.FETCHING

    def pending_keys(self) -> List[str]:
        """Get keys with a fetch in flight."""
        with self._lock:
            return list(self._in_flight.keys())

    def _run(self, token: InFlightFetch, fetcher: Fetcher) -> None:
        """Worker body: fetch, store, notify."""
        key = token.key
        handle: Optional[CacheHandle] = None
        error: Optional[CacheError] = None

        try:
            data = fetcher(key)
        except Exception as e:
            logger.error(f"Fetch failed for {key}: {e}")
            error = FetchFailed(f"Fetch failed for {key}: {e}", key=key)
            error.__cause__ = e
        else:
            if isinstance(data, (bytearray, memoryview)):
                data = bytes(data)
            if not isinstance(data, bytes):
                error = FetchFailed(
                    f"Fetcher returned {type(data).__name__} for {key}, expected bytes",
                    key=key,
                )
            else:
                try:
                    handle = self._store_blob(key, data)
                except CacheError as e:
                    logger.error(f"Could not store {key}: {e}")
                    error = e
                except Exception as e:
                    # waiters must still be notified and the token popped
                    logger.exception(f"Unexpected error storing {key}")
                    error = FetchFailed(f"Could not store {key}: {e!r}", key=key)
                    error.__cause__ = e

        with self._lock:
            self._in_flight.pop(key, None)
            if handle is not None:
                token.state = FetchState.DONE
            else:
                token.state = FetchState.FAILED
                self._count("fetch_failures")
            waiters = list(token.waiters)

        self._deliver(key, waiters, handle=handle, error=error)

    def _deliver(
        self,
        key: str,
        sinks: List[Sink],
        handle: Optional[CacheHandle] = None,
        error: Optional[CacheError] = None,
    ) -> None:
        """Notify sinks; a raising sink does not affect the others."""
        for sink in sinks:
            try:
                if handle is not None:
                    sink.on_success(handle)
                else:
                    sink.on_failure(key, error)
            except Exception:
                logger.exception(f"Sink {sink!r} raised while handling result")

    def _count(self, counter: str) -> None:
        if self._stats is not None:
            setattr(self._stats, counter, getattr(self._stats, counter) + 1)

    def __repr__(self) -> str:
        return f"FetchCoordinator(in_flight={len(self._in_flight)})"


__all__ = ["FetchCoordinator", "FetchState", "InFlightFetch", "Fetcher"]
