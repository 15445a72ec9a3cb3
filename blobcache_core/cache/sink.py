"""BlobCache Sink - Delivery of Fetch Outcomes.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from concurrent.futures import Future
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Callable, Optional

from blobcache_core.errors import CacheError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheHandle:
    """Readable handle to a cached blob.

    The handle names a file owned by the cache; it can disappear if the
    entry is evicted, in which case open() raises FileNotFoundError.

    Attributes:
        key: Cache key the blob was fetched for
        path: Blob file path
    """

    key: str
    path: Path

    @property
    def cache_key(self) -> str:
        """Identifier of the stored bytes for downstream caches."""
        return str(self.path)

    @property
    def size(self) -> int:
        """Get current file size."""
        return self.path.stat().st_size

    def open(self) -> BinaryIO:
        """Open the blob for reading."""
        return open(self.path, "rb")

    def read_bytes(self) -> bytes:
        """Read the whole blob."""
        return self.path.read_bytes()


class Sink(ABC):
    """Receives the outcome of a cache request.

    Exactly one of on_success() or on_failure() is called per request,
    possibly from a worker thread.
    """

    @abstractmethod
    def on_success(self, handle: CacheHandle) -> None:
        """Called with a handle to the cached bytes.

        Args:
            handle: Cache handle
        """
        pass

    @abstractmethod
    def on_failure(self, key: str, error: CacheError) -> None:
        """Called when the bytes could not be provided.

        Args:
            key: Cache key
            error: FetchFailed or StorageUnavailable
        """
        pass


class CallbackSink(Sink):
    """Sink built from plain callables.

    Example:
        sink = CallbackSink(lambda handle: show(handle.read_bytes()))
        cache.request(url, fetcher, sink)
    """

    def __init__(
        self,
        on_success: Callable[[CacheHandle], None],
        on_failure: Optional[Callable[[str, CacheError], None]] = None,
    ):
        self._on_success = on_success
        self._on_failure = on_failure

    def on_success(self, handle: CacheHandle) -> None:
        self._on_success(handle)

    def on_failure(self, key: str, error: CacheError) -> None:
        if self._on_failure is not None:
            self._on_failure(key, error)
        else:
            logger.warning(f"Request for {key} failed: {error}")


class FutureSink(Sink):
    """Sink resolving a concurrent.futures.Future.

    Example:
        sink = FutureSink()
        cache.request(url, fetcher, sink)
        handle = sink.result(timeout=10)
    """

    def __init__(self, future: Optional[Future] = None):
        self.future: Future = future or Future()

    def on_success(self, handle: CacheHandle) -> None:
        self.future.set_result(handle)

    def on_failure(self, key: str, error: CacheError) -> None:
        self.future.set_exception(error)

    def result(self, timeout: Optional[float] = None) -> CacheHandle:
        """Wait for the handle.

        Raises:
            CacheError: If the request failed
            concurrent.futures.TimeoutError: If it did not finish in time
        """
        return self.future.result(timeout=timeout)

    def done(self) -> bool:
        """Check whether the outcome has arrived."""
        return self.future.done()


__all__ = ["CacheHandle", "Sink", "CallbackSink", "FutureSink"]
