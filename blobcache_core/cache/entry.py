"""BlobCache Entry - Metadata Record for One Cached Blob.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import hashlib
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Union


def file_name_for_key(key: str) -> str:
    """Derive the filesystem-safe blob file name for a cache key.

    Args:
        key: Cache key (typically a source URL)

    Returns:
        Hex digest used as file name
    """
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


@dataclass
class CacheEntry:
    """Metadata describing one cached blob.

    Attributes:
        key: Cache key
        file_name: Blob file name, relative to the storage directory
        size_bytes: Size of the blob file
        last_access: Last use as a POSIX timestamp
    """

    key: str
    file_name: str
    size_bytes: int
    last_access: float = field(default_factory=time.time)

    def touch(self, now: float) -> None:
        """Record a use at ``now``."""
        self.last_access = now

    def path(self, storage_dir: Union[str, Path]) -> Path:
        """Resolve the blob file inside a storage directory."""
        return Path(storage_dir) / self.file_name

    def copy(self) -> "CacheEntry":
        """Return an independent copy."""
        return replace(self)

    @property
    def idle_seconds(self) -> float:
        """Get time since last access."""
        return time.time() - self.last_access

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the persisted mapping value (key excluded).

        Returns:
            Dictionary representation
        """
        return {
            "file": self.file_name,
            "size": self.size_bytes,
            "last_access": self.last_access,
        }

    @classmethod
    def from_dict(cls, key: str, data: Dict[str, Any]) -> "CacheEntry":
        """Create from a persisted mapping value.

        Args:
            key: Cache key
            data: Dictionary data

        Returns:
            CacheEntry instance

        Raises:
            ValueError: If a field is missing or has the wrong type
        """
        if not isinstance(key, str) or not isinstance(data, dict):
            raise ValueError(f"Malformed entry for {key!r}")

        file_name = data.get("file")
        size = data.get("size")
        last_access = data.get("last_access")

        if not isinstance(file_name, str) or not file_name:
            raise ValueError(f"Entry {key!r} has no file")
        # bool is an int subclass; reject it explicitly
        if isinstance(size, bool) or not isinstance(size, int) or size < 0:
            raise ValueError(f"Entry {key!r} has invalid size {size!r}")
        if isinstance(last_access, bool) or not isinstance(last_access, (int, float)):
            raise ValueError(f"Entry {key!r} has invalid last_access {last_access!r}")

        return cls(
            key=key,
            file_name=file_name,
            size_bytes=size,
            last_access=float(last_access),
        )

    def __repr__(self) -> str:
        return (
            f"CacheEntry(key={self.key!r}, file={self.file_name}, "
            f"size={self.size_bytes}, last_access={self.last_access:.3f})"
        )


__all__ = ["CacheEntry", "file_name_for_key"]
