"""BlobCache Blob Directory - Blob Files in the Storage Directory.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import logging
import os
import uuid
from pathlib import Path
from typing import List, Optional, Tuple, Union

from blobcache_core.cache.entry import CacheEntry, file_name_for_key
from blobcache_core.errors import StorageUnavailable

logger = logging.getLogger(__name__)

TEMP_SUFFIX = ".tmp"


class BlobDirectory:
    """One flat directory holding one file per cached blob.

    Files are named by the sha256 of their key. New blobs are written to
    a uniquely named temp file first and renamed into place on commit, so
    a crash never leaves a half-written file under a blob name. Leftover
    temp files are unreferenced and get removed by reconciliation.

    Example:
        blobs = BlobDirectory("/var/cache/app/imagecache")
        temp = blobs.write_temp("https://example.com/a.png", data)
        file_name, size = blobs.commit("https://example.com/a.png", temp)
    """

    def __init__(self, path: Union[str, Path]):
        """Initialize blob directory.

        Args:
            path: Storage directory
        """
        self.path = Path(path)

    def ensure(self) -> None:
        """Create the storage directory if needed.

        Raises:
            StorageUnavailable: If it cannot be created or is not a directory
        """
        try:
            self.path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageUnavailable(
                f"Could not create cache folder in {self.path}: {e}"
            ) from e

        if not self.path.is_dir() or not os.access(self.path, os.W_OK | os.X_OK):
            raise StorageUnavailable(f"Cache folder {self.path} is not writable")

    def path_for(self, file_name: str) -> Path:
        """Get the full path of a blob file."""
        return self.path / file_name

    def path_for_key(self, key: str) -> Path:
        """Get the full path a key's blob is stored under."""
        return self.path / file_name_for_key(key)

    def write_temp(self, key: str, data: bytes) -> Path:
        """Write blob bytes to a fresh temp file.

        Args:
            key: Cache key
            data: Blob bytes

        Returns:
            Temp file path

        Raises:
            StorageUnavailable: If the file cannot be written
        """
        temp_path = self.path / f"{file_name_for_key(key)}.{uuid.uuid4().hex}{TEMP_SUFFIX}"

        try:
            with open(temp_path, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            self.discard(temp_path)
            raise StorageUnavailable(f"Error writing blob for {key}: {e}", key=key) from e

        return temp_path

    def commit(self, key: str, temp_path: Path) -> Tuple[str, int]:
        """Move a temp file into place as the key's blob.

        Args:
            key: Cache key
            temp_path: Path returned by write_temp()

        Returns:
            (file name, size in bytes)

        Raises:
            StorageUnavailable: If the rename fails
        """
        file_name = file_name_for_key(key)
        target = self.path / file_name

        try:
            os.replace(temp_path, target)
            size = target.stat().st_size
        except OSError as e:
            self.discard(temp_path)
            raise StorageUnavailable(f"Error storing blob for {key}: {e}", key=key) from e

        return file_name, size

    def discard(self, temp_path: Path) -> None:
        """Remove a temp file if it exists."""
        try:
            temp_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not delete partial file {temp_path}: {e}")

    def delete(self, file_name: str) -> bool:
        """Delete a blob file.

        Args:
            file_name: Blob file name

        Returns:
            True if the file is gone afterwards
        """
        try:
            (self.path / file_name).unlink()
            return True
        except FileNotFoundError:
            return True
        except OSError as e:
            logger.warning(f"Could not delete file {file_name}: {e}")
            return False

    def delete_entry(self, entry: CacheEntry) -> bool:
        """Delete the blob file of an entry."""
        return self.delete(entry.file_name)

    def size_of(self, file_name: str) -> Optional[int]:
        """Get the size of a blob file.

        Returns:
            Size in bytes, or None if it is missing or not a regular file
        """
        path = self.path / file_name
        try:
            if not path.is_file():
                return None
            return path.stat().st_size
        except OSError:
            return None

    def contains_name(self, file_name: str) -> bool:
        """Check that a file name resolves directly inside this directory."""
        candidate = Path(file_name)
        return (
            not candidate.is_absolute()
            and len(candidate.parts) == 1
            and candidate.name not in ("", ".", "..")
        )

    def list_files(self) -> List[Path]:
        """List every entry of the storage directory.

        Returns:
            Paths of all files and subdirectories
        """
        return sorted(self.path.iterdir())

    def disk_usage(self) -> int:
        """Get total size of regular files in the directory."""
        total = 0
        for file_path in self.list_files():
            if file_path.is_file():
                total += file_path.stat().st_size
        return total

    def __repr__(self) -> str:
        return f"BlobDirectory(path={self.path})"


__all__ = ["BlobDirectory", "TEMP_SUFFIX"]
