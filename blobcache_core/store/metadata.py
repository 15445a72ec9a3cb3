"""BlobCache Metadata Store - Persistence and Reconciliation.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import logging
import os
import shutil
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set

from blobcache_core.cache.entry import CacheEntry
from blobcache_core.cache.store import EntryStore
from blobcache_core.errors import MetadataCorrupt
from blobcache_core.protocol.serializer import Serializer, get_serializer
from blobcache_core.store.blobs import TEMP_SUFFIX, BlobDirectory

logger = logging.getLogger(__name__)

METADATA_VERSION = 1
METADATA_BASENAME = "index"


@dataclass
class LoadReport:
    """Outcome of the last load.

    Attributes:
        loaded: Entries kept
        dropped: Persisted entries discarded as invalid
        corrupt: Whether the metadata file was unreadable
        deleted_files: Unreferenced files removed
        undeletable_files: Unreferenced files that could not be removed
    """

    loaded: int = 0
    dropped: int = 0
    corrupt: bool = False
    deleted_files: int = 0
    undeletable_files: int = 0


class MetadataStore:
    """Persists an EntryStore to the metadata file of a storage directory.

    Loading is fail-open: an unreadable or malformed metadata file yields
    an empty store. Every load reconciles the directory listing against
    the surviving entries and deletes files nothing refers to.

    Saving writes a temp file next to the metadata file and renames it
    over the old one, so a crash leaves either the old or the new
    document, never a torn one.

    Example:
        metadata = MetadataStore(BlobDirectory("/var/cache/app/imagecache"))
        store = metadata.load()
        ...
        metadata.save(store)
    """

    def __init__(
        self,
        blobs: BlobDirectory,
        serializer: Optional[Serializer] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize metadata store.

        Args:
            blobs: Storage directory accessor
            serializer: Metadata encoding (JSON by default)
            clock: Timestamp source for loaded stores
        """
        self.blobs = blobs
        self.serializer = serializer or get_serializer()
        self._clock = clock
        self._lock = threading.Lock()
        self.last_report = LoadReport()

    @property
    def file_name(self) -> str:
        """Get the metadata file name."""
        return f"{METADATA_BASENAME}.{self.serializer.format_name}"

    @property
    def path(self):
        """Get the metadata file path."""
        return self.blobs.path_for(self.file_name)

    def load(self) -> EntryStore:
        """Load entries and reconcile the storage directory.

        Returns:
            EntryStore with every valid persisted entry
        """
        report = LoadReport()

        try:
            raw_entries = self._read()
        except MetadataCorrupt as e:
            logger.warning(f"Discarding cache metadata in {self.path}: {e}")
            report.corrupt = True
            raw_entries = {}

        entries = self._validate(raw_entries, report)
        store = EntryStore(entries, clock=self._clock)
        report.loaded = len(store)

        self.reconcile(store, report)
        self.last_report = report

        if report.dropped or report.corrupt:
            self.save(store)

        logger.info(
            f"Loaded {report.loaded} cached objects ({store.aggregate_bytes} bytes) "
            f"from {self.blobs.path}"
        )
        return store

    def reconcile(self, store: EntryStore, report: Optional[LoadReport] = None) -> int:
        """Delete files in the storage directory that no entry references.

        Args:
            store: Entries to keep files for
            report: Report to update

        Returns:
            Number of files deleted
        """
        report = report if report is not None else LoadReport()
        referenced: Set[str] = {entry.file_name for entry in store.snapshot()}
        referenced.add(self.file_name)

        deleted = 0
        for file_path in self.blobs.list_files():
            if file_path.name in referenced:
                continue

            logger.info(f"Deleting unused file: {file_path}")
            try:
                if file_path.is_dir() and not file_path.is_symlink():
                    shutil.rmtree(file_path)
                else:
                    file_path.unlink()
                deleted += 1
            except OSError as e:
                logger.warning(f"Could not delete file {file_path}: {e}")
                report.undeletable_files += 1

        report.deleted_files += deleted
        return deleted

    def save(self, store: EntryStore) -> bool:
        """Atomically replace the metadata file with the store's contents.

        Args:
            store: Entries to persist

        Returns:
            True if the file was written
        """
        with self._lock:
            document = {
                "version": METADATA_VERSION,
                "entries": {entry.key: entry.to_dict() for entry in store.snapshot()},
            }
            data = self.serializer.serialize(document)
            temp_path = self.blobs.path_for(f"{self.file_name}.{uuid.uuid4().hex}{TEMP_SUFFIX}")

            try:
                with open(temp_path, "wb") as f:
                    f.write(data)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(temp_path, self.path)
            except OSError as e:
                logger.error(f"Could not save cache metadata to {self.path}: {e}")
                self.blobs.discard(temp_path)
                return False

            logger.debug(f"Saved {len(document['entries'])} entries to {self.path}")
            return True

    def _read(self) -> Dict[str, Any]:
        """Read and decode the metadata document.

        Returns:
            Raw key -> entry mapping (empty if no file exists)

        Raises:
            MetadataCorrupt: If the file is unreadable or malformed
        """
        path = self.path
        if not path.exists():
            return {}

        try:
            data = path.read_bytes()
        except OSError as e:
            raise MetadataCorrupt(f"Unreadable: {e}") from e

        document = self.serializer.deserialize(data)
        if not isinstance(document, dict):
            raise MetadataCorrupt("Document is not a mapping")
        if document.get("version") != METADATA_VERSION:
            raise MetadataCorrupt(f"Unsupported version {document.get('version')!r}")

        entries = document.get("entries")
        if not isinstance(entries, dict):
            raise MetadataCorrupt("Entries are not a mapping")
        return entries

    def _validate(self, raw_entries: Dict[str, Any], report: LoadReport) -> List[CacheEntry]:
        """Keep entries whose blob file exists with the recorded size."""
        entries: List[CacheEntry] = []
        seen_files: Set[str] = set()

        for key, value in raw_entries.items():
            try:
                entry = CacheEntry.from_dict(key, value)
            except ValueError as e:
                logger.warning(f"Dropping malformed cache entry: {e}")
                report.dropped += 1
                continue

            if not self.blobs.contains_name(entry.file_name) or entry.file_name == self.file_name:
                logger.warning(f"Dropping cache entry {key!r} outside storage directory")
                report.dropped += 1
                continue

            if entry.file_name in seen_files:
                logger.warning(f"Dropping cache entry {key!r} sharing file {entry.file_name}")
                report.dropped += 1
                continue

            size = self.blobs.size_of(entry.file_name)
            if size is None or size != entry.size_bytes:
                logger.warning(f"Dropping cache entry {key!r}: file missing or size mismatch")
                report.dropped += 1
                continue

            seen_files.add(entry.file_name)
            entries.append(entry)

        return entries

    def __repr__(self) -> str:
        return f"MetadataStore(path={self.path})"


__all__ = ["MetadataStore", "LoadReport", "METADATA_VERSION"]
