"""Store module - Blob files and metadata persistence."""

from blobcache_core.store.blobs import BlobDirectory
from blobcache_core.store.metadata import (
    MetadataStore,
    LoadReport,
)

__all__ = [
    "BlobDirectory",
    "MetadataStore",
    "LoadReport",
]
