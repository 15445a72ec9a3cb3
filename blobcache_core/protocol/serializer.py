"""BlobCache Serializer - Metadata Encodings.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.

The metadata document is a nested mapping of str keys to str, int and
float values. Each encoding must round-trip it exactly and report any
undecodable input as MetadataCorrupt so loading can start over empty.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import msgpack

from blobcache_core.errors import MetadataCorrupt


class Serializer(ABC):
    """Encoding of the metadata document."""

    @property
    @abstractmethod
    def format_name(self) -> str:
        """Name of the encoding; doubles as the metadata file suffix."""

    @abstractmethod
    def serialize(self, document: Dict[str, Any]) -> bytes:
        """Encode a metadata document."""

    @abstractmethod
    def deserialize(self, data: bytes) -> Any:
        """Decode a metadata document.

        Raises:
            MetadataCorrupt: If the bytes are not a valid encoding
        """


class JSONSerializer(Serializer):
    """UTF-8 JSON, sorted keys. Readable with any text editor."""

    format_name = "json"

    def serialize(self, document: Dict[str, Any]) -> bytes:
        return json.dumps(document, sort_keys=True).encode("utf-8")

    def deserialize(self, data: bytes) -> Any:
        try:
            return json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise MetadataCorrupt(f"Invalid JSON metadata: {e}") from e


class MsgPackSerializer(Serializer):
    """MessagePack. Smaller and faster to load for large indexes."""

    format_name = "msgpack"

    def serialize(self, document: Dict[str, Any]) -> bytes:
        return msgpack.packb(document, use_bin_type=True)

    def deserialize(self, data: bytes) -> Any:
        # unpackb raises a range of ValueError subclasses and msgpack-specific errors
        try:
            return msgpack.unpackb(data, raw=False, strict_map_key=True)
        except Exception as e:
            raise MetadataCorrupt(f"Invalid MessagePack metadata: {e}") from e


class SerializerRegistry:
    """Encodings by format name; JSON unless told otherwise."""

    default_format = "json"

    def __init__(self):
        self._by_name: Dict[str, Serializer] = {}
        for serializer in (JSONSerializer(), MsgPackSerializer()):
            self.register(serializer)

    def register(self, serializer: Serializer) -> None:
        self._by_name[serializer.format_name] = serializer

    def get(self, format_name: Optional[str] = None) -> Serializer:
        """Look up an encoding.

        Raises:
            KeyError: If no encoding has that name
        """
        name = self.default_format if format_name is None else format_name
        try:
            return self._by_name[name]
        except KeyError:
            raise KeyError(
                f"Unknown metadata format {name!r}; expected one of {sorted(self._by_name)}"
            ) from None


_registry = SerializerRegistry()


def get_serializer(format_name: Optional[str] = None) -> Serializer:
    """Get the encoding for a metadata format name (JSON by default)."""
    return _registry.get(format_name)


__all__ = [
    "Serializer",
    "JSONSerializer",
    "MsgPackSerializer",
    "SerializerRegistry",
    "get_serializer",
]
