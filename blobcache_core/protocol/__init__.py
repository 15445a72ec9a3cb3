"""Protocol module - Metadata serialization."""

from blobcache_core.protocol.serializer import (
    Serializer,
    JSONSerializer,
    MsgPackSerializer,
    SerializerRegistry,
    get_serializer,
)

__all__ = [
    "Serializer",
    "JSONSerializer",
    "MsgPackSerializer",
    "SerializerRegistry",
    "get_serializer",
]
