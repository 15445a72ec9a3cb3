"""Eviction module - Byte budget enforcement."""

from blobcache_core.eviction.policy import (
    EvictionPolicy,
    EvictionStats,
)
from blobcache_core.eviction.lru import LRUPolicy, enforce_budget

__all__ = [
    "EvictionPolicy",
    "EvictionStats",
    "LRUPolicy",
    "enforce_budget",
]
