"""Data storage layer."""

from entrywatch.storage.response_cache import (
    CacheEntry,
    CacheKind,
    CacheStats,
    KindStats,
    ResponseCache,
    TTLMap,
)
from entrywatch.storage.cache_snapshot import CacheSnapshotStore, periodic_flush

__all__ = [
    "CacheEntry",
    "CacheKind",
    "CacheStats",
    "KindStats",
    "ResponseCache",
    "TTLMap",
    "CacheSnapshotStore",
    "periodic_flush",
]
