"""In-memory response cache with per-entry TTL.

One namespace per data kind:
- price:  spot prices (short TTL, prices become stale quickly)
- ohlc:   price histories
- market: market metadata (market cap, volume, changes)

Kinds share no key space and keep independent TTLs and statistics.
Expired entries read as misses but stay stored until they are overwritten,
invalidated, or swept, so callers that were denied an upstream call can
still fall back to the last value with get_stale().

Thread-safe: every namespace guards its dict with a threading.Lock and
never holds it across I/O.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Generic, Iterator, TypeVar

logger = logging.getLogger(__name__)

V = TypeVar("V")

Clock = Callable[[], float]


class CacheKind(str, Enum):
    """Cache namespaces."""

    PRICE = "price"
    OHLC = "ohlc"
    MARKET = "market"


@dataclass(slots=True, frozen=True)
class CacheEntry(Generic[V]):
    """A cached value with its creation time and TTL (seconds)."""

    value: V
    created_at: float
    ttl: float

    @property
    def expires_at(self) -> float:
        return self.created_at + self.ttl

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


@dataclass(slots=True)
class KindStats:
    """Counters for one namespace."""

    hits: int = 0
    misses: int = 0
    stale_hits: int = 0
    size: int = 0


@dataclass(slots=True)
class CacheStats:
    """Aggregated cache statistics."""

    hits: int
    misses: int
    stale_hits: int
    size_per_kind: dict[str, int]
    per_kind: dict[str, KindStats]

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


def normalize_key(key: str) -> str:
    """Cache keys are case- and whitespace-insensitive."""
    return key.strip().lower()


class TTLMap(Generic[V]):
    """Thread-safe key/value map with per-entry TTL and lazy expiry."""

    def __init__(self, default_ttl: float, clock: Clock = time.time):
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry[V]] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._stale_hits = 0

    def get(self, key: str) -> tuple[V | None, bool]:
        """Look up a fresh value. Expired entries count as misses."""
        key = normalize_key(key)
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.is_expired(now):
                self._misses += 1
                return None, False
            self._hits += 1
            return entry.value, True

    def get_stale(self, key: str) -> tuple[V | None, bool]:
        """Look up a value whether or not it has expired."""
        key = normalize_key(key)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None, False
            self._stale_hits += 1
            return entry.value, True

    def put(self, key: str, value: V, ttl: float | None = None) -> None:
        """Store a value, replacing any previous entry and its TTL clock."""
        entry = CacheEntry(
            value=value,
            created_at=self._clock(),
            ttl=self.default_ttl if ttl is None else ttl,
        )
        with self._lock:
            self._entries[normalize_key(key)] = entry

    def restore(self, key: str, entry: CacheEntry[V]) -> None:
        """Insert an entry with its original timestamps (snapshot reload)."""
        with self._lock:
            self._entries[normalize_key(key)] = entry

    def invalidate(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(normalize_key(key), None) is not None

    def sweep_expired(self) -> int:
        """Physically remove expired entries. Returns the number removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def items(self) -> Iterator[tuple[str, CacheEntry[V]]]:
        """Iterate over a point-in-time copy of the entries."""
        with self._lock:
            snapshot = list(self._entries.items())
        return iter(snapshot)

    def stats(self) -> KindStats:
        with self._lock:
            return KindStats(
                hits=self._hits,
                misses=self._misses,
                stale_hits=self._stale_hits,
                size=len(self._entries),
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class ResponseCache:
    """Read-through cache for upstream responses, one TTLMap per kind."""

    def __init__(
        self,
        price_ttl: float = 60.0,
        ohlc_ttl: float = 300.0,
        market_ttl: float = 900.0,
        clock: Clock = time.time,
    ):
        self._clock = clock
        self._maps: dict[CacheKind, TTLMap] = {
            CacheKind.PRICE: TTLMap(price_ttl, clock),
            CacheKind.OHLC: TTLMap(ohlc_ttl, clock),
            CacheKind.MARKET: TTLMap(market_ttl, clock),
        }

    @property
    def clock(self) -> Clock:
        return self._clock

    def namespace(self, kind: CacheKind) -> TTLMap:
        return self._maps[kind]

    def get(self, kind: CacheKind, key: str) -> tuple[object | None, bool]:
        """Return (value, found) for a fresh entry."""
        value, found = self._maps[kind].get(key)
        logger.debug(f"Cache {'hit' if found else 'miss'}: {kind.value}:{key}")
        return value, found

    def get_stale(self, kind: CacheKind, key: str) -> tuple[object | None, bool]:
        """Return (value, found) for any stored entry, fresh or expired."""
        return self._maps[kind].get_stale(key)

    def put(self, kind: CacheKind, key: str, value: object, ttl: float | None = None) -> None:
        """Store a value; ttl defaults to the kind's configured TTL."""
        self._maps[kind].put(key, value, ttl)

    def invalidate(self, key: str) -> None:
        """Drop a key from every kind (manual refresh)."""
        removed = [kind.value for kind, m in self._maps.items() if m.invalidate(key)]
        if removed:
            logger.info(f"Invalidated cache entries for {key}: {', '.join(removed)}")

    def sweep_expired(self) -> int:
        """Remove expired entries from every kind."""
        removed = sum(m.sweep_expired() for m in self._maps.values())
        if removed:
            logger.debug(f"Swept {removed} expired cache entries")
        return removed

    def clear(self) -> None:
        for m in self._maps.values():
            m.clear()

    def stats(self) -> CacheStats:
        per_kind = {kind.value: m.stats() for kind, m in self._maps.items()}
        return CacheStats(
            hits=sum(s.hits for s in per_kind.values()),
            misses=sum(s.misses for s in per_kind.values()),
            stale_hits=sum(s.stale_hits for s in per_kind.values()),
            size_per_kind={name: s.size for name, s in per_kind.items()},
            per_kind=per_kind,
        )
