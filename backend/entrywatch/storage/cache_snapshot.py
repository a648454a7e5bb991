"""Best-effort snapshot of the response cache to a local file.

Uses orjson for fast serialization. Entries keep their original creation
time and TTL, so a reload never extends an entry's life; entries that
expired while the process was down are dropped on load.

File layout:
    {"version": 1, "saved_at": <unix>, "entries": {
        "price":  [[key, created_at, ttl, price], ...],
        "ohlc":   [[key, created_at, ttl, {"synthetic": bool, "points": [[ts, o, h, l, c, v], ...]}], ...],
        "market": [[key, created_at, ttl, {market data fields}], ...]}}
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Any

import orjson

from entrywatch.storage.response_cache import CacheEntry, CacheKind, ResponseCache
from entrywatch_core.models import MarketData, PriceHistory, PricePoint

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


def _encode_value(kind: CacheKind, value: Any) -> Any:
    if kind == CacheKind.PRICE:
        return float(value)
    if kind == CacheKind.OHLC:
        return {
            "synthetic": value.synthetic,
            "points": [
                [p.timestamp, p.open, p.high, p.low, p.close, p.volume] for p in value.points
            ],
        }
    return value.model_dump()


def _decode_value(kind: CacheKind, raw: Any) -> Any:
    if kind == CacheKind.PRICE:
        return float(raw)
    if kind == CacheKind.OHLC:
        points = tuple(PricePoint(*row) for row in raw["points"])
        return PriceHistory(points=points, synthetic=bool(raw.get("synthetic", False)))
    return MarketData(**raw)


class CacheSnapshotStore:
    """Saves and restores a ResponseCache to a JSON file."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def save(self, cache: ResponseCache) -> bool:
        """Write all entries to disk. Returns False on failure (logged)."""
        entries: dict[str, list] = {}
        for kind in CacheKind:
            rows = []
            for key, entry in cache.namespace(kind).items():
                rows.append([key, entry.created_at, entry.ttl, _encode_value(kind, entry.value)])
            entries[kind.value] = rows

        payload = {
            "version": SNAPSHOT_VERSION,
            "saved_at": cache.clock(),
            "entries": entries,
        }

        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_bytes(orjson.dumps(payload))
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.warning(f"Failed to save cache snapshot to {self.path}: {e}")
            return False

        total = sum(len(rows) for rows in entries.values())
        logger.debug(f"Saved {total} cache entries to {self.path}")
        return True

    def load(self, cache: ResponseCache) -> int:
        """Restore unexpired entries into the cache. Returns the number loaded."""
        if not self.path.exists():
            return 0

        try:
            payload = orjson.loads(self.path.read_bytes())
        except (OSError, orjson.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable cache snapshot {self.path}: {e}")
            return 0

        if not isinstance(payload, dict) or payload.get("version") != SNAPSHOT_VERSION:
            logger.warning(f"Ignoring cache snapshot with unknown version: {self.path}")
            return 0

        now = cache.clock()
        loaded = 0
        for kind in CacheKind:
            for row in payload.get("entries", {}).get(kind.value, []):
                try:
                    key, created_at, ttl, raw = row
                    entry = CacheEntry(
                        value=_decode_value(kind, raw),
                        created_at=float(created_at),
                        ttl=float(ttl),
                    )
                except (TypeError, ValueError, KeyError) as e:
                    logger.debug(f"Skipping bad {kind.value} snapshot row: {e}")
                    continue
                if entry.is_expired(now):
                    continue
                cache.namespace(kind).restore(key, entry)
                loaded += 1

        logger.info(f"Loaded {loaded} cache entries from {self.path}")
        return loaded


async def periodic_flush(
    cache: ResponseCache,
    store: CacheSnapshotStore | None,
    interval: float,
) -> None:
    """Background task: sweep expired entries and flush the snapshot."""
    while True:
        try:
            await asyncio.sleep(interval)
            cache.sweep_expired()
            if store is not None:
                store.save(cache)
        except asyncio.CancelledError:
            # Final flush on shutdown
            if store is not None:
                store.save(cache)
            break
