"""Synthetic price history for when real OHLC data cannot be fetched.

The series is deterministic per asset id: the same id, price, length and
day always give the same bars. The last close equals the current price
exactly, and no day moves more than MAX_DAILY_MOVE.
"""

import random
import time
import zlib
from datetime import datetime, timezone

from entrywatch_core.models import PriceHistory, PricePoint

MAX_DAILY_MOVE = 0.03
DAY_SECONDS = 86400.0

# (min price, volume), checked top-down; cheaper assets trade more units
_VOLUME_TIERS: tuple[tuple[float, float], ...] = (
    (10000.0, 1_500_000.0),
    (1000.0, 3_500_000.0),
    (100.0, 7_000_000.0),
    (1.0, 15_000_000.0),
)
_SMALL_CAP_VOLUME = 35_000_000.0


def estimate_volume(price: float) -> float:
    """Estimate a daily trading volume from the price level."""
    for min_price, volume in _VOLUME_TIERS:
        if price > min_price:
            return volume
    return _SMALL_CAP_VOLUME


def _day_start(now: float) -> float:
    dt = datetime.fromtimestamp(now, tz=timezone.utc)
    midnight = dt.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight.timestamp()


def synthesize_history(
    asset_id: str,
    current_price: float,
    days: int = 30,
    now: float | None = None,
) -> PriceHistory:
    """
    Build a plausible daily history ending at `current_price`.

    Args:
        asset_id: Asset id (seeds the shape)
        current_price: Close of the last bar
        days: Number of daily bars
        now: Reference Unix time (defaults to the current time)

    Returns:
        PriceHistory of exactly `days` bars, tagged synthetic
    """
    if days <= 0:
        return PriceHistory(points=(), synthetic=True)

    rng = random.Random(zlib.crc32(asset_id.lower().encode()))
    last_day = _day_start(now if now is not None else time.time())

    # Walk backwards from the current price so the last close is exact
    closes = [current_price]
    for _ in range(days - 1):
        move = rng.uniform(-MAX_DAILY_MOVE, MAX_DAILY_MOVE)
        closes.append(closes[-1] / (1 + move))
    closes.reverse()

    points = []
    for i, close in enumerate(closes):
        open_price = closes[i - 1] if i > 0 else close
        wick = rng.uniform(0.0, MAX_DAILY_MOVE / 3)
        high = max(open_price, close) * (1 + wick)
        low = min(open_price, close) * (1 - wick)
        volume = estimate_volume(close) * rng.uniform(0.7, 1.3)
        points.append(
            PricePoint(
                timestamp=last_day - (days - 1 - i) * DAY_SECONDS,
                open=open_price,
                high=high,
                low=low,
                close=close,
                volume=volume,
            )
        )

    return PriceHistory(points=tuple(points), synthetic=True)
