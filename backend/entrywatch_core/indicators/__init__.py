"""Technical indicators (pure math, no I/O)."""

from entrywatch_core.indicators.indicators import (
    ema,
    sma,
    rsi,
    macd,
    highest,
    lowest,
    fibonacci_levels,
    volume_ratio,
    is_nan,
    last_defined,
)

__all__ = [
    "ema",
    "sma",
    "rsi",
    "macd",
    "highest",
    "lowest",
    "fibonacci_levels",
    "volume_ratio",
    "is_nan",
    "last_defined",
]
