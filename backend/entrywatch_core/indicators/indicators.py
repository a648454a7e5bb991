"""Technical indicators for entry analysis.

Pure NumPy implementations. Every series function returns a list the same
length as its input, with NaN where the indicator is not yet defined.
"""

import math
from typing import Sequence

import numpy as np


def _to_array(values: Sequence[float]) -> np.ndarray:
    return np.asarray(values, dtype=np.float64)


def _to_list(arr: np.ndarray) -> list[float]:
    return [float(v) for v in arr]


def is_nan(value: float | None) -> bool:
    """Check if a value is missing or NaN."""
    return value is None or math.isnan(value)


def last_defined(values: Sequence[float]) -> float | None:
    """Return the last element, or None when it is NaN or the list is empty."""
    if not values or is_nan(values[-1]):
        return None
    return float(values[-1])


def _rolling(values: Sequence[float], period: int, reduce) -> list[float]:
    """Apply `reduce` over each trailing window of `period` values, NaN until the first full window."""
    if period < 1 or len(values) < period:
        return [math.nan] * len(values)

    windows = np.lib.stride_tricks.sliding_window_view(_to_array(values), period)
    result = np.full(len(values), np.nan)
    result[period - 1:] = reduce(windows, axis=1)
    return _to_list(result)


def sma(values: Sequence[float], period: int) -> list[float]:
    """Mean of the trailing `period` values at each bar."""
    return _rolling(values, period, np.mean)


def ema(values: Sequence[float], period: int) -> list[float]:
    """
    Calculate Exponential Moving Average.

    The first defined value is the SMA of the first `period` points;
    after that EMA = price * k + prev * (1 - k) with k = 2 / (period + 1).

    Args:
        values: Sequence of price values
        period: EMA period

    Returns:
        List of EMA values (same length as input, with NaN for initial values)
    """
    if len(values) < period:
        return [math.nan] * len(values)

    arr = _to_array(values)
    multiplier = 2.0 / (period + 1)

    result = np.empty_like(arr)
    result[:period - 1] = np.nan
    result[period - 1] = np.mean(arr[:period])

    for i in range(period, len(arr)):
        result[i] = arr[i] * multiplier + result[i - 1] * (1 - multiplier)

    return _to_list(result)


def rsi(values: Sequence[float], period: int = 14) -> list[float]:
    """
    Calculate Relative Strength Index with Wilder's smoothing.

    The first average gain/loss is the plain mean of the first `period`
    changes; later values use avg = (prev * (period - 1) + current) / period.
    RSI = 100 - 100 / (1 + avg_gain / avg_loss), and 100 when avg_loss is 0.

    Args:
        values: Sequence of closes
        period: RSI period

    Returns:
        List of RSI values, each within [0, 100]
    """
    n = len(values)
    if n < period + 1:
        return [math.nan] * n

    arr = _to_array(values)
    changes = np.diff(arr)
    gains = np.where(changes > 0, changes, 0.0)
    losses = np.where(changes < 0, -changes, 0.0)

    result = np.full(n, np.nan)
    avg_gain = float(np.mean(gains[:period]))
    avg_loss = float(np.mean(losses[:period]))
    result[period] = _rsi_value(avg_gain, avg_loss)

    for i in range(period + 1, n):
        avg_gain = (avg_gain * (period - 1) + gains[i - 1]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i - 1]) / period
        result[i] = _rsi_value(avg_gain, avg_loss)

    return _to_list(result)


def _rsi_value(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


def macd(
    values: Sequence[float],
    fast: int = 12,
    slow: int = 26,
    signal: int = 9,
) -> tuple[list[float], list[float]]:
    """
    Calculate MACD line and signal line.

    MACD = EMA(fast) - EMA(slow); signal = EMA(signal) of the defined part
    of the MACD series.

    Args:
        values: Sequence of closes
        fast: Fast EMA period
        slow: Slow EMA period
        signal: Signal EMA period

    Returns:
        Tuple of (macd_line, signal_line) lists
    """
    n = len(values)
    ema_fast = ema(values, fast)
    ema_slow = ema(values, slow)

    macd_line = [f - s for f, s in zip(ema_fast, ema_slow)]
    signal_line = [math.nan] * n

    start = slow - 1
    if n > start:
        signal_part = ema(macd_line[start:], signal)
        signal_line[start:] = signal_part

    return macd_line, signal_line


def highest(values: Sequence[float], period: int) -> list[float]:
    """Rolling maximum over `period` bars (resistance from highs)."""
    return _rolling(values, period, np.max)


def lowest(values: Sequence[float], period: int) -> list[float]:
    """Rolling minimum over `period` bars (support from lows)."""
    return _rolling(values, period, np.min)


def fibonacci_levels(high: float, low: float) -> tuple[float, float, float]:
    """
    Calculate Fibonacci retracement levels for a swing range.

    fib_382 = high - (high - low) * 0.382
    fib_500 = high - (high - low) * 0.500
    fib_618 = high - (high - low) * 0.618

    Returns:
        Tuple of (fib_382, fib_500, fib_618)
    """
    range_size = high - low
    return (
        high - range_size * 0.382,
        high - range_size * 0.5,
        high - range_size * 0.618,
    )


def volume_ratio(volumes: Sequence[float], period: int = 20) -> tuple[float, float, float]:
    """
    Compare the latest volume with its recent average.

    The average covers the last `period` bars (fewer when the series is
    shorter), including the latest one.

    Returns:
        Tuple of (ratio, average_volume, current_volume); ratio is 0 when
        the average is 0
    """
    if not volumes:
        return 0.0, 0.0, 0.0

    window = _to_array(volumes[-period:])
    avg = float(np.mean(window))
    current = float(volumes[-1])
    if avg <= 0:
        return 0.0, avg, current
    return current / avg, avg, current
