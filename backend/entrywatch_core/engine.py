"""Indicator engine: price history -> indicator snapshot with entry signals.

Signal rules (each evaluated independently on the latest bar):
- RSI below 30 -> oversold bounce
- MACD line crossing above its signal line -> bullish crossover
- SMA10 above SMA50 -> golden cross
- Price within 1% of support -> support bounce
- Volume ratio above 1.5 on an up bar -> volume breakout
- Price within 1% of a Fibonacci level -> retracement

Overall quality is a strength-weighted vote over the active signals.
When upstream market data is available, its 24h volume replaces the
bar volume and the volume breakout is re-evaluated against it.

This module is pure business logic with no I/O dependencies.
"""

import logging
import math
from typing import Sequence

from entrywatch_core.indicators import (
    ema,
    fibonacci_levels,
    highest,
    last_defined,
    lowest,
    macd,
    rsi,
    sma,
    volume_ratio,
)
from entrywatch_core.models import (
    EntryQuality,
    EntrySignal,
    EntryTechnique,
    IndicatorSnapshot,
    MarketData,
    PriceHistory,
    PricePoint,
    SignalStrength,
    TrendDirection,
)

logger = logging.getLogger(__name__)

RSI_OVERSOLD = 30.0
PROXIMITY_PCT = 0.01
BREAKOUT_VOLUME_RATIO = 1.5
SYNTHETIC_CONFIDENCE_FACTOR = 0.8
WEEKLY_TREND_THRESHOLD_PCT = 5.0

STRENGTH_WEIGHTS: dict[SignalStrength, float] = {
    SignalStrength.VERY_STRONG: 1.0,
    SignalStrength.STRONG: 0.8,
    SignalStrength.MODERATE: 0.6,
    SignalStrength.WEAK: 0.4,
    SignalStrength.VERY_WEAK: 0.2,
}

_STRENGTH_CONFIDENCE_BONUS: dict[SignalStrength, float] = {
    SignalStrength.VERY_STRONG: 0.10,
    SignalStrength.STRONG: 0.05,
    SignalStrength.MODERATE: 0.0,
    SignalStrength.WEAK: -0.05,
    SignalStrength.VERY_WEAK: -0.10,
}

# (min weighted confidence, quality), checked top-down
_QUALITY_THRESHOLDS: tuple[tuple[float, EntryQuality], ...] = (
    (0.85, EntryQuality.EXCELLENT),
    (0.75, EntryQuality.GOOD),
    (0.60, EntryQuality.AVERAGE),
    (0.40, EntryQuality.POOR),
)


class InsufficientDataError(ValueError):
    """Raised when a price history cannot produce usable indicators."""


def strength_from_deviation(normalized: float) -> SignalStrength:
    """Map a normalized deviation (1.0 = textbook-strong) to a strength."""
    if normalized >= 1.0:
        return SignalStrength.VERY_STRONG
    if normalized >= 0.75:
        return SignalStrength.STRONG
    if normalized >= 0.5:
        return SignalStrength.MODERATE
    if normalized >= 0.25:
        return SignalStrength.WEAK
    return SignalStrength.VERY_WEAK


def overall_quality(signals: Sequence[EntrySignal]) -> EntryQuality:
    """Collapse active signals into one quality level.

    Weighted mean of signal confidences, weighted by strength.
    No active signals -> POOR.
    """
    if not signals:
        return EntryQuality.POOR

    total_weight = 0.0
    total_score = 0.0
    for signal in signals:
        weight = STRENGTH_WEIGHTS[signal.strength]
        total_score += signal.confidence * weight
        total_weight += weight

    average = total_score / total_weight if total_weight > 0 else 0.0
    for threshold, quality in _QUALITY_THRESHOLDS:
        if average >= threshold:
            return quality
    return EntryQuality.VERY_POOR


def make_signal(
    snap: IndicatorSnapshot,
    technique: EntryTechnique,
    deviation: float,
    description: str,
    target: float,
    stop: float,
    base_confidence: float,
) -> EntrySignal:
    """Build a signal; strength from the normalized deviation, confidence adjusted for it."""
    strength = strength_from_deviation(deviation)
    confidence = base_confidence + _STRENGTH_CONFIDENCE_BONUS[strength]
    if snap.synthetic:
        confidence *= SYNTHETIC_CONFIDENCE_FACTOR
    return EntrySignal(
        technique=technique,
        strength=strength,
        description=description,
        target_price=target,
        stop_loss=stop,
        confidence=min(1.0, max(0.0, confidence)),
    )


def volume_breakout_signal(snap: IndicatorSnapshot, price_up: bool) -> EntrySignal | None:
    """Volume above 1.5x its average on an up move."""
    if snap.volume_ratio <= BREAKOUT_VOLUME_RATIO or not price_up:
        return None
    price = snap.price
    return make_signal(
        snap,
        EntryTechnique.VOLUME_BREAKOUT,
        (snap.volume_ratio - BREAKOUT_VOLUME_RATIO) / BREAKOUT_VOLUME_RATIO,
        f"Volume {snap.volume_ratio:.1f}x average on an up move - breakout",
        price * 1.15,
        price * 0.88,
        0.85,
    )


def enhance_with_market_data(
    snapshot: IndicatorSnapshot,
    market: MarketData | None,
) -> IndicatorSnapshot:
    """
    Fold upstream market data into a snapshot.

    - A 7-day move beyond +/-5% turns a NEUTRAL trend into BULLISH/BEARISH.
      Other trends are left alone.
    - The 24h traded volume, converted to base units at the current price,
      becomes the current volume. Upstream OHLC rows carry no volume, so
      this is the only measured one. The volume ratio and the breakout
      signal are recomputed from it, with the 24h price change deciding
      the up move, and the overall quality follows.

    Returns:
        The snapshot itself when nothing applies, otherwise an updated copy
    """
    if market is None:
        return snapshot

    update: dict = {}

    change = market.price_change_7d
    if change is not None and snapshot.trend == TrendDirection.NEUTRAL:
        if change > WEEKLY_TREND_THRESHOLD_PCT:
            update["trend"] = TrendDirection.BULLISH
        elif change < -WEEKLY_TREND_THRESHOLD_PCT:
            update["trend"] = TrendDirection.BEARISH

    total_volume = market.total_volume
    if total_volume and total_volume > 0 and snapshot.price > 0 and snapshot.avg_volume20 > 0:
        current_volume = total_volume / snapshot.price
        rescaled = snapshot.model_copy(update={
            "current_volume": current_volume,
            "volume_ratio": current_volume / snapshot.avg_volume20,
        })
        day_change = market.price_change_24h
        if day_change is None:
            day_change = snapshot.price_change_pct

        signals = [s for s in snapshot.entry_signals if s.technique != EntryTechnique.VOLUME_BREAKOUT]
        breakout = volume_breakout_signal(rescaled, day_change > 0)
        if breakout is not None:
            signals.append(breakout)

        update.update(
            current_volume=rescaled.current_volume,
            volume_ratio=rescaled.volume_ratio,
            entry_signals=signals,
            overall_quality=overall_quality(signals),
        )

    return snapshot.model_copy(update=update) if update else snapshot


class IndicatorEngine:
    """Calculator for all indicators and entry signals of one history."""

    def __init__(
        self,
        rsi_period: int = 14,
        macd_fast: int = 12,
        macd_slow: int = 26,
        macd_signal: int = 9,
        sma_short: int = 10,
        sma_long: int = 50,
        level_lookback: int = 20,
        volume_period: int = 20,
    ):
        self.rsi_period = rsi_period
        self.macd_fast = macd_fast
        self.macd_slow = macd_slow
        self.macd_signal = macd_signal
        self.sma_short = sma_short
        self.sma_long = sma_long
        self.level_lookback = level_lookback
        self.volume_period = volume_period

    def compute(self, history: PriceHistory | Sequence[PricePoint]) -> IndicatorSnapshot:
        """
        Compute an indicator snapshot for the latest bar of a history.

        Args:
            history: Time-ordered price bars (PriceHistory or plain sequence)

        Returns:
            IndicatorSnapshot with signals and overall quality

        Raises:
            InsufficientDataError: If the history is empty or degenerate
        """
        synthetic = bool(getattr(history, "synthetic", False))
        points = list(history)
        self._validate(points)

        closes = [p.close for p in points]
        highs = [p.high for p in points]
        lows = [p.low for p in points]
        volumes = [p.volume for p in points]
        price = closes[-1]

        rsi_value = last_defined(rsi(closes, self.rsi_period))
        macd_line, signal_line = macd(closes, self.macd_fast, self.macd_slow, self.macd_signal)
        macd_value = last_defined(macd_line)
        macd_signal_value = last_defined(signal_line)

        sma_short = last_defined(sma(closes, self.sma_short))
        sma_long = last_defined(sma(closes, self.sma_long))
        ema_short = last_defined(ema(closes, self.sma_short))
        ema_long = last_defined(ema(closes, self.sma_long))

        lookback = min(self.level_lookback, len(points))
        support = lowest(lows, lookback)[-1]
        resistance = highest(highs, lookback)[-1]
        fib_38, fib_50, fib_61 = fibonacci_levels(resistance, support)

        vol_ratio, avg_volume, current_volume = volume_ratio(volumes, self.volume_period)

        snapshot = IndicatorSnapshot(
            price=price,
            price_change_pct=(price / closes[-2] - 1) * 100 if closes[-2] > 0 else 0.0,
            rsi=rsi_value if rsi_value is not None else 50.0,
            macd=macd_value if macd_value is not None else 0.0,
            macd_signal=(
                macd_signal_value if macd_signal_value is not None
                else (macd_value if macd_value is not None else 0.0)
            ),
            sma10=sma_short,
            sma50=sma_long,
            ema10=ema_short,
            ema50=ema_long,
            support_level=support,
            resistance_level=resistance,
            fib_38=fib_38,
            fib_50=fib_50,
            fib_61=fib_61,
            avg_volume20=avg_volume,
            current_volume=current_volume,
            volume_ratio=vol_ratio,
            trend=self._trend(closes, sma_short, sma_long),
            synthetic=synthetic,
        )

        signals = self._entry_signals(snapshot, closes, macd_line, signal_line, rsi_value)
        snapshot.entry_signals = signals
        snapshot.overall_quality = overall_quality(signals)
        return snapshot

    def _validate(self, points: list[PricePoint]) -> None:
        if len(points) < 2:
            raise InsufficientDataError(f"need at least 2 price points, got {len(points)}")
        closes = [p.close for p in points]
        if any(not math.isfinite(c) for c in closes):
            raise InsufficientDataError("history contains non-finite closes")
        if max(closes) <= 0 or closes[-1] <= 0:
            raise InsufficientDataError("history has no positive closes")

    def _trend(
        self,
        closes: list[float],
        sma_short: float | None,
        sma_long: float | None,
    ) -> TrendDirection:
        price = closes[-1]
        if sma_short is not None and sma_long is not None:
            if sma_short > sma_long and price > sma_short and price > sma_long:
                return TrendDirection.BULLISH
            if sma_short < sma_long and price < sma_short and price < sma_long:
                return TrendDirection.BEARISH
            return TrendDirection.NEUTRAL

        # Short history: compare the last 10 closes with the 10 before them
        if len(closes) < 20:
            return TrendDirection.NEUTRAL
        recent = sum(closes[-10:]) / 10
        older = sum(closes[-20:-10]) / 10
        if recent > older * 1.02:
            return TrendDirection.BULLISH
        if recent < older * 0.98:
            return TrendDirection.BEARISH
        return TrendDirection.NEUTRAL

    def _entry_signals(
        self,
        snap: IndicatorSnapshot,
        closes: list[float],
        macd_line: list[float],
        signal_line: list[float],
        rsi_value: float | None,
    ) -> list[EntrySignal]:
        price = snap.price
        signals: list[EntrySignal] = []

        def add(*args):
            signals.append(make_signal(snap, *args))

        if rsi_value is not None and rsi_value < RSI_OVERSOLD:
            add(
                EntryTechnique.RSI_OVERSOLD,
                (RSI_OVERSOLD - rsi_value) / 20.0,
                f"RSI {rsi_value:.1f} indicates oversold conditions - potential bounce",
                price * 1.05,
                price * 0.95,
                0.75,
            )

        if self._macd_crossed_up(macd_line, signal_line):
            gap_pct = (macd_line[-1] - signal_line[-1]) / price * 100
            add(
                EntryTechnique.MACD_BULLISH_CROSSOVER,
                gap_pct / 0.5,
                "MACD line crossed above signal line - bullish momentum",
                price * 1.08,
                price * 0.92,
                0.70,
            )

        if snap.sma10 is not None and snap.sma50 is not None and snap.sma10 > snap.sma50 > 0:
            add(
                EntryTechnique.MOVING_AVERAGE_CROSSOVER,
                (snap.sma10 / snap.sma50 - 1) / 0.05,
                "Golden cross - short moving average above long moving average",
                price * 1.10,
                price * 0.90,
                0.80,
            )

        support = snap.support_level
        if support > 0:
            distance = abs(price - support) / support
            if distance <= PROXIMITY_PCT:
                add(
                    EntryTechnique.SUPPORT_BOUNCE,
                    1 - distance / PROXIMITY_PCT,
                    "Price near support level - potential bounce opportunity",
                    snap.resistance_level,
                    support * 0.95,
                    0.65,
                )

        breakout = volume_breakout_signal(snap, snap.price_change_pct > 0)
        if breakout is not None:
            signals.append(breakout)

        fib = self._nearest_fib_level(snap)
        if fib is not None:
            label, level, target, distance = fib
            add(
                EntryTechnique.FIBONACCI_RETRACEMENT,
                1 - distance / PROXIMITY_PCT,
                f"Price at {label} Fibonacci retracement",
                target,
                level * 0.97,
                0.70,
            )

        return signals

    @staticmethod
    def _macd_crossed_up(macd_line: list[float], signal_line: list[float]) -> bool:
        if len(macd_line) < 2:
            return False
        values = (macd_line[-2], signal_line[-2], macd_line[-1], signal_line[-1])
        if any(math.isnan(v) for v in values):
            return False
        prev_macd, prev_signal, cur_macd, cur_signal = values
        return prev_macd <= prev_signal and cur_macd > cur_signal

    @staticmethod
    def _nearest_fib_level(snap: IndicatorSnapshot) -> tuple[str, float, float, float] | None:
        """Return (label, level, target, distance) of the closest level in range."""
        if snap.resistance_level <= snap.support_level:
            return None

        levels = (
            ("38.2%", snap.fib_38, snap.resistance_level),
            ("50%", snap.fib_50, snap.fib_38),
            ("61.8%", snap.fib_61, snap.fib_38),
        )
        best = None
        for label, level, target in levels:
            if level <= 0:
                continue
            distance = abs(snap.price - level) / level
            if distance <= PROXIMITY_PCT and (best is None or distance < best[3]):
                best = (label, level, target, distance)
        return best
