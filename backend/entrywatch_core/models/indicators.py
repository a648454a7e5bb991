"""Indicator snapshot and entry signal models."""

import time
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class TrendDirection(str, Enum):
    """Trend classification."""

    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"


class EntryTechnique(str, Enum):
    """Technique that produced an entry signal."""

    RSI_OVERSOLD = "rsi_oversold"
    MACD_BULLISH_CROSSOVER = "macd_bullish_crossover"
    MOVING_AVERAGE_CROSSOVER = "moving_average_crossover"
    SUPPORT_BOUNCE = "support_bounce"
    VOLUME_BREAKOUT = "volume_breakout"
    FIBONACCI_RETRACEMENT = "fibonacci_retracement"


class SignalStrength(str, Enum):
    """Signal strength, ordered from strongest to weakest."""

    VERY_STRONG = "very_strong"
    STRONG = "strong"
    MODERATE = "moderate"
    WEAK = "weak"
    VERY_WEAK = "very_weak"


class EntryQuality(str, Enum):
    """Overall entry quality."""

    EXCELLENT = "excellent"
    GOOD = "good"
    AVERAGE = "average"
    POOR = "poor"
    VERY_POOR = "very_poor"


# Fixed mapping, do not tune
QUALITY_SCORES: dict[EntryQuality, int] = {
    EntryQuality.EXCELLENT: 95,
    EntryQuality.GOOD: 80,
    EntryQuality.AVERAGE: 60,
    EntryQuality.POOR: 30,
    EntryQuality.VERY_POOR: 10,
}


def quality_to_score(quality: EntryQuality) -> int:
    """Map an entry quality to its 0-100 score."""
    return QUALITY_SCORES[quality]


class EntrySignal(BaseModel):
    """A discrete, technique-tagged entry recommendation."""

    model_config = ConfigDict(frozen=True)

    technique: EntryTechnique
    strength: SignalStrength
    description: str
    target_price: float
    stop_loss: float
    confidence: float = Field(ge=0.0, le=1.0)


class IndicatorSnapshot(BaseModel):
    """Technical indicators computed from one price history.

    Moving averages that need more history than was available are None.
    """

    price: float
    price_change_pct: float = 0.0  # last bar vs the one before, percent
    rsi: float = 50.0
    macd: float = 0.0
    macd_signal: float = 0.0
    sma10: float | None = None
    sma50: float | None = None
    ema10: float | None = None
    ema50: float | None = None
    support_level: float = 0.0
    resistance_level: float = 0.0
    fib_38: float = 0.0
    fib_50: float = 0.0
    fib_61: float = 0.0
    avg_volume20: float = 0.0
    current_volume: float = 0.0
    volume_ratio: float = 0.0
    trend: TrendDirection = TrendDirection.NEUTRAL
    entry_signals: list[EntrySignal] = Field(default_factory=list)
    overall_quality: EntryQuality = EntryQuality.POOR
    synthetic: bool = False
    computed_at: float = Field(default_factory=time.time)

    @property
    def quality_score(self) -> int:
        return quality_to_score(self.overall_quality)

    def summary(self) -> str:
        """Render a short plain-text summary."""
        lines = [
            f"Entry quality: {self.overall_quality.value} ({self.quality_score})",
            f"Trend: {self.trend.value}",
            f"Support/Resistance: {self.support_level:.4f} / {self.resistance_level:.4f}",
            f"RSI: {self.rsi:.1f}  MACD: {self.macd:.4f} (signal {self.macd_signal:.4f})",
        ]
        if self.sma10 is not None and self.sma50 is not None:
            lines.append(f"SMA10/50: {self.sma10:.4f} / {self.sma50:.4f}")
        if self.synthetic:
            lines.append("Based on synthetic history")
        for signal in self.entry_signals:
            lines.append(
                f"- {signal.technique.value} [{signal.strength.value}]: {signal.description}"
            )
        return "\n".join(lines)


class MarketData(BaseModel):
    """Market metadata for one asset (market cap, volume, changes)."""

    model_config = ConfigDict(frozen=True)

    market_cap: float | None = None
    total_volume: float | None = None
    price_change_24h: float | None = None  # percent
    price_change_7d: float | None = None  # percent
