"""Data models."""

from entrywatch_core.models.price import PricePoint, PriceHistory
from entrywatch_core.models.indicators import (
    EntryQuality,
    EntrySignal,
    EntryTechnique,
    IndicatorSnapshot,
    MarketData,
    QUALITY_SCORES,
    SignalStrength,
    TrendDirection,
    quality_to_score,
)
from entrywatch_core.models.asset import (
    AnalysisStatus,
    EntryOpportunity,
    EntrySignalClass,
    ScoreSource,
    TrackedAsset,
)

__all__ = [
    # Hot path (dataclass)
    "PricePoint",
    "PriceHistory",
    # Indicators (Pydantic)
    "EntryQuality",
    "EntrySignal",
    "EntryTechnique",
    "IndicatorSnapshot",
    "MarketData",
    "QUALITY_SCORES",
    "SignalStrength",
    "TrendDirection",
    "quality_to_score",
    # Assets (Pydantic)
    "AnalysisStatus",
    "EntryOpportunity",
    "EntrySignalClass",
    "ScoreSource",
    "TrackedAsset",
]
