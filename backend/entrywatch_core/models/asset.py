"""Tracked asset model shared by portfolio and watchlist consumers."""

import time
from enum import Enum

from pydantic import BaseModel, Field

from entrywatch_core.models.indicators import IndicatorSnapshot


class AnalysisStatus(str, Enum):
    """Technical analysis status of a tracked asset."""

    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


class EntrySignalClass(str, Enum):
    """Discrete buy signal derived from an entry score."""

    STRONG_BUY = "strong_buy"
    BUY = "buy"
    NEUTRAL = "neutral"
    WAIT = "wait"
    AVOID = "avoid"


class ScoreSource(str, Enum):
    """Which formula produced the stored entry score."""

    NONE = "none"
    TARGET_RATIO = "target_ratio"
    TECHNICAL = "technical"


class EntryOpportunity(str, Enum):
    """Price position relative to the entry target."""

    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    HIGH = "high"
    AVOID = "avoid"


class TrackedAsset(BaseModel):
    """An asset followed by a portfolio or watchlist.

    The consumer owns the record; the analysis services only write the
    price and analysis fields.
    """

    id: str  # upstream vendor id, e.g. "bitcoin"
    symbol: str
    name: str = ""
    current_price: float = 0.0
    entry_target: float = 0.0
    target_3month: float = 0.0
    target_long_term: float = 0.0
    holdings: float = 0.0
    avg_cost: float = 0.0

    indicators: IndicatorSnapshot | None = None
    entry_score: float = 0.0
    entry_signal: EntrySignalClass = EntrySignalClass.NEUTRAL
    score_source: ScoreSource = ScoreSource.NONE
    analysis_status: AnalysisStatus = AnalysisStatus.PENDING

    last_price_update: float | None = None
    last_analysis_update: float | None = None
    added_at: float = Field(default_factory=time.time)

    @property
    def has_holdings(self) -> bool:
        return self.holdings > 0

    @property
    def has_technical_analysis(self) -> bool:
        return self.indicators is not None and self.analysis_status == AnalysisStatus.SUCCESS

    @property
    def total_value(self) -> float:
        return self.holdings * self.current_price

    @property
    def profit_loss(self) -> float:
        if self.holdings == 0 or self.avg_cost == 0:
            return 0.0
        return self.total_value - self.holdings * self.avg_cost

    @property
    def upside_3month(self) -> float:
        """Fractional upside from the current price to the 3-month target."""
        if self.current_price <= 0:
            return 0.0
        return (self.target_3month - self.current_price) / self.current_price

    @property
    def upside_long_term(self) -> float:
        if self.current_price <= 0:
            return 0.0
        return (self.target_long_term - self.current_price) / self.current_price
