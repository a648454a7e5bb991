"""Market data and analysis services."""

from entrywatch.services.rate_coordinator import RateCoordinator, CoordinationState
from entrywatch.services.market_data import MarketDataFetcher, anchor_to_price
from entrywatch.services.entry_analyzer import EntryAnalyzer
from entrywatch.services.analysis_scheduler import (
    RunState,
    SchedulerRun,
    SequentialAnalysisScheduler,
)
from entrywatch.services.price_refresher import PriceRefresher
from entrywatch.services.timing import cancellable_sleep

__all__ = [
    "RateCoordinator",
    "CoordinationState",
    "MarketDataFetcher",
    "anchor_to_price",
    "EntryAnalyzer",
    "RunState",
    "SchedulerRun",
    "SequentialAnalysisScheduler",
    "PriceRefresher",
    "cancellable_sleep",
]
