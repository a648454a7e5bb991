"""Per-asset technical analysis: fetch -> compute -> score -> write back."""

import asyncio
import logging

from entrywatch.errors import AnalysisCancelled
from entrywatch.services.market_data import MarketDataFetcher
from entrywatch.services.timing import SleepFunc, cancellable_sleep
from entrywatch_core.engine import IndicatorEngine, InsufficientDataError, enhance_with_market_data
from entrywatch_core.models import AnalysisStatus, TrackedAsset
from entrywatch_core.scoring import apply_technical_result, mark_analysis_error

logger = logging.getLogger(__name__)


class EntryAnalyzer:
    """Runs the technical analysis of one tracked asset.

    Upstream trouble never fails an analysis: the fetcher degrades to
    cached or synthetic data. Only a history that yields no usable
    indicators (or an unexpected error) sets the asset's status to ERROR,
    and then its last score is left as it was.
    """

    def __init__(
        self,
        fetcher: MarketDataFetcher,
        engine: IndicatorEngine | None = None,
        include_market_data: bool = True,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self.fetcher = fetcher
        self.engine = engine or IndicatorEngine()
        self.include_market_data = include_market_data
        self._sleep = sleep

    async def analyze(
        self,
        asset: TrackedAsset,
        *,
        consumer_id: str,
        cancel_event: asyncio.Event | None = None,
    ) -> AnalysisStatus:
        """
        Analyze one asset and store the result on it.

        Args:
            asset: Asset to analyze (updated in place)
            consumer_id: Identity passed to the RateCoordinator
            cancel_event: Set to abort scheduled waits

        Returns:
            The asset's resulting analysis status

        Raises:
            AnalysisCancelled: If cancelled during a scheduled wait
        """
        try:
            await self._wait_for_slot(asset, cancel_event)
            history = await self.fetcher.fetch_price_history(
                asset.id,
                asset.current_price,
                consumer_id=consumer_id,
                cancel_event=cancel_event,
            )

            market = None
            if self.include_market_data:
                await self._wait_for_slot(asset, cancel_event)
                market = await self.fetcher.fetch_market_data(asset.id, consumer_id=consumer_id)

            snapshot = self.engine.compute(history)
            snapshot = enhance_with_market_data(snapshot, market)
        except AnalysisCancelled:
            raise
        except InsufficientDataError as e:
            logger.warning(f"No usable indicators for {asset.symbol}: {e}")
            mark_analysis_error(asset)
            return asset.analysis_status
        except Exception as e:
            logger.error(f"Technical analysis failed for {asset.symbol}: {e}", exc_info=True)
            mark_analysis_error(asset)
            return asset.analysis_status

        result = apply_technical_result(asset, snapshot)
        logger.info(
            f"Technical analysis completed for {asset.symbol} - "
            f"quality {snapshot.overall_quality.value}, score {result.score:.0f}"
            f"{' (synthetic history)' if snapshot.synthetic else ''}"
        )
        return asset.analysis_status

    async def _wait_for_slot(self, asset: TrackedAsset, cancel_event: asyncio.Event | None) -> None:
        """Wait out the coordinator's minimum interval instead of being denied."""
        wait = self.fetcher.coordinator.time_until_next_call()
        if wait > 0 and await cancellable_sleep(wait, cancel_event, self._sleep):
            raise AnalysisCancelled(f"Cancelled while waiting to analyze {asset.symbol}")
