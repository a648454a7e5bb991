"""Composition root and command-line entry point.

Every consumer shares exactly one RateCoordinator and one ResponseCache;
build_services() creates them once and injects them everywhere.

Usage:
    python -m entrywatch.main bitcoin ethereum solana
    python -m entrywatch.main btc eth --delay 5
"""

import argparse
import asyncio
import logging
from dataclasses import dataclass, field

import httpx

from entrywatch.clients import CoinGeckoRestClient
from entrywatch.config import Settings, get_settings
from entrywatch.logging_config import configure_logging
from entrywatch.services import (
    EntryAnalyzer,
    MarketDataFetcher,
    PriceRefresher,
    RateCoordinator,
    SequentialAnalysisScheduler,
)
from entrywatch.storage import CacheSnapshotStore, ResponseCache, periodic_flush
from entrywatch_core.engine import IndicatorEngine
from entrywatch_core.models import TrackedAsset

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Wired service graph for one process."""

    settings: Settings
    coordinator: RateCoordinator
    cache: ResponseCache
    client: CoinGeckoRestClient
    fetcher: MarketDataFetcher
    engine: IndicatorEngine
    analyzer: EntryAnalyzer
    snapshot_store: CacheSnapshotStore | None = None
    _flush_task: asyncio.Task | None = field(default=None, repr=False)

    def create_scheduler(self, consumer_id: str, **hooks) -> SequentialAnalysisScheduler:
        """New scheduler for one consumer (portfolio, watchlist, ...)."""
        return SequentialAnalysisScheduler(
            analyzer=self.analyzer,
            coordinator=self.coordinator,
            consumer_id=consumer_id,
            item_delay=self.settings.analysis_item_delay,
            cooldown=self.settings.analysis_cooldown,
            **hooks,
        )

    def create_price_refresher(self, consumer_id: str) -> PriceRefresher:
        return PriceRefresher(self.fetcher, self.coordinator, consumer_id=consumer_id)

    def start_background_tasks(self) -> None:
        """Start the cache sweep / snapshot flush loop."""
        if self._flush_task is not None:
            return
        self._flush_task = asyncio.create_task(
            periodic_flush(self.cache, self.snapshot_store, self.settings.cache_flush_interval)
        )
        logger.info("Cache maintenance task started")

    async def close(self) -> None:
        """Stop background tasks, flush the snapshot and close the client."""
        if self._flush_task is not None:
            self._flush_task.cancel()
            try:
                await self._flush_task
            except asyncio.CancelledError:
                pass
            self._flush_task = None
        if self.snapshot_store is not None:
            self.snapshot_store.save(self.cache)
        await self.client.close()
        logger.info("Services closed")


def build_services(
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Services:
    """
    Build the service graph.

    Args:
        settings: Settings to use (defaults to get_settings())
        transport: Optional httpx transport (tests use httpx.MockTransport)

    Returns:
        Services sharing one coordinator and one cache
    """
    settings = settings or get_settings()

    coordinator = RateCoordinator(min_interval=settings.min_api_interval)
    cache = ResponseCache(
        price_ttl=settings.price_cache_ttl,
        ohlc_ttl=settings.ohlc_cache_ttl,
        market_ttl=settings.market_cache_ttl,
    )

    snapshot_store = None
    if settings.cache_snapshot_path:
        snapshot_store = CacheSnapshotStore(settings.cache_snapshot_path)
        snapshot_store.load(cache)

    client = CoinGeckoRestClient(
        base_url=settings.coingecko_base_url,
        api_key=settings.coingecko_api_key,
        timeout=settings.http_timeout,
        transport=transport,
    )
    fetcher = MarketDataFetcher(
        client=client,
        cache=cache,
        coordinator=coordinator,
        vs_currency=settings.vs_currency,
        ohlc_days=settings.ohlc_days,
        fallback_days=settings.fallback_days,
        max_retries=settings.max_retries,
        retry_base_delay=settings.retry_base_delay,
        retry_max_delay=settings.retry_max_delay,
    )
    engine = IndicatorEngine()
    analyzer = EntryAnalyzer(fetcher, engine)

    return Services(
        settings=settings,
        coordinator=coordinator,
        cache=cache,
        client=client,
        fetcher=fetcher,
        engine=engine,
        analyzer=analyzer,
        snapshot_store=snapshot_store,
    )


async def run_once(asset_ids: list[str], services: Services) -> list[TrackedAsset]:
    """Refresh prices, then run one sequential analysis over `asset_ids`."""
    assets = [TrackedAsset(id=asset_id, symbol=asset_id.upper()) for asset_id in asset_ids]

    refresher = services.create_price_refresher("cli")
    await refresher.refresh_once(assets)

    scheduler = services.create_scheduler("cli")
    if not scheduler.start_run(assets):
        logger.error("Analysis run could not be started")
        return assets
    await scheduler.wait()
    return assets


def main():
    parser = argparse.ArgumentParser(description="Analyze entry quality for crypto assets")
    parser.add_argument("assets", nargs="+", help="Asset ids or tickers (e.g. bitcoin, eth)")
    parser.add_argument(
        "--delay", type=float, default=None,
        help="Seconds between assets (default: ANALYSIS_ITEM_DELAY setting)",
    )
    args = parser.parse_args()

    settings = get_settings()
    if args.delay is not None:
        settings = settings.model_copy(update={"analysis_item_delay": args.delay})
    configure_logging(settings.log_level)

    async def _run() -> list[TrackedAsset]:
        services = build_services(settings)
        services.start_background_tasks()
        try:
            return await run_once(args.assets, services)
        finally:
            await services.close()

    assets = asyncio.run(_run())

    for asset in assets:
        print("\n" + "=" * 60)
        print(f"  {asset.symbol}  price={asset.current_price:,.4f}  "
              f"score={asset.entry_score:.0f} ({asset.entry_signal.value})  "
              f"status={asset.analysis_status.value}")
        print("=" * 60)
        if asset.indicators is not None:
            print(asset.indicators.summary())


if __name__ == "__main__":
    main()
