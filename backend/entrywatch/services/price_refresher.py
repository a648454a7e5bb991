"""Periodic spot price refresh for tracked assets."""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Sequence

from entrywatch.services.market_data import MarketDataFetcher
from entrywatch.services.rate_coordinator import RateCoordinator
from entrywatch_core.models import TrackedAsset
from entrywatch_core.scoring import apply_price_update

logger = logging.getLogger(__name__)

AssetsProvider = Callable[[], Sequence[TrackedAsset]]
UpdateCallback = Callable[[list[TrackedAsset]], Awaitable[None] | None]


class PriceRefresher:
    """Keeps current prices (and target-ratio scores) up to date.

    While another consumer holds the intensive-operation lock, only
    cached prices are applied and no upstream call is attempted.
    """

    def __init__(
        self,
        fetcher: MarketDataFetcher,
        coordinator: RateCoordinator,
        consumer_id: str = "price-refresher",
        clock: Callable[[], float] = time.time,
    ):
        self.fetcher = fetcher
        self.coordinator = coordinator
        self.consumer_id = consumer_id
        self._clock = clock
        self._task: asyncio.Task | None = None

    async def refresh_once(self, assets: Sequence[TrackedAsset]) -> list[TrackedAsset]:
        """
        Refresh prices for `assets` in place.

        Returns:
            Assets whose price was updated
        """
        if not assets:
            return []

        ids = [asset.id for asset in assets]
        if self.coordinator.can_make_api_call(self.consumer_id):
            prices = await self.fetcher.fetch_bulk_prices(ids, consumer_id=self.consumer_id)
        else:
            logger.debug(f"[{self.consumer_id}] Upstream busy, applying cached prices only")
            prices = self.fetcher.get_cached_prices(ids)

        now = self._clock()
        updated = []
        for asset in assets:
            price = prices.get(asset.id)
            if price is None or price <= 0:
                continue
            apply_price_update(asset, price, now)
            updated.append(asset)

        if len(updated) < len(assets):
            logger.info(f"[{self.consumer_id}] Updated {len(updated)}/{len(assets)} prices")
        return updated

    async def run_periodic(
        self,
        assets_provider: AssetsProvider,
        interval: float,
        on_update: UpdateCallback | None = None,
    ) -> None:
        """Background loop: refresh, notify, sleep. Stops on cancellation."""
        while True:
            try:
                updated = await self.refresh_once(list(assets_provider()))
                if updated and on_update is not None:
                    result = on_update(updated)
                    if asyncio.iscoroutine(result):
                        await result
                await asyncio.sleep(interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"[{self.consumer_id}] Price refresh error: {e}", exc_info=True)
                await asyncio.sleep(interval)

    def start(
        self,
        assets_provider: AssetsProvider,
        interval: float,
        on_update: UpdateCallback | None = None,
    ) -> None:
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self.run_periodic(assets_provider, interval, on_update))
        logger.info(f"[{self.consumer_id}] Price refresh task started ({interval:.0f}s interval)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info(f"[{self.consumer_id}] Price refresh task stopped")
