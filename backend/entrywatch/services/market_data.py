"""Market data fetcher: read-through cache, coordination, retry, fallback.

Every network-bound call goes through the same steps:
1. Serve a fresh cache entry if there is one
2. Ask the RateCoordinator for permission; on denial serve the last
   (possibly expired) cached value, or degrade without networking
3. Call the upstream and cache the result
4. On 429 / network / parse failures retry with exponential backoff
   (5s, 10s, 20s ... capped at 60s, driven by tenacity), then degrade

Price histories degrade to a synthetic series anchored at the current
price; bulk prices degrade to the cached subset. Nothing here raises
upstream errors to the caller.
"""

import asyncio
import logging
import time
from typing import Callable

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from entrywatch.clients import CoinGeckoRestClient, normalize_asset_id
from entrywatch.errors import (
    AnalysisCancelled,
    MalformedResponse,
    MarketDataError,
    NetworkError,
    NotFound,
    RateLimited,
)
from entrywatch.services.rate_coordinator import RateCoordinator
from entrywatch.services.timing import SleepFunc, cancellable_sleep
from entrywatch.storage import CacheKind, ResponseCache
from entrywatch_core.models import MarketData, PriceHistory, PricePoint
from entrywatch_core.synthetic import synthesize_history

logger = logging.getLogger(__name__)

DEFAULT_CONSUMER = "market-data"

# Real OHLC whose last close is further than this from the known
# current price gets its last bar re-anchored
MAX_LAST_CLOSE_DEVIATION = 0.10

RETRYABLE_ERRORS = (NetworkError, RateLimited, MalformedResponse)


class RetryAfterWait(wait_base):
    """Wraps a wait strategy; a Retry-After hint can lengthen the wait, never shorten it."""

    def __init__(self, base: wait_base, cap: float):
        self.base = base
        self.cap = cap

    def __call__(self, retry_state: RetryCallState) -> float:
        delay = self.base(retry_state)
        error = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(error, RateLimited) and error.retry_after is not None:
            delay = max(delay, error.retry_after)
        return min(delay, self.cap)


def anchor_to_price(points: list[PricePoint], current_price: float) -> list[PricePoint]:
    """Re-anchor the last bar to the current price when they disagree by >10%."""
    if not points or current_price <= 0:
        return points

    last = points[-1]
    if abs(last.close - current_price) / current_price <= MAX_LAST_CLOSE_DEVIATION:
        return points

    logger.warning(
        f"Last OHLC close {last.close} differs from current price {current_price} by >10%, re-anchoring"
    )
    anchored = PricePoint(
        timestamp=last.timestamp,
        open=last.open,
        high=max(last.high, current_price),
        low=min(last.low, current_price),
        close=current_price,
        volume=last.volume,
    )
    return points[:-1] + [anchored]


class MarketDataFetcher:
    """Fetches price histories, bulk prices and market metadata."""

    def __init__(
        self,
        client: CoinGeckoRestClient,
        cache: ResponseCache,
        coordinator: RateCoordinator,
        vs_currency: str = "usd",
        ohlc_days: int = 30,
        fallback_days: int = 30,
        max_retries: int = 3,
        retry_base_delay: float = 5.0,
        retry_max_delay: float = 60.0,
        sleep: SleepFunc = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self.cache = cache
        self.coordinator = coordinator
        self.vs_currency = vs_currency
        self.ohlc_days = ohlc_days
        self.fallback_days = fallback_days
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay
        self._sleep = sleep
        self._clock = clock

    def _fallback(self, asset_id: str, current_price: float, reason: str) -> PriceHistory:
        logger.warning(f"Using synthetic price history for {asset_id}: {reason}")
        return synthesize_history(asset_id, current_price, self.fallback_days, now=self._clock())

    async def fetch_price_history(
        self,
        asset_id: str,
        current_price: float,
        attempt: int = 0,
        *,
        consumer_id: str = DEFAULT_CONSUMER,
        cancel_event: asyncio.Event | None = None,
    ) -> PriceHistory:
        """
        Get an OHLC history for an asset, degrading to synthetic data.

        Args:
            asset_id: Asset id or ticker alias
            current_price: Latest known price (anchors fallback data)
            attempt: Starting retry attempt
            consumer_id: Identity passed to the RateCoordinator
            cancel_event: Set to abort a backoff wait

        Returns:
            PriceHistory (synthetic=True when generated locally)

        Raises:
            AnalysisCancelled: If cancel_event is set during a backoff wait
        """
        key = normalize_asset_id(asset_id)

        async def backoff_sleep(delay: float) -> None:
            if await cancellable_sleep(delay, cancel_event, self._sleep):
                raise AnalysisCancelled(f"Cancelled while backing off for {key}")

        def before_sleep(state: RetryCallState) -> None:
            error = state.outcome.exception()
            logger.warning(
                f"OHLC fetch for {key} failed ({type(error).__name__}: {error}), "
                f"attempt {state.attempt_number}, retrying in {state.next_action.sleep:.0f}s"
            )

        def exhausted(state: RetryCallState) -> PriceHistory:
            return self._fallback(key, current_price, f"retries exhausted ({state.outcome.exception()})")

        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(1, self.max_retries + 1 - attempt)),
            wait=RetryAfterWait(
                wait_exponential(multiplier=self.retry_base_delay * 2 ** attempt, max=self.retry_max_delay),
                cap=self.retry_max_delay,
            ),
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            sleep=backoff_sleep,
            before_sleep=before_sleep,
            retry_error_callback=exhausted,
        )
        return await retrying(self._fetch_history_once, key, current_price, consumer_id)

    async def _fetch_history_once(self, key: str, current_price: float, consumer_id: str) -> PriceHistory:
        """One attempt: cache, permission, upstream call. Retryable errors propagate."""
        cached, found = self.cache.get(CacheKind.OHLC, key)
        if found:
            logger.debug(f"OHLC cache hit for {key} ({len(cached)} points)")
            return cached

        if not self.coordinator.request_api_call(consumer_id, f"OHLC {key}"):
            stale, found = self.cache.get_stale(CacheKind.OHLC, key)
            if found:
                logger.info(f"API call denied, serving last cached OHLC for {key}")
                return stale
            return self._fallback(key, current_price, "API call denied and nothing cached")

        try:
            points = await self.client.get_ohlc(key, self.ohlc_days, self.vs_currency)
        except NotFound:
            return self._fallback(key, current_price, "unknown id upstream")

        if not points:
            return self._fallback(key, current_price, "empty OHLC response")

        history = PriceHistory(points=tuple(anchor_to_price(points, current_price)))
        self.cache.put(CacheKind.OHLC, key, history)
        logger.info(f"Fetched {len(history)} OHLC points for {key}")
        return history

    def get_cached_prices(self, ids: list[str]) -> dict[str, float]:
        """Fresh cached prices only; never touches the network."""
        result = {}
        for asset_id in ids:
            price, found = self.cache.get(CacheKind.PRICE, normalize_asset_id(asset_id))
            if found:
                result[asset_id] = price
        return result

    async def fetch_bulk_prices(
        self,
        ids: list[str],
        *,
        consumer_id: str = DEFAULT_CONSUMER,
    ) -> dict[str, float]:
        """
        Get spot prices for several assets with at most one upstream call.

        Fresh cached prices are used as-is; only the rest are requested.
        On denial, 429 or any upstream failure the cached subset is
        returned and the other ids are left out.

        Args:
            ids: Asset ids (result keys use the ids as given)
            consumer_id: Identity passed to the RateCoordinator

        Returns:
            Dict of id -> price for every id with a known price
        """
        result: dict[str, float] = {}
        missing: dict[str, list[str]] = {}  # normalized id -> ids as given
        for asset_id in ids:
            key = normalize_asset_id(asset_id)
            price, found = self.cache.get(CacheKind.PRICE, key)
            if found:
                result[asset_id] = price
            else:
                missing.setdefault(key, []).append(asset_id)

        if not missing:
            logger.debug(f"All {len(result)} prices served from cache")
            return result

        if not self.coordinator.request_api_call(consumer_id, f"bulk prices ({len(missing)} ids)"):
            return result

        try:
            prices = await self.client.get_simple_prices(list(missing), self.vs_currency)
        except RateLimited:
            logger.warning(f"Rate limited during bulk price fetch, keeping {len(result)} cached prices")
            return result
        except MarketDataError as e:
            logger.warning(f"Bulk price fetch failed ({type(e).__name__}: {e})")
            return result

        from_cache = len(result)
        for key, given_ids in missing.items():
            if key in prices:
                self.cache.put(CacheKind.PRICE, key, prices[key])
                for asset_id in given_ids:
                    result[asset_id] = prices[key]

        logger.info(f"Bulk prices: {len(prices)} from API, {from_cache} from cache")
        return result

    async def fetch_market_data(
        self,
        asset_id: str,
        *,
        consumer_id: str = DEFAULT_CONSUMER,
    ) -> MarketData | None:
        """Get market metadata, or None when it cannot be obtained right now."""
        key = normalize_asset_id(asset_id)

        cached, found = self.cache.get(CacheKind.MARKET, key)
        if found:
            return cached

        if not self.coordinator.request_api_call(consumer_id, f"market data {key}"):
            stale, found = self.cache.get_stale(CacheKind.MARKET, key)
            return stale if found else None

        try:
            market = await self.client.get_market_data(key, self.vs_currency)
        except MarketDataError as e:
            logger.warning(f"Market data for {key} unavailable ({type(e).__name__}: {e})")
            stale, found = self.cache.get_stale(CacheKind.MARKET, key)
            return stale if found else None

        self.cache.put(CacheKind.MARKET, key, market)
        return market
