"""Tests for the market data fetcher: caching, coordination, retry, fallback."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from entrywatch.errors import AnalysisCancelled, MalformedResponse, NetworkError, NotFound, RateLimited
from entrywatch.services import MarketDataFetcher, RateCoordinator, anchor_to_price
from entrywatch.storage import CacheKind, ResponseCache
from entrywatch_core.models import MarketData, PricePoint

from conftest import SleepRecorder, make_history


def ohlc_points(closes: list[float]) -> list[PricePoint]:
    return list(make_history(closes).points)


@pytest.fixture
def client():
    client = MagicMock()
    client.get_ohlc = AsyncMock(return_value=ohlc_points([100.0 + i for i in range(30)]))
    client.get_simple_prices = AsyncMock(return_value={})
    client.get_market_data = AsyncMock(return_value=MarketData(price_change_7d=2.0))
    return client


@pytest.fixture
def cache(clock):
    return ResponseCache(price_ttl=60.0, ohlc_ttl=300.0, market_ttl=900.0, clock=clock)


@pytest.fixture
def coordinator(clock):
    return RateCoordinator(min_interval=1.0, clock=clock)


@pytest.fixture
def fetcher(client, cache, coordinator, sleep_recorder, clock):
    return MarketDataFetcher(
        client=client,
        cache=cache,
        coordinator=coordinator,
        sleep=sleep_recorder,
        clock=clock,
    )


class TestFetchPriceHistory:
    """Tests for OHLC fetching."""

    @pytest.mark.asyncio
    async def test_fetches_and_caches(self, fetcher, client, cache, clock):
        history = await fetcher.fetch_price_history("bitcoin", 129.0)

        assert len(history) == 30
        assert history.synthetic is False
        client.get_ohlc.assert_awaited_once_with("bitcoin", 30, "usd")
        assert cache.get(CacheKind.OHLC, "bitcoin") == (history, True)

        clock.advance(10.0)
        again = await fetcher.fetch_price_history("bitcoin", 129.0)
        assert again is history
        assert client.get_ohlc.await_count == 1

    @pytest.mark.asyncio
    async def test_alias_normalized(self, fetcher, client):
        await fetcher.fetch_price_history("BTC", 129.0)
        client.get_ohlc.assert_awaited_once_with("bitcoin", 30, "usd")

    @pytest.mark.asyncio
    async def test_backoff_then_fallback_on_429(self, fetcher, client, sleep_recorder):
        """Three backoffs of 5s, 10s, 20s, then a synthetic history."""
        client.get_ohlc.side_effect = RateLimited("429")

        history = await fetcher.fetch_price_history("bitcoin", 50000.0)

        assert sleep_recorder.delays == [5.0, 10.0, 20.0]
        assert client.get_ohlc.await_count == 4
        assert history.synthetic is True
        assert len(history) == 30
        assert history.last.close == 50000.0

    @pytest.mark.asyncio
    async def test_retry_after_lengthens_backoff(self, fetcher, client, sleep_recorder):
        client.get_ohlc.side_effect = [
            RateLimited("429", retry_after=30.0),
            ohlc_points([100.0, 101.0, 102.0]),
        ]

        history = await fetcher.fetch_price_history("bitcoin", 102.0)

        assert sleep_recorder.delays == [30.0]
        assert history.synthetic is False

    @pytest.mark.asyncio
    async def test_recovers_after_network_error(self, fetcher, client, sleep_recorder):
        client.get_ohlc.side_effect = [
            NetworkError("timeout"),
            MalformedResponse("bad json"),
            ohlc_points([100.0, 101.0]),
        ]

        history = await fetcher.fetch_price_history("bitcoin", 101.0)

        assert sleep_recorder.delays == [5.0, 10.0]
        assert len(history) == 2

    @pytest.mark.asyncio
    async def test_not_found_falls_back_immediately(self, fetcher, client, sleep_recorder):
        client.get_ohlc.side_effect = NotFound("unknown id")

        history = await fetcher.fetch_price_history("nope", 2.5)

        assert sleep_recorder.delays == []
        assert client.get_ohlc.await_count == 1
        assert history.synthetic is True
        assert history.last.close == 2.5

    @pytest.mark.asyncio
    async def test_empty_response_falls_back(self, fetcher, client):
        client.get_ohlc.return_value = []
        history = await fetcher.fetch_price_history("bitcoin", 50000.0)
        assert history.synthetic is True

    @pytest.mark.asyncio
    async def test_synthetic_not_cached(self, fetcher, client, cache):
        client.get_ohlc.side_effect = NotFound("unknown id")
        await fetcher.fetch_price_history("nope", 2.5)
        assert cache.get_stale(CacheKind.OHLC, "nope") == (None, False)

    @pytest.mark.asyncio
    async def test_denied_serves_stale_cache(self, fetcher, client, cache, coordinator, clock):
        cached = make_history([1.0, 2.0, 3.0])
        cache.put(CacheKind.OHLC, "bitcoin", cached)
        clock.advance(3600.0)
        coordinator.notify_intensive_operation_start("watchlist")

        history = await fetcher.fetch_price_history("bitcoin", 3.0, consumer_id="portfolio")

        assert history is cached
        client.get_ohlc.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_denied_without_cache_uses_fallback(self, fetcher, client, coordinator):
        coordinator.notify_intensive_operation_start("watchlist")

        history = await fetcher.fetch_price_history("bitcoin", 50000.0, consumer_id="portfolio")

        assert history.synthetic is True
        assert history.last.close == 50000.0
        client.get_ohlc.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_lock_owner_not_denied(self, fetcher, client, coordinator):
        coordinator.notify_intensive_operation_start("watchlist")
        history = await fetcher.fetch_price_history("bitcoin", 129.0, consumer_id="watchlist")
        assert history.synthetic is False

    @pytest.mark.asyncio
    async def test_cancel_during_backoff(self, fetcher, client):
        client.get_ohlc.side_effect = RateLimited("429")
        cancel = asyncio.Event()
        cancel.set()

        with pytest.raises(AnalysisCancelled):
            await fetcher.fetch_price_history("bitcoin", 50000.0, cancel_event=cancel)
        assert client.get_ohlc.await_count == 1

    @pytest.mark.asyncio
    async def test_last_bar_reanchored(self, fetcher, client):
        client.get_ohlc.return_value = ohlc_points([100.0, 101.0, 100.0])

        history = await fetcher.fetch_price_history("bitcoin", 150.0)

        assert history.last.close == 150.0
        assert history.last.high >= 150.0
        assert history[0].close == 100.0


class TestBackoffSchedule:
    """Wait sequence of the OHLC retry loop."""

    @pytest.mark.asyncio
    async def test_exponential_and_capped(self, client, cache, coordinator, sleep_recorder, clock):
        client.get_ohlc.side_effect = NetworkError("down")
        fetcher = MarketDataFetcher(
            client=client, cache=cache, coordinator=coordinator,
            max_retries=6, sleep=sleep_recorder, clock=clock,
        )

        history = await fetcher.fetch_price_history("bitcoin", 50000.0)

        assert sleep_recorder.delays == [5.0, 10.0, 20.0, 40.0, 60.0, 60.0]
        assert client.get_ohlc.await_count == 7
        assert history.synthetic is True

    @pytest.mark.asyncio
    async def test_retry_after_never_shortens_and_is_capped(self, fetcher, client, sleep_recorder):
        client.get_ohlc.side_effect = [
            RateLimited("429", retry_after=2.0),
            RateLimited("429", retry_after=600.0),
            RateLimited("429", retry_after=45.0),
            ohlc_points([100.0, 101.0]),
        ]

        await fetcher.fetch_price_history("bitcoin", 101.0)

        assert sleep_recorder.delays == [5.0, 60.0, 45.0]

    @pytest.mark.asyncio
    async def test_starting_attempt_offsets_schedule(self, fetcher, client, sleep_recorder):
        client.get_ohlc.side_effect = RateLimited("429")

        history = await fetcher.fetch_price_history("bitcoin", 50000.0, attempt=2)

        assert sleep_recorder.delays == [20.0]
        assert client.get_ohlc.await_count == 2
        assert history.synthetic is True

    @pytest.mark.asyncio
    async def test_cache_filled_during_backoff_is_used(self, fetcher, client, cache, sleep_recorder):
        async def fill_then_sleep(delay):
            cache.put(CacheKind.OHLC, "bitcoin", make_history([1.0, 2.0]))
            await sleep_recorder(delay)

        fetcher._sleep = fill_then_sleep
        client.get_ohlc.side_effect = NetworkError("down")

        history = await fetcher.fetch_price_history("bitcoin", 2.0)

        assert client.get_ohlc.await_count == 1
        assert len(history) == 2


class TestAnchorToPrice:
    def test_within_tolerance_untouched(self):
        points = ohlc_points([100.0, 105.0])
        assert anchor_to_price(points, 110.0) is points

    def test_far_off_reanchored(self):
        points = ohlc_points([100.0, 105.0])
        anchored = anchor_to_price(points, 80.0)
        assert anchored[-1].close == 80.0
        assert anchored[-1].low == 80.0
        assert anchored[0] == points[0]

    def test_unknown_price(self):
        points = ohlc_points([100.0, 105.0])
        assert anchor_to_price(points, 0.0) is points


class TestFetchBulkPrices:
    """Tests for bulk spot prices."""

    @pytest.mark.asyncio
    async def test_fetches_missing_only(self, fetcher, client, cache):
        cache.put(CacheKind.PRICE, "bitcoin", 50000.0)
        client.get_simple_prices.return_value = {"ethereum": 3000.0}

        prices = await fetcher.fetch_bulk_prices(["bitcoin", "ethereum", "unknown"])

        assert prices == {"bitcoin": 50000.0, "ethereum": 3000.0}
        client.get_simple_prices.assert_awaited_once_with(["ethereum", "unknown"], "usd")
        assert cache.get(CacheKind.PRICE, "ethereum") == (3000.0, True)

    @pytest.mark.asyncio
    async def test_all_cached_no_call(self, fetcher, client, cache):
        cache.put(CacheKind.PRICE, "bitcoin", 50000.0)
        assert await fetcher.fetch_bulk_prices(["bitcoin"]) == {"bitcoin": 50000.0}
        client.get_simple_prices.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_keys_as_given(self, fetcher, client):
        client.get_simple_prices.return_value = {"bitcoin": 50000.0}
        prices = await fetcher.fetch_bulk_prices(["BTC"])
        assert prices == {"BTC": 50000.0}
        client.get_simple_prices.assert_awaited_once_with(["bitcoin"], "usd")

    @pytest.mark.asyncio
    async def test_aliases_of_one_id_all_priced(self, fetcher, client):
        client.get_simple_prices.return_value = {"bitcoin": 50000.0}

        prices = await fetcher.fetch_bulk_prices(["btc", "bitcoin", "BTC"])

        assert prices == {"btc": 50000.0, "bitcoin": 50000.0, "BTC": 50000.0}
        client.get_simple_prices.assert_awaited_once_with(["bitcoin"], "usd")

    @pytest.mark.asyncio
    async def test_rate_limited_returns_cached_subset(self, fetcher, client, cache):
        cache.put(CacheKind.PRICE, "bitcoin", 50000.0)
        client.get_simple_prices.side_effect = RateLimited("429")

        prices = await fetcher.fetch_bulk_prices(["bitcoin", "ethereum"])

        assert prices == {"bitcoin": 50000.0}

    @pytest.mark.asyncio
    async def test_denied_returns_cached_subset(self, fetcher, client, cache, coordinator):
        cache.put(CacheKind.PRICE, "bitcoin", 50000.0)
        coordinator.notify_intensive_operation_start("watchlist")

        prices = await fetcher.fetch_bulk_prices(["bitcoin", "ethereum"], consumer_id="portfolio")

        assert prices == {"bitcoin": 50000.0}
        client.get_simple_prices.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_network_error_returns_cached_subset(self, fetcher, client):
        client.get_simple_prices.side_effect = NetworkError("down")
        assert await fetcher.fetch_bulk_prices(["ethereum"]) == {}

    def test_get_cached_prices(self, fetcher, cache, clock):
        cache.put(CacheKind.PRICE, "bitcoin", 50000.0)
        cache.put(CacheKind.PRICE, "ethereum", 3000.0, ttl=1.0)
        clock.advance(5.0)

        assert fetcher.get_cached_prices(["btc", "ethereum", "solana"]) == {"btc": 50000.0}


class TestFetchMarketData:
    """Tests for market metadata."""

    @pytest.mark.asyncio
    async def test_fetches_and_caches(self, fetcher, client, cache):
        market = await fetcher.fetch_market_data("bitcoin")

        assert market.price_change_7d == 2.0
        assert cache.get(CacheKind.MARKET, "bitcoin") == (market, True)
        assert await fetcher.fetch_market_data("bitcoin") is market
        assert client.get_market_data.await_count == 1

    @pytest.mark.asyncio
    async def test_failure_returns_none(self, fetcher, client):
        client.get_market_data.side_effect = RateLimited("429")
        assert await fetcher.fetch_market_data("bitcoin") is None

    @pytest.mark.asyncio
    async def test_denied_returns_stale(self, fetcher, client, cache, coordinator, clock):
        stale = MarketData(price_change_7d=-9.0)
        cache.put(CacheKind.MARKET, "bitcoin", stale)
        clock.advance(5000.0)
        coordinator.notify_intensive_operation_start("watchlist")

        assert await fetcher.fetch_market_data("bitcoin", consumer_id="portfolio") is stale
        client.get_market_data.assert_not_awaited()
