"""CoinGecko REST API client for prices, OHLC history, and market data."""

import logging
from typing import Any

import httpx

from entrywatch.errors import MalformedResponse, NetworkError, NotFound, RateLimited
from entrywatch_core.models import MarketData, PricePoint
from entrywatch_core.synthetic import estimate_volume

logger = logging.getLogger(__name__)

# Ticker aliases users commonly enter instead of CoinGecko ids
ID_ALIASES = {
    "btc": "bitcoin",
    "eth": "ethereum",
    "bnb": "binancecoin",
    "ada": "cardano",
    "sol": "solana",
    "avax": "avalanche-2",
    "link": "chainlink",
    "ltc": "litecoin",
    "arb": "arbitrum",
    "op": "optimism",
    "fet": "fetch-ai",
    "rndr": "render-token",
}


def normalize_asset_id(asset_id: str) -> str:
    """Map an id or common ticker alias to a CoinGecko id."""
    key = asset_id.strip().lower()
    return ID_ALIASES.get(key, key)


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


class CoinGeckoRestClient:
    """CoinGecko public API client.

    Raises the typed errors from entrywatch.errors; it does no retrying,
    rate limiting, or caching of its own.
    """

    BASE_URL = "https://api.coingecko.com/api/v3"

    def __init__(
        self,
        base_url: str = BASE_URL,
        api_key: str = "",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            headers = {"Accept": "application/json"}
            if self.api_key:
                headers["x-cg-demo-api-key"] = self.api_key
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        endpoint: str,
        params: dict[str, Any] | None = None,
        asset_id: str | None = None,
    ) -> Any:
        """Make a GET request and decode the JSON body."""
        client = await self._get_client()
        try:
            response = await client.get(endpoint, params=params)
        except httpx.TimeoutException as e:
            raise NetworkError(f"Timeout calling {endpoint}: {e}", asset_id=asset_id) from e
        except httpx.TransportError as e:
            raise NetworkError(f"Connection error calling {endpoint}: {e}", asset_id=asset_id) from e

        status = response.status_code
        if status == 429:
            raise RateLimited(
                f"Rate limited on {endpoint}",
                retry_after=_parse_retry_after(response.headers.get("Retry-After")),
                asset_id=asset_id,
            )
        if status == 404:
            raise NotFound(f"Unknown id for {endpoint}", asset_id=asset_id)
        if status >= 400:
            raise NetworkError(
                f"{endpoint} returned HTTP {status}",
                asset_id=asset_id,
                context={"status": status},
            )

        try:
            return response.json()
        except ValueError as e:
            raise MalformedResponse(f"Invalid JSON from {endpoint}", asset_id=asset_id) from e

    async def get_simple_prices(
        self,
        ids: list[str],
        vs_currency: str = "usd",
    ) -> dict[str, float]:
        """
        Fetch spot prices for several assets in one call.

        Args:
            ids: CoinGecko ids
            vs_currency: Target currency

        Returns:
            Dict of id -> price. Ids missing from the response are omitted.
        """
        if not ids:
            return {}

        params = {"ids": ",".join(ids), "vs_currencies": vs_currency}
        data = await self._request("/simple/price", params)
        if not isinstance(data, dict):
            raise MalformedResponse("/simple/price did not return an object")

        prices: dict[str, float] = {}
        for asset_id in ids:
            entry = data.get(asset_id)
            if not isinstance(entry, dict) or vs_currency not in entry:
                continue
            try:
                prices[asset_id] = float(entry[vs_currency])
            except (TypeError, ValueError):
                logger.debug(f"Skipping non-numeric price for {asset_id}: {entry!r}")
        return prices

    async def get_ohlc(
        self,
        asset_id: str,
        days: int = 30,
        vs_currency: str = "usd",
    ) -> list[PricePoint]:
        """
        Fetch OHLC bars for an asset.

        Rows are [ms_timestamp, open, high, low, close] with an optional
        sixth volume column. Missing volumes are estimated from price.

        Args:
            asset_id: CoinGecko id
            days: Lookback window in days
            vs_currency: Target currency

        Returns:
            Time-ordered list of PricePoint
        """
        params = {"vs_currency": vs_currency, "days": days}
        data = await self._request(f"/coins/{asset_id}/ohlc", params, asset_id=asset_id)
        if not isinstance(data, list):
            raise MalformedResponse("OHLC response is not an array", asset_id=asset_id)

        points = []
        for row in data:
            if not isinstance(row, (list, tuple)) or len(row) < 5:
                raise MalformedResponse(f"Bad OHLC row: {row!r}", asset_id=asset_id)
            try:
                ts, open_, high, low, close = (float(v) for v in row[:5])
                volume = float(row[5]) if len(row) > 5 and row[5] is not None else estimate_volume(close)
            except (TypeError, ValueError) as e:
                raise MalformedResponse(f"Non-numeric OHLC row: {row!r}", asset_id=asset_id) from e
            points.append(
                PricePoint(
                    timestamp=ts / 1000,
                    open=open_,
                    high=high,
                    low=low,
                    close=close,
                    volume=volume,
                )
            )

        points.sort(key=lambda p: p.timestamp)
        return points

    async def get_market_data(self, asset_id: str, vs_currency: str = "usd") -> MarketData:
        """Fetch market cap, volume and price changes for an asset."""
        params = {
            "localization": "false",
            "tickers": "false",
            "market_data": "true",
            "community_data": "false",
            "developer_data": "false",
        }
        data = await self._request(f"/coins/{asset_id}", params, asset_id=asset_id)
        market = data.get("market_data") if isinstance(data, dict) else None
        if not isinstance(market, dict):
            raise MalformedResponse("Response has no market_data", asset_id=asset_id)

        def currency_value(field: str) -> float | None:
            value = market.get(field)
            if isinstance(value, dict):
                value = value.get(vs_currency)
            return float(value) if isinstance(value, (int, float)) else None

        return MarketData(
            market_cap=currency_value("market_cap"),
            total_volume=currency_value("total_volume"),
            price_change_24h=currency_value("price_change_percentage_24h"),
            price_change_7d=currency_value("price_change_percentage_7d"),
        )
