"""Upstream market data clients."""

from entrywatch.clients.coingecko_rest import (
    CoinGeckoRestClient,
    ID_ALIASES,
    normalize_asset_id,
)

__all__ = [
    "CoinGeckoRestClient",
    "ID_ALIASES",
    "normalize_asset_id",
]
