"""Error taxonomy for upstream market data access.

The client raises these; the fetcher turns them into retries, stale
results, or synthetic fallbacks. None of them is fatal to a consumer.
"""

from typing import Any


class MarketDataError(Exception):
    """Base class for upstream market data failures."""

    retryable = False

    def __init__(
        self,
        message: str,
        asset_id: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.asset_id = asset_id
        self.context = context or {}


class NetworkError(MarketDataError):
    """Timeout, connection failure, or server-side (5xx) error."""

    retryable = True


class RateLimited(MarketDataError):
    """HTTP 429 from the upstream."""

    retryable = True

    def __init__(self, message: str, retry_after: float | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class MalformedResponse(MarketDataError):
    """Response body could not be parsed into the expected shape."""

    retryable = True


class NotFound(MarketDataError):
    """Upstream does not know the requested id (HTTP 404)."""


class AnalysisCancelled(Exception):
    """Cooperative stop of an analysis run."""
