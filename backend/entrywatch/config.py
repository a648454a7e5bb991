"""Application configuration."""

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # CoinGecko API
    coingecko_base_url: str = "https://api.coingecko.com/api/v3"
    coingecko_api_key: str = ""
    vs_currency: str = "usd"
    http_timeout: float = 10.0

    # Global API coordination
    min_api_interval: float = 1.0

    # Response cache TTLs (seconds)
    price_cache_ttl: float = 60.0
    ohlc_cache_ttl: float = 300.0
    market_cache_ttl: float = 900.0

    # Retry / backoff
    retry_base_delay: float = 5.0
    retry_max_delay: float = 60.0
    max_retries: int = 3

    # Price history
    ohlc_days: int = 30
    fallback_days: int = 30

    # Sequential analysis runs
    analysis_item_delay: float = 12.0
    analysis_cooldown: float = 15.0

    # Cache snapshot flush (empty path disables it)
    cache_snapshot_path: str = ""
    cache_flush_interval: float = 300.0

    # Price-only refresh loop
    price_refresh_interval: float = 60.0

    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
