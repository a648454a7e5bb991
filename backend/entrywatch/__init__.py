"""Entry-quality tracking service: market data, caching, and analysis runs."""
