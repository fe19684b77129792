"""Configuration management for the market feed."""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


@dataclass
class SourceConfig:
    """Per-upstream settings."""

    coingecko_rate_limit: int = 30  # requests per minute, free tier
    coinmarketcap_rate_limit: int = 333  # basic plan
    cryptocompare_rate_limit: int = 100  # free tier
    coinmarketcap_api_key: str | None = None


@dataclass
class MarketDataConfig:
    """Market data engine configuration."""

    asset_id: str = "internet-computer"  # CoinGecko id of the base asset
    asset_symbol: str = "ICP"
    quote_currency: str = "USD"
    refresh_interval: int = 120  # seconds between periodic refreshes
    cache_timeout: int = 120  # seconds a cached record stays fresh
    request_timeout: float = 10.0  # seconds per upstream request
    fallback_price: float = 10.0  # quote-currency price used when every source fails
    history_size: int = 100


@dataclass
class DatabaseConfig:
    """Database configuration."""

    database_url: str
    echo: bool = False


class Config:
    """Main application configuration."""

    def __init__(self):
        self.market = MarketDataConfig(
            asset_id=os.getenv("MARKET_ASSET_ID", "internet-computer"),
            asset_symbol=os.getenv("MARKET_ASSET_SYMBOL", "ICP"),
            quote_currency=os.getenv("MARKET_QUOTE_CURRENCY", "USD"),
            refresh_interval=int(os.getenv("REFRESH_INTERVAL", "120")),
            cache_timeout=int(os.getenv("CACHE_TIMEOUT", "120")),
            request_timeout=float(os.getenv("REQUEST_TIMEOUT", "10")),
            fallback_price=float(os.getenv("FALLBACK_PRICE", "10.0")),
            history_size=int(os.getenv("HISTORY_SIZE", "100")),
        )

        self.sources = SourceConfig(
            coingecko_rate_limit=int(os.getenv("COINGECKO_RATE_LIMIT", "30")),
            coinmarketcap_rate_limit=int(os.getenv("COINMARKETCAP_RATE_LIMIT", "333")),
            cryptocompare_rate_limit=int(os.getenv("CRYPTOCOMPARE_RATE_LIMIT", "100")),
            coinmarketcap_api_key=os.getenv("COINMARKETCAP_API_KEY"),
        )

        self.database = DatabaseConfig(
            database_url=os.getenv("DATABASE_URL", "sqlite:///./market_feed.db"),
            echo=os.getenv("DATABASE_ECHO", "false").lower() == "true",
        )

    def validate(self) -> bool:
        """
        Validate configuration.

        Returns:
            True if configuration is valid

        Raises:
            ValueError if configuration is invalid
        """
        market = self.market
        if not market.asset_id or not market.asset_symbol:
            raise ValueError("MARKET_ASSET_ID and MARKET_ASSET_SYMBOL are required")
        if not market.quote_currency:
            raise ValueError("MARKET_QUOTE_CURRENCY environment variable is required")
        if market.refresh_interval <= 0:
            raise ValueError(f"REFRESH_INTERVAL must be positive, got {market.refresh_interval}")
        if market.cache_timeout < 0:
            raise ValueError(f"CACHE_TIMEOUT must not be negative, got {market.cache_timeout}")
        if market.request_timeout <= 0:
            raise ValueError(f"REQUEST_TIMEOUT must be positive, got {market.request_timeout}")
        if market.fallback_price <= 0:
            raise ValueError(f"FALLBACK_PRICE must be positive, got {market.fallback_price}")
        if market.history_size <= 0:
            raise ValueError(f"HISTORY_SIZE must be positive, got {market.history_size}")

        for name, limit in [
            ("COINGECKO_RATE_LIMIT", self.sources.coingecko_rate_limit),
            ("COINMARKETCAP_RATE_LIMIT", self.sources.coinmarketcap_rate_limit),
            ("CRYPTOCOMPARE_RATE_LIMIT", self.sources.cryptocompare_rate_limit),
        ]:
            if limit <= 0:
                raise ValueError(f"{name} must be positive, got {limit}")

        return True


# Global config instance
config = Config()
