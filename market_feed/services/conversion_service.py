"""Currency conversion and price statistics over the cached data."""

import math
from typing import Optional

from market_feed.models.market_data import (
    FALLBACK_SOURCE_NAME,
    ConversionResult,
    PriceRecord,
    PriceStatistics,
    TimeSpan,
    Trend,
)
from market_feed.services.price_cache import PriceCache

TREND_WINDOW = 5


class ConversionService:
    """Read-only views over a PriceCache. Nothing here mutates the cache."""

    def __init__(self, cache: PriceCache, fallback_rate: float):
        """
        Initialize the service.

        Args:
            cache: Cache to read the current rate and history from
            fallback_rate: Quote-currency price of one base unit used when no
                usable cached rate exists
        """
        if fallback_rate <= 0:
            raise ValueError(f"fallback_rate must be positive, got {fallback_rate}")
        self.cache = cache
        self.fallback_rate = fallback_rate

    def _current_rate(self) -> tuple[float, Optional[PriceRecord]]:
        record = self.cache.latest()
        if record is None or record.price <= 0:
            return self.fallback_rate, None
        return record.price, record

    def _result(self, amount: float, rate: float, record: Optional[PriceRecord]) -> ConversionResult:
        return ConversionResult(
            converted_amount=amount,
            rate_used=rate,
            rate_timestamp=record.observed_at if record else None,
            rate_source=record.source if record else FALLBACK_SOURCE_NAME,
        )

    def convert_quote_to_base(self, amount: float) -> ConversionResult:
        """Convert a quote-currency amount (e.g. USD) into base units (e.g. ICP)."""
        rate, record = self._current_rate()
        return self._result(amount / rate, rate, record)

    def convert_base_to_quote(self, amount: float) -> ConversionResult:
        """Convert base units (e.g. ICP) into the quote currency (e.g. USD)."""
        rate, record = self._current_rate()
        return self._result(amount * rate, rate, record)

    def statistics(self) -> PriceStatistics:
        """
        Describe the retained history.

        Volatility is the population standard deviation. The trend compares
        the mean of the last five prices with the mean of the five before
        them and is "neutral" with fewer than ten points.
        """
        history = self.cache.history()
        if not history:
            return PriceStatistics(data_points=0, trend="neutral")

        prices = [record.price for record in history]
        mean = sum(prices) / len(prices)
        variance = sum((price - mean) ** 2 for price in prices) / len(prices)

        return PriceStatistics(
            data_points=len(prices),
            trend=_trend(prices),
            min=min(prices),
            max=max(prices),
            mean=mean,
            current=prices[-1],
            volatility=math.sqrt(variance),
            time_span=TimeSpan(earliest=history[0].observed_at, latest=history[-1].observed_at),
        )


def _trend(prices: list[float]) -> Trend:
    if len(prices) < 2 * TREND_WINDOW:
        return "neutral"
    recent = prices[-TREND_WINDOW:]
    previous = prices[-2 * TREND_WINDOW:-TREND_WINDOW]
    return "up" if sum(recent) / TREND_WINDOW > sum(previous) / TREND_WINDOW else "down"
