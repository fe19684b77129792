"""Market data models for the configured trading pair."""

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal, Optional

FALLBACK_SOURCE_NAME = "Fallback"

Trend = Literal["up", "down", "neutral"]


@dataclass(frozen=True)
class PriceRecord:
    """One observation of the base asset's price in the quote currency."""

    price: float
    observed_at: datetime
    change_24h: float
    market_cap: float
    volume_24h: float
    source: str
    change_7d: Optional[float] = None

    def __post_init__(self):
        if not self.source:
            raise ValueError("PriceRecord.source must not be empty")
        if self.observed_at is None:
            raise ValueError("PriceRecord.observed_at is required")
        if not isinstance(self.price, (int, float)) or isinstance(self.price, bool):
            raise ValueError(f"PriceRecord.price must be a number, got {self.price!r}")
        if not math.isfinite(self.price) or self.price < 0:
            raise ValueError(f"PriceRecord.price must be finite and non-negative, got {self.price}")
        if self.observed_at.tzinfo is None:
            # Naive timestamps are taken to be UTC
            object.__setattr__(self, "observed_at", self.observed_at.replace(tzinfo=timezone.utc))

    @property
    def is_fallback(self) -> bool:
        return self.source == FALLBACK_SOURCE_NAME

    def to_dict(self) -> dict[str, Any]:
        """Serialize with ``observed_at`` as an ISO-8601 string."""
        return {
            "price": self.price,
            "observed_at": self.observed_at.isoformat(),
            "change_24h": self.change_24h,
            "change_7d": self.change_7d,
            "market_cap": self.market_cap,
            "volume_24h": self.volume_24h,
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PriceRecord":
        """Inverse of ``to_dict``; raises KeyError/ValueError/TypeError on bad input."""
        change_7d = data.get("change_7d")
        return cls(
            price=float(data["price"]),
            observed_at=datetime.fromisoformat(data["observed_at"]),
            change_24h=float(data.get("change_24h") or 0.0),
            change_7d=float(change_7d) if change_7d is not None else None,
            market_cap=float(data.get("market_cap") or 0.0),
            volume_24h=float(data.get("volume_24h") or 0.0),
            source=data["source"],
        )


@dataclass(frozen=True)
class CacheEntry:
    """The single cached record and the monotonic-clock time it was stored."""

    record: PriceRecord
    cached_at: float


@dataclass(frozen=True)
class ConversionResult:
    """Outcome of converting an amount at the current rate."""

    converted_amount: float
    rate_used: float
    rate_timestamp: Optional[datetime]
    rate_source: str


@dataclass(frozen=True)
class TimeSpan:
    """Observation times of the oldest and newest retained records."""

    earliest: datetime
    latest: datetime


@dataclass(frozen=True)
class PriceStatistics:
    """Descriptive statistics over the retained price history."""

    data_points: int
    trend: Trend
    min: Optional[float] = None
    max: Optional[float] = None
    mean: Optional[float] = None
    current: Optional[float] = None
    volatility: Optional[float] = None
    time_span: Optional[TimeSpan] = None


@dataclass(frozen=True)
class CacheStatus:
    """Freshness summary of the cache for display collaborators."""

    is_cached: bool
    cache_age: float
    next_update: float
