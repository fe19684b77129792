"""Pydantic schemas for the market data API responses."""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict


class PriceRecordResponse(BaseModel):
    """Response model for one price record."""

    model_config = ConfigDict(from_attributes=True)

    price: float
    observed_at: datetime
    change_24h: float
    change_7d: Optional[float] = None
    market_cap: float
    volume_24h: float
    source: str


class LatestPriceResponse(BaseModel):
    """Response model for the latest cached record."""

    record: Optional[PriceRecordResponse]
    is_stale: bool


class HistoryResponse(BaseModel):
    """Response model for the retained history."""

    records: list[PriceRecordResponse]
    count: int


class TimeSpanResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    earliest: datetime
    latest: datetime


class StatisticsResponse(BaseModel):
    """Response model for history statistics."""

    model_config = ConfigDict(from_attributes=True)

    data_points: int
    trend: Literal["up", "down", "neutral"]
    min: Optional[float] = None
    max: Optional[float] = None
    mean: Optional[float] = None
    current: Optional[float] = None
    volatility: Optional[float] = None
    time_span: Optional[TimeSpanResponse] = None


class ConversionResponse(BaseModel):
    """Response model for a currency conversion."""

    model_config = ConfigDict(from_attributes=True)

    amount: float
    converted_amount: float
    rate_used: float
    rate_timestamp: Optional[datetime]
    rate_source: str


class CacheStatusResponse(BaseModel):
    """Response model for cache freshness."""

    model_config = ConfigDict(from_attributes=True)

    is_cached: bool
    cache_age: float
    next_update: float


class SourcesResponse(BaseModel):
    """Response model for the registered sources, in priority order."""

    sources: list[str]
