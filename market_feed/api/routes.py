"""API routes for market data, conversions and engine metrics."""

from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Optional

from fastapi import APIRouter, Depends, Query

from market_feed.api.dependencies import get_market_data_service
from market_feed.api.error_handlers import create_refresh_timeout_error
from market_feed.models.market_data import ConversionResult
from market_feed.models.schemas import (
    CacheStatusResponse,
    ConversionResponse,
    HistoryResponse,
    LatestPriceResponse,
    PriceRecordResponse,
    SourcesResponse,
    StatisticsResponse,
)
from market_feed.services.market_data_service import MarketDataService

router = APIRouter()


def _conversion_response(amount: float, result: ConversionResult) -> ConversionResponse:
    return ConversionResponse(
        amount=amount,
        converted_amount=result.converted_amount,
        rate_used=result.rate_used,
        rate_timestamp=result.rate_timestamp,
        rate_source=result.rate_source,
    )


@router.get("/market-data/latest", response_model=LatestPriceResponse)
async def get_latest(service: MarketDataService = Depends(get_market_data_service)):
    """
    Get the latest cached price record.

    Returns:
        The record (null before the first refresh) and whether it is stale
    """
    record = service.latest()
    return LatestPriceResponse(
        record=PriceRecordResponse.model_validate(record) if record else None,
        is_stale=service.is_stale(),
    )


@router.get("/market-data/history", response_model=HistoryResponse)
async def get_history(
    limit: Optional[int] = Query(None, ge=1, description="Return only the most recent N records"),
    service: MarketDataService = Depends(get_market_data_service),
):
    """
    Get the retained price history, oldest first.

    Args:
        limit: Optional cap on the number of most recent records
        service: Market data engine

    Returns:
        Records and their count
    """
    history = service.history()
    if limit is not None:
        history = history[-limit:]
    return HistoryResponse(
        records=[PriceRecordResponse.model_validate(r) for r in history],
        count=len(history),
    )


@router.get("/market-data/statistics", response_model=StatisticsResponse)
async def get_statistics(service: MarketDataService = Depends(get_market_data_service)):
    """Descriptive statistics and trend over the retained history."""
    return StatisticsResponse.model_validate(service.statistics())


@router.get("/market-data/cache-status", response_model=CacheStatusResponse)
async def get_cache_status(service: MarketDataService = Depends(get_market_data_service)):
    """Freshness of the cache and seconds until the next periodic refresh."""
    return CacheStatusResponse.model_validate(service.cache_status())


@router.get("/market-data/convert/quote-to-base", response_model=ConversionResponse)
async def convert_quote_to_base(
    amount: float = Query(..., ge=0, description="Amount in the quote currency"),
    service: MarketDataService = Depends(get_market_data_service),
):
    """Convert a quote-currency amount into base asset units."""
    return _conversion_response(amount, service.convert_quote_to_base(amount))


@router.get("/market-data/convert/base-to-quote", response_model=ConversionResponse)
async def convert_base_to_quote(
    amount: float = Query(..., ge=0, description="Amount in base asset units"),
    service: MarketDataService = Depends(get_market_data_service),
):
    """Convert base asset units into the quote currency."""
    return _conversion_response(amount, service.convert_base_to_quote(amount))


@router.post("/market-data/refresh", response_model=PriceRecordResponse)
def refresh_market_data(
    force: bool = Query(False, description="Bypass the cache and any in-flight refresh"),
    source: Optional[str] = Query(None, description="Query only this source"),
    timeout: float = Query(30.0, gt=0, le=120, description="Seconds to wait for the refresh"),
    service: MarketDataService = Depends(get_market_data_service),
):
    """
    Trigger a refresh and wait for its result.

    Declared sync so the wait runs in the threadpool, not on the event loop.

    Args:
        force: Bypass the freshness check and single-flight sharing
        source: Optional source name to query exclusively (then the fallback)
        timeout: Seconds to wait before answering 504
        service: Market data engine

    Returns:
        The record produced by the pass
    """
    try:
        record = service.refresh(force=force, source_name=source, timeout=timeout)
    except FutureTimeoutError:
        raise create_refresh_timeout_error(timeout).to_http_exception()
    return PriceRecordResponse.model_validate(record)


@router.get("/market-data/sources", response_model=SourcesResponse)
async def get_sources(service: MarketDataService = Depends(get_market_data_service)):
    """Registered sources in priority order, fallback last."""
    return SourcesResponse(sources=[s.name for s in service.registry.ordered()])


@router.get("/metrics")
async def get_metrics(service: MarketDataService = Depends(get_market_data_service)):
    """Refresh and per-source metrics aggregated from the event store."""
    return service.metrics().to_dict()
