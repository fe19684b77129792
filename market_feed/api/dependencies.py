"""FastAPI dependencies for reaching the market data engine."""

from fastapi import HTTPException, Request, status

from market_feed.services.market_data_service import MarketDataService


def get_market_data_service(request: Request) -> MarketDataService:
    """
    FastAPI dependency returning the engine attached to the application.

    The engine is built and started by the application lifespan and stored
    on ``app.state``; there is no module-level instance.

    Raises:
        HTTPException: 503 if no engine is attached
    """
    service = getattr(request.app.state, "market_data_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error": "SERVICE_UNAVAILABLE", "message": "Market data service is not available"},
        )
    return service
