"""Main application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from market_feed.api.error_handlers import register_error_handlers
from market_feed.api.routes import router
from market_feed.database.db import build_engine, build_session_factory, init_db
from market_feed.database.key_value_store import PriceRecordStore, SqlKeyValueStore
from market_feed.services.market_data_service import MarketDataService
from market_feed.utils.config import Config, config


def build_service(app_config: Config) -> MarketDataService:
    """Build the engine with SQL-backed warm-start storage."""
    engine = build_engine(app_config.database)
    init_db(engine)
    record_store = PriceRecordStore(SqlKeyValueStore(build_session_factory(engine)))
    return MarketDataService.from_config(app_config.market, app_config.sources, record_store=record_store)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build and start the engine on startup, stop it on shutdown."""
    try:
        config.validate()
    except ValueError as e:
        print(f"Configuration error: {e}")
        raise

    service = build_service(config)
    service.start()
    app.state.market_data_service = service
    yield
    service.stop(timeout=5)
    app.state.market_data_service = None


# Create FastAPI app
app = FastAPI(
    title="Market Feed",
    description="Aggregated market price, conversions and statistics for one trading pair",
    version="1.0.0",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

# Include API routes
app.include_router(router, prefix="/api", tags=["market-data"])


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
