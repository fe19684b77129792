"""Pytest configuration and fixtures."""

import os
import tempfile
from datetime import UTC, datetime

import pytest
from sqlalchemy import create_engine

from market_feed.database.db import build_session_factory, init_db
from market_feed.database.key_value_store import InMemoryKeyValueStore, PriceRecordStore
from market_feed.models.market_data import PriceRecord
from market_feed.services.errors import SourceUnreachable
from market_feed.services.market_data_service import MarketDataService
from market_feed.services.source_registry import (
    CoinGeckoParser,
    CoinMarketCapParser,
    CryptoCompareParser,
    FallbackParser,
    SourceDescriptor,
    SourceRegistry,
)
from market_feed.utils.config import MarketDataConfig
from market_feed.utils.event_store import EventStore

FALLBACK_PRICE = 10.0


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StubPipeline:
    """
    Fetch pipeline double.

    ``outcomes`` maps a source name to a PriceRecord, an exception to raise,
    or a zero-argument callable producing either.
    """

    def __init__(self, outcomes=None):
        self.outcomes = dict(outcomes or {})
        self.calls: list[str] = []

    def fetch(self, source, timeout=None):
        self.calls.append(source.name)
        outcome = self.outcomes.get(source.name)
        if callable(outcome) and not isinstance(outcome, PriceRecord):
            outcome = outcome()
        if outcome is None:
            raise SourceUnreachable(source.name, "no stub configured")
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def make_record(price: float = 12.5, source: str = "CoinGecko", observed_at=None, **fields) -> PriceRecord:
    """Build a PriceRecord with sensible defaults."""
    return PriceRecord(
        price=price,
        observed_at=observed_at or datetime.now(UTC),
        change_24h=fields.pop("change_24h", 1.5),
        change_7d=fields.pop("change_7d", None),
        market_cap=fields.pop("market_cap", 5_000_000_000.0),
        volume_24h=fields.pop("volume_24h", 80_000_000.0),
        source=source,
    )


def make_registry(fallback_price: float = FALLBACK_PRICE, budgets=None) -> SourceRegistry:
    """CoinGecko:1, CoinMarketCap:2, CryptoCompare:3, Fallback:999."""
    budgets = budgets or {}
    registry = SourceRegistry(
        fallback=SourceDescriptor(
            name="Fallback",
            locator="",
            parser=FallbackParser(fallback_price),
            requests_per_minute=None,
            priority=999,
        )
    )
    registry.register(
        SourceDescriptor(
            name="CoinGecko",
            locator="https://coingecko.test/simple/price",
            parser=CoinGeckoParser("internet-computer", "USD"),
            requests_per_minute=budgets.get("CoinGecko", 30),
            priority=1,
        )
    )
    registry.register(
        SourceDescriptor(
            name="CoinMarketCap",
            locator="https://coinmarketcap.test/quotes/latest",
            parser=CoinMarketCapParser("ICP", "USD"),
            requests_per_minute=budgets.get("CoinMarketCap", 333),
            priority=2,
        )
    )
    registry.register(
        SourceDescriptor(
            name="CryptoCompare",
            locator="https://cryptocompare.test/pricemultifull",
            parser=CryptoCompareParser("ICP", "USD"),
            requests_per_minute=budgets.get("CryptoCompare", 100),
            priority=3,
        )
    )
    return registry


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def pipeline():
    return StubPipeline()


@pytest.fixture
def registry():
    return make_registry()


@pytest.fixture
def kv_store():
    return InMemoryKeyValueStore()


@pytest.fixture
def record_store(kv_store):
    return PriceRecordStore(kv_store)


@pytest.fixture
def event_store():
    return EventStore()


@pytest.fixture
def service(registry, pipeline, record_store, event_store, clock):
    """A started engine with stubbed upstreams and no initial refresh."""
    market = MarketDataConfig(cache_timeout=120, refresh_interval=120, fallback_price=FALLBACK_PRICE)
    engine = MarketDataService(
        registry=registry,
        market=market,
        fetch_pipeline=pipeline,
        record_store=record_store,
        event_store=event_store,
        clock=clock,
    )
    engine.start(initial_refresh=False)
    yield engine
    engine.stop(timeout=5)


@pytest.fixture
def test_db():
    """Create a file-based test database."""
    fd, db_path = tempfile.mkstemp(suffix=".db")
    os.close(fd)

    engine = create_engine(f"sqlite:///{db_path}", connect_args={"check_same_thread": False})
    init_db(engine)

    yield engine

    engine.dispose()
    os.unlink(db_path)


@pytest.fixture
def session_factory(test_db):
    return build_session_factory(test_db)
