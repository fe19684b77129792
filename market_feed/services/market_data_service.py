"""Market data service: the engine handle consumers hold."""

import time
from typing import Callable, Optional

from market_feed.database.key_value_store import PriceRecordStore
from market_feed.models.market_data import (
    CacheStatus,
    ConversionResult,
    PriceRecord,
    PriceStatistics,
)
from market_feed.services.conversion_service import ConversionService
from market_feed.services.errors import PersistenceFailure
from market_feed.services.fetch_pipeline import FetchPipeline
from market_feed.services.market_data_aggregator import MarketDataAggregator
from market_feed.services.price_cache import PriceCache
from market_feed.services.rate_limiter import RateLimiter
from market_feed.services.scheduler_service import SchedulerService
from market_feed.services.source_registry import SourceRegistry, build_default_registry
from market_feed.services.subscription_bus import Subscriber, SubscriptionBus
from market_feed.utils.config import MarketDataConfig, SourceConfig
from market_feed.utils.event_store import EventStore
from market_feed.utils.logger import StructuredLogger
from market_feed.utils.metrics import Metrics, MetricsCalculator


class MarketDataService:
    """
    Wires the aggregator, cache, bus, conversion service and scheduler
    together behind one explicitly constructed object.

    Nothing talks to the network until ``start`` is called. Reads
    (``latest``, ``history``, conversions, statistics) never block on a
    refresh.
    """

    def __init__(
        self,
        registry: SourceRegistry,
        market: Optional[MarketDataConfig] = None,
        fetch_pipeline: Optional[FetchPipeline] = None,
        rate_limiter: Optional[RateLimiter] = None,
        record_store: Optional[PriceRecordStore] = None,
        event_store: Optional[EventStore] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Build the engine.

        Args:
            registry: Upstream sources and the fallback
            market: Timing and fallback settings (defaults when omitted)
            fetch_pipeline: HTTP fetcher; a default one is created when omitted
            rate_limiter: Per-source budgets; shares ``clock`` when created here
            record_store: Optional persistence for the latest record
            event_store: Sink for refresh events; a private one is created when omitted
            clock: Monotonic time source for cache freshness and rate windows
        """
        self.market = market or MarketDataConfig()
        self.registry = registry
        self.record_store = record_store
        self.event_store = event_store or EventStore()
        self.logger = StructuredLogger("MarketDataService")

        self.cache = PriceCache(
            cache_timeout=self.market.cache_timeout,
            history_size=self.market.history_size,
            clock=clock,
        )
        self.bus = SubscriptionBus(current=self.cache.latest)
        self.conversion = ConversionService(self.cache, fallback_rate=self.market.fallback_price)
        self.aggregator = MarketDataAggregator(
            registry=registry,
            cache=self.cache,
            bus=self.bus,
            fetch_pipeline=fetch_pipeline or FetchPipeline(timeout=self.market.request_timeout),
            rate_limiter=rate_limiter or RateLimiter(clock=clock),
            record_store=record_store,
            event_store=self.event_store,
            request_timeout=self.market.request_timeout,
        )
        self.scheduler = SchedulerService(self.aggregator, refresh_interval=self.market.refresh_interval)
        self.metrics_calculator = MetricsCalculator(self.event_store)

    @classmethod
    def from_config(
        cls,
        market: MarketDataConfig,
        sources: SourceConfig,
        record_store: Optional[PriceRecordStore] = None,
        event_store: Optional[EventStore] = None,
    ) -> "MarketDataService":
        """Build the engine with the default CoinGecko/CoinMarketCap/CryptoCompare sources."""
        return cls(
            registry=build_default_registry(market, sources),
            market=market,
            record_store=record_store,
            event_store=event_store,
        )

    @property
    def is_running(self) -> bool:
        return self.aggregator.is_running

    def start(self, initial_refresh: bool = True) -> None:
        """
        Warm-start from storage, start the worker and the periodic refresh.

        Args:
            initial_refresh: Queue one refresh right away instead of waiting
                for the first timer tick
        """
        if self.is_running:
            return

        self._warm_start()
        self.aggregator.start()
        self.scheduler.start()
        if initial_refresh:
            self.aggregator.request_refresh(force=False)

        self.logger.info(
            "Market data service started",
            context={
                "sources": self.registry.names(),
                "refresh_interval": self.market.refresh_interval,
                "cache_timeout": self.market.cache_timeout,
            },
        )

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop the periodic refresh and the worker; cached data stays readable."""
        self.scheduler.stop()
        self.aggregator.stop(timeout)
        self.logger.info("Market data service stopped")

    def _warm_start(self) -> None:
        if self.record_store is None or self.cache.latest() is not None:
            return
        try:
            record = self.record_store.load()
        except PersistenceFailure as e:
            self.logger.warning("Failed to load market data from storage", exception=e)
            return
        if record is None:
            return

        # Seeded stale so the first refresh still goes upstream
        self.cache.seed(record)
        self.bus.notify(record)
        self.logger.info(
            "Warm-started from stored market data",
            context={"price": record.price, "source": record.source},
        )

    def refresh(
        self,
        force: bool = False,
        source_name: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> PriceRecord:
        """Run or join a refresh pass and return its record."""
        return self.aggregator.refresh(force=force, source_name=source_name, timeout=timeout)

    def subscribe(self, callback: Subscriber) -> str:
        """Register for every new record; the current one is replayed immediately."""
        return self.bus.subscribe(callback)

    def unsubscribe(self, subscription_id: str) -> bool:
        return self.bus.unsubscribe(subscription_id)

    def latest(self) -> Optional[PriceRecord]:
        return self.cache.latest()

    def history(self) -> list[PriceRecord]:
        return self.cache.history()

    def is_stale(self) -> bool:
        return self.cache.is_stale()

    def cache_status(self) -> CacheStatus:
        """Whether the cache is fresh, its age, and seconds to the next refresh."""
        age = self.cache_age()
        next_update = self.scheduler.seconds_until_next_run()
        if next_update is None:
            interval = self.market.refresh_interval
            next_update = interval - (age % interval)
        return CacheStatus(
            is_cached=self.cache.latest() is not None and not self.cache.is_stale(),
            cache_age=age,
            next_update=next_update,
        )

    def cache_age(self) -> float:
        return self.cache.cache_age()

    def convert_quote_to_base(self, amount: float) -> ConversionResult:
        return self.conversion.convert_quote_to_base(amount)

    def convert_base_to_quote(self, amount: float) -> ConversionResult:
        return self.conversion.convert_base_to_quote(amount)

    def statistics(self) -> PriceStatistics:
        return self.conversion.statistics()

    def source_names(self) -> list[str]:
        return self.registry.names()

    def metrics(self) -> Metrics:
        return self.metrics_calculator.calculate()
