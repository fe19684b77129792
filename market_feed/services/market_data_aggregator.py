"""Market data aggregator: walks the sources in priority order, one pass at a time."""

import queue
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Literal, Optional

from market_feed.database.key_value_store import PriceRecordStore
from market_feed.models.market_data import PriceRecord
from market_feed.services.errors import (
    AggregatorNotRunningError,
    FetchError,
    PersistenceFailure,
    RateLimited,
    UpstreamRateLimited,
)
from market_feed.services.fetch_pipeline import FetchPipeline
from market_feed.services.price_cache import PriceCache
from market_feed.services.rate_limiter import RateLimiter
from market_feed.services.source_registry import SourceDescriptor, SourceRegistry
from market_feed.services.subscription_bus import SubscriptionBus
from market_feed.utils.event_store import (
    CACHE_HIT,
    FALLBACK_USED,
    PERSISTENCE_FAILED,
    REFRESH_COMPLETE,
    REFRESH_START,
    SOURCE_FAILED,
    SOURCE_SKIPPED,
    SOURCE_SUCCESS,
    EventStore,
)
from market_feed.utils.logger import StructuredLogger
from market_feed.utils.trace_context import traced

# Cool-down applied when an upstream answers 429 without a Retry-After header
DEFAULT_UPSTREAM_COOLDOWN = 60.0

AggregatorState = Literal["idle", "refreshing"]


@dataclass
class _RefreshRequest:
    force: bool
    source_name: Optional[str]
    future: Future


class MarketDataAggregator:
    """
    Produces PriceRecords from the registered sources.

    A single worker thread consumes refresh requests from a queue, so at
    most one pass runs at a time and subscribers see records in the order
    they were produced. Non-forced requests that arrive while a pass is
    queued or running share that pass's Future; forced requests get a pass
    of their own, run after the current one.
    """

    def __init__(
        self,
        registry: SourceRegistry,
        cache: PriceCache,
        bus: SubscriptionBus,
        fetch_pipeline: Optional[FetchPipeline] = None,
        rate_limiter: Optional[RateLimiter] = None,
        record_store: Optional[PriceRecordStore] = None,
        event_store: Optional[EventStore] = None,
        request_timeout: float = 10.0,
        upstream_cooldown: float = DEFAULT_UPSTREAM_COOLDOWN,
    ):
        """
        Initialize the aggregator. Nothing runs until ``start`` is called.

        Args:
            registry: Sources to query, terminated by the fallback
            cache: Cache and history written after every pass
            bus: Subscribers notified after every pass
            fetch_pipeline: HTTP fetcher (a default one is created when omitted)
            rate_limiter: Per-source budgets (a default one is created when omitted)
            record_store: Optional persistence for warm starts
            event_store: Optional sink for refresh events
            request_timeout: Per-source request timeout in seconds
            upstream_cooldown: Seconds to avoid a source after it answers 429
        """
        self.registry = registry
        self.cache = cache
        self.bus = bus
        self.fetch_pipeline = fetch_pipeline or FetchPipeline(timeout=request_timeout)
        self.rate_limiter = rate_limiter or RateLimiter()
        self.record_store = record_store
        self.event_store = event_store
        self.request_timeout = request_timeout
        self.upstream_cooldown = upstream_cooldown
        self.logger = StructuredLogger("MarketDataAggregator")

        self._requests: queue.Queue[Optional[_RefreshRequest]] = queue.Queue()
        self._lock = threading.Lock()
        self._inflight: Optional[Future] = None
        self._worker: Optional[threading.Thread] = None
        self._running = False
        self._state: AggregatorState = "idle"

    @property
    def state(self) -> AggregatorState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Start the refresh worker thread. Calling it twice is harmless."""
        previous = self._worker
        if previous is not None and previous.is_alive() and not self._running:
            # A pass from before the last stop() is still finishing
            previous.join()

        with self._lock:
            if self._running:
                return
            self._running = True
            self._worker = threading.Thread(
                target=self._run, name="market-data-refresh", daemon=True
            )
            self._worker.start()
        self.logger.info("Refresh worker started")

    def stop(self, timeout: Optional[float] = None) -> None:
        """
        Stop the worker. Queued passes are cancelled; a running pass finishes.

        Args:
            timeout: Seconds to wait for the worker thread to exit
        """
        with self._lock:
            if not self._running:
                return
            self._running = False
            cancelled = 0
            while True:
                try:
                    pending = self._requests.get_nowait()
                except queue.Empty:
                    break
                if pending is not None and pending.future.cancel():
                    cancelled += 1
            self._requests.put(None)
            worker = self._worker

        if worker is not None:
            worker.join(timeout)
        self.logger.info("Refresh worker stopped", context={"cancelled_requests": cancelled})

    def request_refresh(self, force: bool = False, source_name: Optional[str] = None) -> Future:
        """
        Queue a refresh pass without waiting for it.

        Args:
            force: Skip the freshness check and do not join an in-flight pass
            source_name: Query only this source (then the fallback); implies force

        Returns:
            Future resolving to the pass's PriceRecord

        Raises:
            UnknownSourceError: if ``source_name`` is not registered
            AggregatorNotRunningError: if the worker is not started
        """
        if source_name is not None:
            self.registry.get(source_name)
            force = True

        with self._lock:
            if not self._running:
                raise AggregatorNotRunningError("Market data aggregator is not running")
            if not force and self._inflight is not None and not self._inflight.done():
                return self._inflight
            future: Future = Future()
            self._inflight = future
            self._requests.put(_RefreshRequest(force=force, source_name=source_name, future=future))
        return future

    def refresh(
        self,
        force: bool = False,
        source_name: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> PriceRecord:
        """
        Run (or join) a refresh pass and wait for its record.

        Source failures never surface here: the fallback guarantees a record.

        Raises:
            UnknownSourceError: if ``source_name`` is not registered
            AggregatorNotRunningError: if the worker is not started
            concurrent.futures.CancelledError: if ``stop`` cancelled the pass
            TimeoutError: if ``timeout`` elapsed first
        """
        return self.request_refresh(force=force, source_name=source_name).result(timeout)

    def _run(self) -> None:
        while True:
            request = self._requests.get()
            if request is None:
                return
            if not request.future.set_running_or_notify_cancel():
                continue

            self._state = "refreshing"
            try:
                record = self._refresh_pass(request.force, request.source_name)
            except Exception as e:
                self.logger.critical("Refresh pass aborted", exception=e)
                request.future.set_exception(e)
            else:
                request.future.set_result(record)
            finally:
                self._state = "idle"
                with self._lock:
                    if self._inflight is request.future:
                        self._inflight = None

    def _refresh_pass(self, force: bool, source_name: Optional[str]) -> PriceRecord:
        with traced() as trace_id:
            started = time.monotonic()

            if not force:
                entry = self.cache.entry()
                if entry is not None and not self.cache.is_stale():
                    self._event(trace_id, CACHE_HIT, "Served cached record", source=entry.record.source)
                    return entry.record

            self.logger.info(
                "Starting market data refresh",
                context={"force": force, "source_override": source_name},
            )
            self._event(trace_id, REFRESH_START, "Refresh started", {"force": force})

            if source_name is not None:
                candidates = [self.registry.get(source_name)]
            else:
                candidates = self.registry.ordered()

            record = self._first_success(trace_id, candidates)
            if record is None:
                record = self.registry.fallback.parser.parse(None)
                self.logger.warning(
                    "All market data sources failed, using fallback price",
                    context={"price": record.price},
                )
                self._event(trace_id, FALLBACK_USED, "Fallback price used", source=record.source)

            self._commit(trace_id, record)

            duration_ms = (time.monotonic() - started) * 1000
            self.logger.info(
                "Market data updated",
                context={
                    "price": record.price,
                    "change_24h": record.change_24h,
                    "source": record.source,
                    "observed_at": record.observed_at.isoformat(),
                    "duration_ms": duration_ms,
                },
            )
            self._event(
                trace_id,
                REFRESH_COMPLETE,
                "Refresh completed",
                {"price": record.price, "fallback": record.is_fallback},
                source=record.source,
                duration_ms=duration_ms,
            )
            return record

    def _first_success(
        self, trace_id: str, candidates: list[SourceDescriptor]
    ) -> Optional[PriceRecord]:
        for source in candidates:
            if source.is_fallback:
                continue

            if not self.rate_limiter.can_admit(source.name, source.requests_per_minute):
                denial = RateLimited(source.name)
                self.logger.info(
                    "Skipping rate limited source",
                    context={
                        "source": source.name,
                        "retry_after": self.rate_limiter.retry_after(source.name),
                    },
                )
                self._event(trace_id, SOURCE_SKIPPED, str(denial), source=source.name)
                continue

            attempt_started = time.monotonic()
            try:
                record = self.fetch_pipeline.fetch(source, timeout=self.request_timeout)
            except UpstreamRateLimited as e:
                self.rate_limiter.defer(source.name, e.retry_after or self.upstream_cooldown)
                self._source_failed(trace_id, source, e, attempt_started)
                continue
            except FetchError as e:
                self._source_failed(trace_id, source, e, attempt_started)
                continue
            except Exception as e:
                self.logger.error(
                    f"Unexpected error fetching from {source.name}",
                    context={"source": source.name},
                    exception=e,
                )
                self._source_failed(trace_id, source, e, attempt_started)
                continue

            self.rate_limiter.record_admission(source.name)
            self._event(
                trace_id,
                SOURCE_SUCCESS,
                f"Fetched price from {source.name}",
                {"price": record.price},
                source=source.name,
                duration_ms=(time.monotonic() - attempt_started) * 1000,
            )
            return record

        return None

    def _source_failed(
        self, trace_id: str, source: SourceDescriptor, error: Exception, attempt_started: float
    ) -> None:
        self.logger.warning(
            f"Failed to fetch from {source.name}",
            context={"source": source.name, "error_type": type(error).__name__, "error": str(error)},
        )
        self._event(
            trace_id,
            SOURCE_FAILED,
            str(error),
            {"error_type": type(error).__name__},
            source=source.name,
            duration_ms=(time.monotonic() - attempt_started) * 1000,
        )

    def _commit(self, trace_id: str, record: PriceRecord) -> None:
        """Cache, persist, then notify. Storage errors never undo the cache update."""
        self.cache.set(record)

        if self.record_store is not None:
            try:
                self.record_store.save(record)
            except PersistenceFailure as e:
                self.logger.warning("Failed to persist market data", exception=e)
                self._event(trace_id, PERSISTENCE_FAILED, str(e), source=record.source)

        self.bus.notify(record)

    def _event(
        self,
        trace_id: str,
        event_type: str,
        message: str,
        context: Optional[dict] = None,
        source: Optional[str] = None,
        duration_ms: Optional[float] = None,
    ) -> None:
        if self.event_store is None:
            return
        self.event_store.add_event(
            trace_id=trace_id,
            event_type=event_type,
            component="MarketDataAggregator",
            message=message,
            context=context,
            source=source,
            duration_ms=duration_ms,
        )
