"""Scheduler service for periodic market data refreshes."""

from datetime import datetime, timezone
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from market_feed.services.errors import AggregatorNotRunningError
from market_feed.services.market_data_aggregator import MarketDataAggregator
from market_feed.utils.logger import StructuredLogger

REFRESH_JOB_ID = "market_data_refresh"

structured_logger = StructuredLogger("SchedulerService")


class SchedulerService:
    """Triggers a non-forced refresh on a fixed interval.

    The job only enqueues a request; the aggregator's worker runs the pass,
    so timer ticks and caller refreshes share the same single-flight queue.
    """

    def __init__(self, aggregator: MarketDataAggregator, refresh_interval: float = 120):
        """
        Initialize scheduler service.

        Args:
            aggregator: Aggregator receiving the refresh requests
            refresh_interval: Seconds between periodic refreshes

        Raises:
            ValueError: If the interval is not positive
        """
        if refresh_interval <= 0:
            raise ValueError(f"refresh_interval must be positive, got {refresh_interval}")
        self.aggregator = aggregator
        self.refresh_interval = refresh_interval
        self.scheduler = BackgroundScheduler(timezone=timezone.utc)
        self.is_running = False

    def start(self) -> None:
        """Schedule the refresh job and start the scheduler."""
        if self.is_running:
            return

        self.scheduler.add_job(
            self.trigger_refresh,
            IntervalTrigger(seconds=self.refresh_interval),
            id=REFRESH_JOB_ID,
            name="Periodic Market Data Refresh",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        self.is_running = True
        structured_logger.info(
            "Scheduler started",
            context={"refresh_interval": self.refresh_interval},
        )

    def trigger_refresh(self) -> None:
        """Enqueue a non-forced refresh; does not wait for it."""
        try:
            self.aggregator.request_refresh(force=False)
        except AggregatorNotRunningError as e:
            structured_logger.warning("Periodic refresh skipped", exception=e)

    def seconds_until_next_run(self) -> Optional[float]:
        """Seconds until the next scheduled refresh, or None when not scheduled."""
        if not self.is_running:
            return None
        job = self.scheduler.get_job(REFRESH_JOB_ID)
        if job is None or job.next_run_time is None:
            return None
        delta = job.next_run_time - datetime.now(timezone.utc)
        return max(0.0, delta.total_seconds())

    def stop(self) -> None:
        """Stop the scheduler."""
        if self.is_running:
            self.scheduler.shutdown(wait=False)
            self.is_running = False
            structured_logger.info("Scheduler stopped")
