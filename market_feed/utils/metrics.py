"""Metrics calculator for aggregating refresh events."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from market_feed.utils.event_store import (
    CACHE_HIT,
    FALLBACK_USED,
    PERSISTENCE_FAILED,
    REFRESH_COMPLETE,
    SOURCE_FAILED,
    SOURCE_SKIPPED,
    SOURCE_SUCCESS,
    EventStore,
)


@dataclass
class SourceMetrics:
    """Attempt counters for one upstream source."""

    attempts: int = 0
    successes: int = 0
    failures: int = 0
    skipped: int = 0
    average_fetch_duration_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempts": self.attempts,
            "successes": self.successes,
            "failures": self.failures,
            "skipped": self.skipped,
            "average_fetch_duration_ms": self.average_fetch_duration_ms,
        }


@dataclass
class Metrics:
    """Represents aggregated engine metrics."""

    total_refreshes: int
    cache_hits: int
    fallback_refreshes: int
    fallback_rate: float
    average_refresh_duration_ms: float
    persistence_failures: int
    uptime_seconds: int
    sources: Dict[str, SourceMetrics] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert metrics to dictionary."""
        return {
            "total_refreshes": self.total_refreshes,
            "cache_hits": self.cache_hits,
            "fallback_refreshes": self.fallback_refreshes,
            "fallback_rate": self.fallback_rate,
            "average_refresh_duration_ms": self.average_refresh_duration_ms,
            "persistence_failures": self.persistence_failures,
            "uptime_seconds": self.uptime_seconds,
            "sources": {name: stats.to_dict() for name, stats in self.sources.items()},
        }


class MetricsCalculator:
    """Calculates metrics from event store data."""

    def __init__(self, event_store: EventStore, start_time: Optional[datetime] = None):
        """
        Initialize the metrics calculator.

        Args:
            event_store: The event store to calculate metrics from
            start_time: Optional start time for uptime calculation (defaults to now)
        """
        self.event_store = event_store
        self.start_time = start_time or datetime.now(timezone.utc)

    def calculate(self) -> Metrics:
        """
        Calculate metrics from the event store.

        Returns:
            Metrics object with aggregated statistics
        """
        events = self.event_store.get_all_events()

        # Passes that went upstream; cache hits are counted separately
        completes = [e for e in events if e.event_type == REFRESH_COMPLETE]
        total_refreshes = len(completes)
        fallback_refreshes = len([e for e in events if e.event_type == FALLBACK_USED])
        fallback_rate = (
            (fallback_refreshes / total_refreshes * 100) if total_refreshes > 0 else 0.0
        )

        refresh_durations = [e.duration_ms for e in completes if e.duration_ms is not None]
        average_refresh_duration_ms = (
            sum(refresh_durations) / len(refresh_durations) if refresh_durations else 0.0
        )

        sources: Dict[str, SourceMetrics] = {}
        durations: Dict[str, list[float]] = {}
        for event in events:
            if event.source is None:
                continue
            stats = sources.setdefault(event.source, SourceMetrics())
            if event.event_type == SOURCE_SKIPPED:
                stats.skipped += 1
                continue
            if event.event_type == SOURCE_SUCCESS:
                stats.successes += 1
            elif event.event_type == SOURCE_FAILED:
                stats.failures += 1
            else:
                continue
            stats.attempts += 1
            if event.duration_ms is not None:
                durations.setdefault(event.source, []).append(event.duration_ms)

        for name, values in durations.items():
            sources[name].average_fetch_duration_ms = sum(values) / len(values)

        current_time = datetime.now(timezone.utc)
        uptime_seconds = int((current_time - self.start_time).total_seconds())

        return Metrics(
            total_refreshes=total_refreshes,
            cache_hits=len([e for e in events if e.event_type == CACHE_HIT]),
            fallback_refreshes=fallback_refreshes,
            fallback_rate=fallback_rate,
            average_refresh_duration_ms=average_refresh_duration_ms,
            persistence_failures=len([e for e in events if e.event_type == PERSISTENCE_FAILED]),
            uptime_seconds=uptime_seconds,
            sources=sources,
        )
