"""In-memory event store for refresh passes and upstream attempts."""

import threading
import uuid
from collections import deque
from dataclasses import asdict, dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

# Event types emitted by the aggregator
REFRESH_START = "refresh_start"
REFRESH_COMPLETE = "refresh_complete"
CACHE_HIT = "cache_hit"
SOURCE_SKIPPED = "source_skipped"
SOURCE_FAILED = "source_failed"
SOURCE_SUCCESS = "source_success"
FALLBACK_USED = "fallback_used"
PERSISTENCE_FAILED = "persistence_failed"


@dataclass
class Event:
    """One recorded occurrence inside a refresh pass."""

    id: str
    timestamp: str
    trace_id: str | None
    event_type: str
    component: str
    message: str
    context: dict[str, Any]
    source: str | None = None
    duration_ms: float | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert event to dictionary, excluding None values."""
        return {k: v for k, v in asdict(self).items() if v is not None}


class EventStore:
    """Bounded, thread-safe event log; oldest events fall off first."""

    def __init__(self, max_size: int = 10000, max_age_seconds: int = 3600):
        """
        Initialize the event store.

        Args:
            max_size: Maximum number of events to keep
            max_age_seconds: Age used by ``clear_old_events`` when none is given
        """
        self.max_size = max_size
        self.max_age_seconds = max_age_seconds
        self._events: deque[Event] = deque(maxlen=max_size)
        self._lock = threading.RLock()

    def add_event(
        self,
        trace_id: str | None,
        event_type: str,
        component: str,
        message: str,
        context: dict[str, Any] | None = None,
        source: str | None = None,
        duration_ms: float | None = None,
    ) -> Event:
        """
        Record an event.

        Args:
            trace_id: Trace id of the refresh pass, if any
            event_type: One of the event type constants in this module
            component: Component that generated the event
            message: Human readable description
            context: Optional extra fields
            source: Upstream source the event concerns, if any
            duration_ms: Optional duration in milliseconds

        Returns:
            The created Event
        """
        event = Event(
            id=str(uuid.uuid4()),
            timestamp=datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            trace_id=trace_id,
            event_type=event_type,
            component=component,
            message=message,
            context=context or {},
            source=source,
            duration_ms=duration_ms,
        )
        with self._lock:
            self._events.append(event)
        return event

    def get_recent_events(self, limit: int = 100) -> list[Event]:
        """Return up to ``limit`` most recent events, oldest first."""
        if limit <= 0:
            return []
        with self._lock:
            return list(self._events)[-limit:]

    def get_events_by_trace(self, trace_id: str) -> list[Event]:
        """Return every event of one refresh pass in the order recorded."""
        with self._lock:
            return [event for event in self._events if event.trace_id == trace_id]

    def get_events_by_type(self, event_type: str, limit: int = 100) -> list[Event]:
        """Return up to ``limit`` most recent events of one type, oldest first."""
        if limit <= 0:
            return []
        with self._lock:
            matching = [event for event in self._events if event.event_type == event_type]
        return matching[-limit:]

    def get_events_by_source(self, source: str) -> list[Event]:
        """Return every retained event that concerns one upstream source."""
        with self._lock:
            return [event for event in self._events if event.source == source]

    def clear_old_events(self, max_age_seconds: int | None = None) -> int:
        """
        Remove events older than the given age.

        Args:
            max_age_seconds: Maximum age in seconds (instance default if None)

        Returns:
            Number of events removed
        """
        max_age = max_age_seconds or self.max_age_seconds
        cutoff_time = datetime.now(UTC) - timedelta(seconds=max_age)

        with self._lock:
            initial_count = len(self._events)
            kept = [
                event
                for event in self._events
                if datetime.fromisoformat(event.timestamp.replace("Z", "+00:00")) > cutoff_time
            ]
            self._events = deque(kept, maxlen=self.max_size)
            return initial_count - len(self._events)

    def clear(self) -> None:
        """Clear all events from the store."""
        with self._lock:
            self._events.clear()

    def size(self) -> int:
        """Get the current number of events in the store."""
        with self._lock:
            return len(self._events)

    def get_all_events(self) -> list[Event]:
        """Return all retained events, oldest first."""
        with self._lock:
            return list(self._events)
