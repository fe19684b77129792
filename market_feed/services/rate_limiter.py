"""Per-source request budgets for upstream market data providers."""

import threading
import time
from collections import defaultdict
from typing import Callable, Optional

WINDOW_SECONDS = 60.0


class RateLimiter:
    """
    In-memory sliding window limiter keyed by source name.

    Admission is a pure yes/no decision: the limiter never sleeps. Callers
    check ``can_admit`` before a request and call ``record_admission`` once the
    request has produced a record.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic, window_seconds: float = WINDOW_SECONDS):
        """
        Initialize the rate limiter with empty request tracking.

        Args:
            clock: Time source in seconds; injectable for tests
            window_seconds: Length of the sliding window
        """
        self._clock = clock
        self.window_seconds = window_seconds
        # Format: {source: [timestamp1, timestamp2, ...]}, oldest first
        self._requests: dict[str, list[float]] = defaultdict(list)
        # Format: {source: time until which the source is cooling down}
        self._deferred_until: dict[str, float] = {}
        self._lock = threading.Lock()

    def can_admit(self, source_name: str, budget_per_minute: Optional[int]) -> bool:
        """
        Check whether one more request to a source fits its budget.

        Args:
            source_name: Name of the upstream source
            budget_per_minute: Allowed requests per window; None means unlimited

        Returns:
            True if a request may be issued now
        """
        if budget_per_minute is None:
            return True

        now = self._clock()
        with self._lock:
            deferred_until = self._deferred_until.get(source_name)
            if deferred_until is not None:
                if now < deferred_until:
                    return False
                del self._deferred_until[source_name]

            window_start = now - self.window_seconds
            recent = [t for t in self._requests[source_name] if t > window_start]
            self._requests[source_name] = recent
            return len(recent) < budget_per_minute

    def record_admission(self, source_name: str) -> None:
        """Count one request against a source's budget."""
        with self._lock:
            self._requests[source_name].append(self._clock())

    def defer(self, source_name: str, seconds: float) -> None:
        """
        Deny every request to a source for the next ``seconds``.

        Used when the upstream itself reports that we are over its limit.
        """
        with self._lock:
            self._deferred_until[source_name] = self._clock() + seconds

    def retry_after(self, source_name: str) -> float:
        """Seconds until the oldest recorded request leaves the window (0 if none)."""
        now = self._clock()
        with self._lock:
            waits = []
            deferred_until = self._deferred_until.get(source_name)
            if deferred_until is not None:
                waits.append(deferred_until - now)
            if self._requests[source_name]:
                waits.append(self._requests[source_name][0] + self.window_seconds - now)
        return max([0.0, *waits])

    def clear_key(self, source_name: str) -> None:
        """Forget all requests and cool-downs recorded for one source."""
        with self._lock:
            self._requests.pop(source_name, None)
            self._deferred_until.pop(source_name, None)

    def clear_all(self) -> None:
        """Clear all stored requests."""
        with self._lock:
            self._requests.clear()
            self._deferred_until.clear()

    def get_stats(self, source_name: str) -> dict:
        """
        Get current statistics for a source.

        Returns:
            Dictionary with current request count, timestamps and cool-down
        """
        with self._lock:
            return {
                "source": source_name,
                "current_requests": len(self._requests[source_name]),
                "request_timestamps": list(self._requests[source_name]),
                "deferred_until": self._deferred_until.get(source_name),
            }
