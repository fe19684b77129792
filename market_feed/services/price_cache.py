"""Latest-record cache with a bounded price history."""

import threading
import time
from collections import deque
from typing import Callable, Optional

from market_feed.models.market_data import CacheEntry, PriceRecord

DEFAULT_HISTORY_SIZE = 100


class PriceCache:
    """
    Holds one CacheEntry plus the most recent records in insertion order.

    The entry is swapped as a whole under a lock, so readers see either the
    previous or the new record, never a mix. History is only used for
    statistics and display; freshness is decided from the entry alone.
    """

    def __init__(
        self,
        cache_timeout: float,
        history_size: int = DEFAULT_HISTORY_SIZE,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize an empty cache.

        Args:
            cache_timeout: Seconds after which the cached entry is stale
            history_size: Maximum number of records kept in history
            clock: Time source in seconds; injectable for tests
        """
        self.cache_timeout = cache_timeout
        self.history_size = history_size
        self._clock = clock
        self._entry: Optional[CacheEntry] = None
        self._history: deque[PriceRecord] = deque(maxlen=history_size)
        self._lock = threading.Lock()

    def set(self, record: PriceRecord) -> CacheEntry:
        """Replace the cached entry and append to history, evicting the oldest."""
        entry = CacheEntry(record=record, cached_at=self._clock())
        with self._lock:
            self._entry = entry
            self._history.append(record)
        return entry

    def seed(self, record: PriceRecord, cached_at: Optional[float] = None) -> None:
        """
        Install a record without touching history (warm start).

        ``cached_at`` defaults to a time old enough that the entry is stale,
        so the next refresh still goes upstream.
        """
        if cached_at is None:
            cached_at = self._clock() - self.cache_timeout
        with self._lock:
            self._entry = CacheEntry(record=record, cached_at=cached_at)

    def entry(self) -> Optional[CacheEntry]:
        with self._lock:
            return self._entry

    def latest(self) -> Optional[PriceRecord]:
        entry = self.entry()
        return entry.record if entry else None

    def cache_age(self) -> float:
        """Seconds since the entry was cached; 0 when empty."""
        entry = self.entry()
        if entry is None:
            return 0.0
        return max(0.0, self._clock() - entry.cached_at)

    def is_stale(self) -> bool:
        """True when there is no entry or it is at least ``cache_timeout`` old."""
        entry = self.entry()
        if entry is None:
            return True
        return self._clock() - entry.cached_at >= self.cache_timeout

    def history(self) -> list[PriceRecord]:
        """Copy of the retained records, oldest first."""
        with self._lock:
            return list(self._history)

    def clear(self) -> None:
        with self._lock:
            self._entry = None
            self._history.clear()
