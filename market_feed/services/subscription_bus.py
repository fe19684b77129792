"""Push delivery of new price records to registered callbacks."""

import threading
import uuid
from typing import Callable, Optional

from market_feed.models.market_data import PriceRecord
from market_feed.utils.logger import StructuredLogger

Subscriber = Callable[[PriceRecord], None]


class SubscriptionBus:
    """Observer registry keyed by generated subscription ids."""

    def __init__(self, current: Callable[[], Optional[PriceRecord]] = lambda: None):
        """
        Initialize an empty bus.

        Args:
            current: Returns the cached record to replay to new subscribers
        """
        self._current = current
        self._subscribers: dict[str, Subscriber] = {}
        self._lock = threading.Lock()
        self.logger = StructuredLogger("SubscriptionBus")

    def subscribe(self, callback: Subscriber) -> str:
        """
        Register a callback and replay the current record to it, if any.

        Returns:
            Subscription id to pass to ``unsubscribe``
        """
        subscription_id = str(uuid.uuid4())
        with self._lock:
            self._subscribers[subscription_id] = callback

        record = self._current()
        if record is not None:
            self._deliver(subscription_id, callback, record)
        return subscription_id

    def unsubscribe(self, subscription_id: str) -> bool:
        """Remove a subscription. Returns False if the id was unknown."""
        with self._lock:
            return self._subscribers.pop(subscription_id, None) is not None

    def notify(self, record: PriceRecord) -> int:
        """
        Deliver a record to every subscriber registered at call time.

        Returns:
            Number of subscribers that received the record without raising
        """
        with self._lock:
            snapshot = list(self._subscribers.items())

        delivered = 0
        for subscription_id, callback in snapshot:
            if self._deliver(subscription_id, callback, record):
                delivered += 1
        return delivered

    def _deliver(self, subscription_id: str, callback: Subscriber, record: PriceRecord) -> bool:
        try:
            callback(record)
        except Exception as e:
            self.logger.error(
                "Subscriber raised while handling a price update",
                context={"subscription_id": subscription_id, "source": record.source},
                exception=e,
            )
            return False
        return True

    def clear(self) -> None:
        with self._lock:
            self._subscribers.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscribers)
