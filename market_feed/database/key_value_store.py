"""Key-value persistence used to warm-start the engine after a restart."""

import json
import threading
from typing import Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from market_feed.database.models import KeyValueEntry
from market_feed.models.market_data import PriceRecord
from market_feed.services.errors import PersistenceFailure

LATEST_PRICE_KEY = "market-feed:latest-price"


class KeyValueStore(Protocol):
    """Minimal storage interface the engine depends on."""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class InMemoryKeyValueStore:
    """Process-local store; state is lost on exit."""

    def __init__(self):
        self._data: dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)


class SqlKeyValueStore:
    """Store backed by the ``key_value_entries`` table."""

    def __init__(self, session_factory: sessionmaker):
        """
        Initialize the store.

        Args:
            session_factory: SQLAlchemy session factory; one session per call
        """
        self.session_factory = session_factory

    def get(self, key: str) -> Optional[str]:
        with self.session_factory() as session:
            entry = session.get(KeyValueEntry, key)
            return entry.value if entry else None

    def set(self, key: str, value: str) -> None:
        with self.session_factory() as session:
            try:
                entry = session.get(KeyValueEntry, key)
                if entry is None:
                    session.add(KeyValueEntry(key=key, value=value))
                else:
                    entry.value = value
                session.commit()
            except SQLAlchemyError:
                session.rollback()
                raise

    def delete(self, key: str) -> None:
        with self.session_factory() as session:
            try:
                session.query(KeyValueEntry).filter(KeyValueEntry.key == key).delete()
                session.commit()
            except SQLAlchemyError:
                session.rollback()
                raise


class PriceRecordStore:
    """Saves and loads the single latest PriceRecord under a fixed key."""

    def __init__(self, store: KeyValueStore, key: str = LATEST_PRICE_KEY):
        self.store = store
        self.key = key

    def save(self, record: PriceRecord) -> None:
        """
        Persist ``record``, replacing any previous one.

        Raises:
            PersistenceFailure: if the underlying store fails
        """
        payload = json.dumps(record.to_dict())
        try:
            self.store.set(self.key, payload)
        except Exception as e:
            raise PersistenceFailure(f"Failed to save {self.key}: {e}") from e

    def load(self) -> Optional[PriceRecord]:
        """
        Load the persisted record.

        Returns:
            The record, or None when nothing was saved yet (cold start)

        Raises:
            PersistenceFailure: on storage errors or an unreadable document
        """
        try:
            payload = self.store.get(self.key)
        except Exception as e:
            raise PersistenceFailure(f"Failed to read {self.key}: {e}") from e

        if payload is None:
            return None

        try:
            data = json.loads(payload)
            if not isinstance(data, dict):
                raise TypeError(f"expected an object, got {type(data).__name__}")
            return PriceRecord.from_dict(data)
        except (ValueError, KeyError, TypeError) as e:
            raise PersistenceFailure(f"Stored {self.key} is not a valid price record: {e}") from e

    def clear(self) -> None:
        try:
            self.store.delete(self.key)
        except Exception as e:
            raise PersistenceFailure(f"Failed to delete {self.key}: {e}") from e
