"""Tests for key-value stores and the latest-record store."""

import json
from unittest.mock import Mock

import pytest

from conftest import make_record
from market_feed.database.key_value_store import (
    LATEST_PRICE_KEY,
    InMemoryKeyValueStore,
    PriceRecordStore,
    SqlKeyValueStore,
)
from market_feed.database.models import KeyValueEntry
from market_feed.services.errors import PersistenceFailure


@pytest.fixture(params=["memory", "sql"])
def store(request):
    """Run each test against both store implementations."""
    if request.param == "memory":
        return InMemoryKeyValueStore()
    return SqlKeyValueStore(request.getfixturevalue("session_factory"))


class TestKeyValueStores:
    """Behaviour shared by every KeyValueStore."""

    def test_missing_key_returns_none(self, store):
        """Test that an unknown key reads as None."""
        assert store.get("missing") is None

    def test_set_then_get(self, store):
        """Test that a stored value is read back."""
        store.set("k", "v1")
        assert store.get("k") == "v1"

    def test_set_overwrites(self, store):
        """Test that a second set replaces the value."""
        store.set("k", "v1")
        store.set("k", "v2")
        assert store.get("k") == "v2"

    def test_delete(self, store):
        """Test that delete removes a key and ignores a missing one."""
        store.set("k", "v1")
        store.delete("k")
        store.delete("never-set")
        assert store.get("k") is None


class TestSqlKeyValueStore:
    """Tests specific to the SQLAlchemy-backed store."""

    def test_value_is_stored_in_table(self, session_factory):
        """Test that the SQL store writes a timestamped row."""
        SqlKeyValueStore(session_factory).set(LATEST_PRICE_KEY, "{}")

        with session_factory() as session:
            entry = session.get(KeyValueEntry, LATEST_PRICE_KEY)
            assert entry.value == "{}"
            assert entry.updated_at is not None

    def test_values_survive_new_store_instance(self, session_factory):
        """Test that values outlive the store object."""
        SqlKeyValueStore(session_factory).set("k", "v")

        assert SqlKeyValueStore(session_factory).get("k") == "v"


class TestPriceRecordStore:
    """Tests for saving and loading the latest record."""

    def test_cold_start_returns_none(self, store):
        """Test that load returns None when nothing was saved."""
        assert PriceRecordStore(store).load() is None

    def test_save_and_load(self, store):
        """Test that a saved record loads back equal."""
        record_store = PriceRecordStore(store)
        record = make_record(price=12.5, source="CryptoCompare", change_7d=-1.25)

        record_store.save(record)

        assert record_store.load() == record

    def test_save_replaces_previous_record(self, store):
        """Test that only the latest saved record is kept."""
        record_store = PriceRecordStore(store)
        record_store.save(make_record(price=1.0))
        latest = make_record(price=2.0)

        record_store.save(latest)

        assert record_store.load() == latest

    def test_document_is_json_under_fixed_key(self, kv_store):
        """Test that the record is a JSON document under the fixed key."""
        PriceRecordStore(kv_store).save(make_record(price=12.5))

        document = json.loads(kv_store.get(LATEST_PRICE_KEY))
        assert document["price"] == 12.5
        assert document["source"] == "CoinGecko"

    def test_clear(self, store):
        """Test that clear removes the saved record."""
        record_store = PriceRecordStore(store)
        record_store.save(make_record())

        record_store.clear()

        assert record_store.load() is None

    @pytest.mark.parametrize(
        "document",
        [
            "not json",
            json.dumps({"price": 1.0}),
            json.dumps({"price": "abc", "observed_at": "2025-01-01T00:00:00+00:00", "source": "X"}),
            json.dumps({"price": 1.0, "observed_at": "yesterday", "source": "X"}),
            json.dumps({"price": -5.0, "observed_at": "2025-01-01T00:00:00+00:00", "source": "X"}),
            json.dumps([1, 2, 3]),
        ],
    )
    def test_corrupt_document_raises_persistence_failure(self, kv_store, document):
        """Test that an undecodable or invalid document raises PersistenceFailure."""
        kv_store.set(LATEST_PRICE_KEY, document)

        with pytest.raises(PersistenceFailure):
            PriceRecordStore(kv_store).load()

    def test_store_errors_are_wrapped(self):
        """Test that backend errors surface as PersistenceFailure."""
        broken = Mock()
        broken.get.side_effect = ConnectionError("store offline")
        broken.set.side_effect = ConnectionError("store offline")
        broken.delete.side_effect = ConnectionError("store offline")
        record_store = PriceRecordStore(broken)

        with pytest.raises(PersistenceFailure):
            record_store.save(make_record())
        with pytest.raises(PersistenceFailure):
            record_store.load()
        with pytest.raises(PersistenceFailure):
            record_store.clear()
