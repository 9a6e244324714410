"""
Record store tests.
Both adapters run the same contract checks; SQLite failures must surface as StoreUnavailable.
"""

import sqlite3

import pytest
from unittest.mock import patch

from soul_registry.core.db import get_db, health_check, init_db
from soul_registry.core.errors import StoreUnavailable
from soul_registry.store.index import InMemoryRecordStore
from soul_registry.store.sqlite_store import SqliteRecordStore


@pytest.fixture(params=["memory", "sqlite"])
def record_store(request, test_db):
    """Each contract test runs against both adapters."""
    if request.param == "memory":
        return InMemoryRecordStore()
    return SqliteRecordStore(test_db)


class TestRecordStoreContract:
    """get / put / put_many / iterate / delete / count."""

    def test_get_missing_returns_none(self, record_store):
        assert record_store.get("npm:nothing") is None

    def test_put_and_get(self, record_store):
        record_store.put("npm:lodash", {"name": "lodash", "feature_vector": [1.0, 2.0]})
        assert record_store.get("npm:lodash") == {"name": "lodash", "feature_vector": [1.0, 2.0]}

    def test_put_replaces_value(self, record_store):
        record_store.put("npm:lodash", {"version": "1.0.0"})
        record_store.put("npm:lodash", {"version": "2.0.0"})

        assert record_store.get("npm:lodash") == {"version": "2.0.0"}
        assert record_store.count() == 1

    def test_put_many_writes_all_keys(self, record_store):
        record_store.put_many([
            ("npm:a", {"n": 1}),
            ("crate:a", {"n": 2}),
            ("soul:abc", {"n": 3}),
        ])

        assert record_store.get("npm:a") == {"n": 1}
        assert record_store.get("crate:a") == {"n": 2}
        assert record_store.get("soul:abc") == {"n": 3}

    def test_iterate_by_prefix_in_key_order(self, record_store):
        record_store.put_many([
            ("npm:zeta", {}),
            ("crate:alpha", {}),
            ("npm:alpha", {}),
            ("npmx:other", {}),
        ])

        keys = [key for key, _ in record_store.iterate("npm:")]
        assert keys == ["npm:alpha", "npm:zeta"]

        all_keys = [key for key, _ in record_store.iterate()]
        assert all_keys == sorted(all_keys)
        assert len(all_keys) == 4

    def test_prefix_is_case_sensitive(self, record_store):
        record_store.put("NPM:shout", {})
        record_store.put("npm:quiet", {})

        assert [key for key, _ in record_store.iterate("npm:")] == ["npm:quiet"]
        assert record_store.count("npm:") == 1

    def test_delete(self, record_store):
        record_store.put("npm:gone", {})

        assert record_store.delete("npm:gone") is True
        assert record_store.get("npm:gone") is None
        assert record_store.delete("npm:gone") is False

    def test_count_and_clear(self, record_store):
        record_store.put_many([("npm:a", {}), ("npm:b", {}), ("crate:a", {})])

        assert record_store.count() == 3
        assert record_store.count("crate:") == 1

        record_store.clear()
        assert record_store.count() == 0

    def test_health_check(self, record_store):
        assert record_store.health_check() is True


class TestInMemoryIsolation:
    """Stored values cannot be mutated through returned or passed-in dicts."""

    def test_returned_value_is_a_copy(self):
        store = InMemoryRecordStore()
        store.put("npm:a", {"feature_vector": [1.0]})

        value = store.get("npm:a")
        value["feature_vector"].append(2.0)

        assert store.get("npm:a") == {"feature_vector": [1.0]}

    def test_input_value_is_copied(self):
        store = InMemoryRecordStore()
        value = {"verified": False}
        store.put("npm:a", value)
        value["verified"] = True

        assert store.get("npm:a")["verified"] is False

    def test_iterate_tolerates_writes(self):
        store = InMemoryRecordStore()
        store.put_many([("npm:a", {}), ("npm:b", {})])

        for key, _ in store.iterate("npm:"):
            store.put(key + "-copy", {})

        assert store.count("npm:") == 4


class TestSqliteRecordStore:
    """SQLite-specific behavior."""

    def test_persists_across_instances(self, test_db):
        SqliteRecordStore(test_db).put("crate:serde", {"version": "1.0.0"})
        assert SqliteRecordStore(test_db).get("crate:serde") == {"version": "1.0.0"}

    def test_namespace_column(self, test_db):
        store = SqliteRecordStore(test_db)
        store.put("crate:serde", {})

        with get_db(test_db) as conn:
            row = conn.execute("SELECT namespace FROM records WHERE key = ?", ("crate:serde",)).fetchone()
        assert row[0] == "crate"

    def test_put_many_is_atomic(self, test_db):
        """A failing batch leaves no partial writes behind."""
        store = SqliteRecordStore(test_db)

        class Unserializable:
            pass

        with pytest.raises(TypeError):
            store.put_many([("npm:ok", {}), ("npm:bad", {"x": Unserializable()})])

        assert store.get("npm:ok") is None

    def test_read_failure_is_store_unavailable(self, test_db):
        store = SqliteRecordStore(test_db)

        with patch("soul_registry.store.sqlite_store.get_db", side_effect=sqlite3.OperationalError("database is locked")):
            with pytest.raises(StoreUnavailable) as exc_info:
                store.get("npm:lodash")

        assert exc_info.value.retryable is True

    def test_write_failure_is_store_unavailable(self, test_db):
        store = SqliteRecordStore(test_db)

        with patch("soul_registry.store.sqlite_store.get_db", side_effect=sqlite3.OperationalError("disk I/O error")):
            with pytest.raises(StoreUnavailable):
                store.put_many([("npm:a", {}), ("crate:a", {})])

            with pytest.raises(StoreUnavailable):
                list(store.iterate("npm:"))

            with pytest.raises(StoreUnavailable):
                store.delete("npm:a")

    def test_failed_operation_is_logged(self, test_db):
        store = SqliteRecordStore(test_db)

        with patch("soul_registry.store.sqlite_store.get_db", side_effect=sqlite3.OperationalError("locked")), \
                patch("soul_registry.store.sqlite_store.logger") as mock_logger:
            with pytest.raises(StoreUnavailable):
                store.get("npm:lodash")

        mock_logger.log_store_operation.assert_called_once()
        assert mock_logger.log_store_operation.call_args[1]["status"] == "failed"

    def test_db_health_check(self, test_db):
        assert health_check(test_db) is False
        init_db(test_db)
        assert health_check(test_db) is True
