"""Unit tests for SQLite history storage."""

import os
import sqlite3
import sys
import tempfile

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "collector"))

from ups_monitor.history import HistoryStore
from ups_monitor.ups_model import DAY_MS, HistorySample


def make_sample(device_id="ups-2", ts=1_000, battery=100.0, load=20.0,
                temperature=25.0, name="Rack A"):
    return HistorySample(
        device_id=device_id, name=name, timestamp_ms=ts,
        battery=battery, load=load, temperature=temperature,
    )


class TestHistoryStore:
    def _make_store(self):
        tmp = tempfile.mktemp(suffix=".db")
        store = HistoryStore(tmp)
        return store, tmp

    def test_create_tables(self):
        store, path = self._make_store()
        tables = store._conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table'"
        ).fetchall()
        assert "ups_history" in [t["name"] for t in tables]
        indexes = store._conn.execute(
            "SELECT name FROM sqlite_master WHERE type='index'"
        ).fetchall()
        index_names = [i["name"] for i in indexes]
        assert "idx_ups_history_ts" in index_names
        assert "idx_ups_history_id_ts" in index_names
        store.close()
        os.unlink(path)

    def test_wal_mode(self):
        store, path = self._make_store()
        mode = store._conn.execute("PRAGMA journal_mode").fetchone()[0]
        assert mode == "wal"
        store.close()
        os.unlink(path)

    def test_append_and_query(self):
        store, path = self._make_store()
        store.append(make_sample(ts=1_000))
        store.append(make_sample(ts=2_000, battery=99.0))
        rows = store.query_range(0)
        assert [r.timestamp_ms for r in rows] == [1_000, 2_000]
        assert rows[1].battery == 99.0
        assert rows[0].name == "Rack A"
        store.close()
        os.unlink(path)

    def test_null_metrics_round_trip(self):
        store, path = self._make_store()
        store.append(make_sample(temperature=None))
        row = store.query_range(0)[0]
        assert row.temperature is None
        assert row.battery == 100.0
        store.close()
        os.unlink(path)

    def test_query_range_ascending_regardless_of_insert_order(self):
        store, path = self._make_store()
        store.append(make_sample(ts=3_000))
        store.append(make_sample(ts=1_000))
        store.append(make_sample(ts=2_000))
        assert [r.timestamp_ms for r in store.query_range(0)] == [1_000, 2_000, 3_000]
        store.close()
        os.unlink(path)

    def test_query_range_bounds_inclusive(self):
        store, path = self._make_store()
        for ts in (1_000, 2_000, 3_000, 4_000):
            store.append(make_sample(ts=ts))
        rows = store.query_range(2_000, 3_000)
        assert [r.timestamp_ms for r in rows] == [2_000, 3_000]
        store.close()
        os.unlink(path)

    def test_query_range_idempotent(self):
        store, path = self._make_store()
        store.append(make_sample(ts=1_000, device_id="ups-2"))
        store.append(make_sample(ts=1_000, device_id="ups-3"))
        first = [r.to_dict() for r in store.query_range(0)]
        second = [r.to_dict() for r in store.query_range(0)]
        assert first == second
        # Same-timestamp rows come back in insertion order
        assert [r["id"] for r in first] == ["ups-2", "ups-3"]
        store.close()
        os.unlink(path)

    def test_latest_sample(self):
        store, path = self._make_store()
        assert store.latest_sample("ups-2") is None
        store.append(make_sample(ts=1_000, battery=90.0))
        store.append(make_sample(ts=5_000, battery=80.0))
        store.append(make_sample(ts=3_000, battery=85.0))
        store.append(make_sample(device_id="ups-3", ts=9_000, battery=10.0))
        latest = store.latest_sample("ups-2")
        assert latest.timestamp_ms == 5_000
        assert latest.battery == 80.0
        store.close()
        os.unlink(path)

    def test_prune_is_strict(self):
        store, path = self._make_store()
        store.append(make_sample(ts=999))
        store.append(make_sample(ts=1_000))
        store.append(make_sample(ts=1_001))
        removed = store.prune(1_000)
        assert removed == 1
        assert [r.timestamp_ms for r in store.query_range(0)] == [1_000, 1_001]
        store.close()
        os.unlink(path)

    def test_prune_precise_at_retention_boundary(self):
        store, path = self._make_store()
        now = 100 * DAY_MS
        cutoff = now - 7 * DAY_MS
        store.append(make_sample(ts=cutoff - 1))
        store.append(make_sample(ts=cutoff))
        store.append(make_sample(ts=now))
        store.prune(cutoff)
        remaining = [r.timestamp_ms for r in store.query_range(0)]
        assert remaining == [cutoff, now]
        store.close()
        os.unlink(path)

    def test_record_batch_inserts_and_prunes(self):
        store, path = self._make_store()
        store.append(make_sample(ts=100))
        pruned = store.record_batch(
            [make_sample(ts=5_000), make_sample(device_id="ups-3", ts=5_000)],
            cutoff_ms=1_000,
        )
        assert pruned == 1
        assert store.count() == 2
        store.close()
        os.unlink(path)

    def test_record_batch_empty_still_prunes(self):
        store, path = self._make_store()
        store.append(make_sample(ts=100))
        assert store.record_batch([], cutoff_ms=1_000) == 1
        assert store.count() == 0
        store.close()
        os.unlink(path)

    def test_record_batch_atomic_on_error(self):
        store, path = self._make_store()
        store.append(make_sample(ts=100))
        store._conn.execute("DROP INDEX idx_ups_history_id_ts")
        store._conn.execute(
            "CREATE UNIQUE INDEX idx_unique_ts ON ups_history(id, timestamp)"
        )
        store._conn.commit()

        # Second row collides with the first, so the whole batch must roll back
        with pytest.raises(sqlite3.Error):
            store.record_batch(
                [make_sample(ts=5_000), make_sample(ts=5_000)], cutoff_ms=1_000,
            )
        rows = store.query_range(0)
        assert [r.timestamp_ms for r in rows] == [100]
        assert store.get_health()["write_errors"] == 1
        store.close()
        os.unlink(path)

    def test_range_one_day_scenario(self):
        """Samples at now-36h, now-12h, now-1h: a 1-day window returns the last two."""
        store, path = self._make_store()
        now = 50 * DAY_MS
        hour = 3_600_000
        for ts in (now - 36 * hour, now - 12 * hour, now - hour):
            store.append(make_sample(ts=ts))
        rows = store.query_range(now - DAY_MS)
        assert [r.timestamp_ms for r in rows] == [now - 12 * hour, now - hour]
        store.close()
        os.unlink(path)

    def test_health(self):
        store, path = self._make_store()
        health = store.get_health()
        assert health["healthy"] is True
        assert health["total_rows"] == 0
        assert health["last_write"] is None
        store.append(make_sample())
        health = store.get_health()
        assert health["total_rows"] == 1
        assert health["last_write"] is not None
        store.close()
        os.unlink(path)

    def test_creates_parent_directory(self):
        tmpdir = tempfile.mkdtemp()
        path = os.path.join(tmpdir, "nested", "history.sqlite")
        store = HistoryStore(path)
        assert os.path.exists(path)
        store.close()
