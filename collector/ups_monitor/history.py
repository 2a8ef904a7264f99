"""SQLite history storage: deduplicated UPS samples with 7-day retention."""

import logging
import sqlite3
import threading
import time
from pathlib import Path

from .ups_model import HistorySample

logger = logging.getLogger(__name__)


class HistoryStore:
    def __init__(self, db_path: str):
        self._db_path = db_path
        self._lock = threading.Lock()
        self._last_write: float | None = None
        self._write_errors = 0

        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._create_tables()

    def _create_tables(self):
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS ups_history (
                id TEXT,
                name TEXT,
                timestamp INTEGER,
                battery REAL,
                load REAL,
                temperature REAL
            );
            CREATE INDEX IF NOT EXISTS idx_ups_history_ts
                ON ups_history(timestamp);
            CREATE INDEX IF NOT EXISTS idx_ups_history_id_ts
                ON ups_history(id, timestamp);
        """)
        self._conn.commit()

    @staticmethod
    def _row(sample: HistorySample) -> tuple:
        return (sample.device_id, sample.name, int(sample.timestamp_ms),
                sample.battery, sample.load, sample.temperature)

    @staticmethod
    def _sample(row: sqlite3.Row) -> HistorySample:
        return HistorySample(
            device_id=row["id"],
            name=row["name"],
            timestamp_ms=row["timestamp"],
            battery=row["battery"],
            load=row["load"],
            temperature=row["temperature"],
        )

    def append(self, sample: HistorySample):
        """Persist one sample."""
        with self._lock:
            self._conn.execute(
                "INSERT INTO ups_history (id, name, timestamp, battery, load, temperature) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                self._row(sample),
            )
            self._conn.commit()
            self._last_write = time.time()

    def record_batch(self, samples: list[HistorySample], cutoff_ms: int) -> int:
        """Insert samples and prune everything older than cutoff, atomically.

        Returns the number of pruned rows. On error nothing is applied.
        """
        with self._lock:
            try:
                with self._conn:
                    self._conn.executemany(
                        "INSERT INTO ups_history (id, name, timestamp, battery, load, temperature) "
                        "VALUES (?, ?, ?, ?, ?, ?)",
                        [self._row(s) for s in samples],
                    )
                    cur = self._conn.execute(
                        "DELETE FROM ups_history WHERE timestamp < ?", (int(cutoff_ms),),
                    )
            except sqlite3.Error:
                self._write_errors += 1
                raise
            self._last_write = time.time()
            return cur.rowcount

    def latest_sample(self, device_id: str) -> HistorySample | None:
        """Most recent stored sample for one device."""
        with self._lock:
            row = self._conn.execute(
                "SELECT id, name, timestamp, battery, load, temperature "
                "FROM ups_history WHERE id = ? "
                "ORDER BY timestamp DESC, rowid DESC LIMIT 1",
                (device_id,),
            ).fetchone()
        return self._sample(row) if row else None

    def query_range(self, start_ms: int, end_ms: int | None = None) -> list[HistorySample]:
        """Samples with start_ms <= timestamp (<= end_ms), oldest first."""
        sql = ("SELECT id, name, timestamp, battery, load, temperature "
               "FROM ups_history WHERE timestamp >= ?")
        params: list = [int(start_ms)]
        if end_ms is not None:
            sql += " AND timestamp <= ?"
            params.append(int(end_ms))
        sql += " ORDER BY timestamp ASC, rowid ASC"
        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        return [self._sample(r) for r in rows]

    def prune(self, cutoff_ms: int) -> int:
        """Delete rows with timestamp strictly older than cutoff."""
        with self._lock:
            with self._conn:
                cur = self._conn.execute(
                    "DELETE FROM ups_history WHERE timestamp < ?", (int(cutoff_ms),),
                )
        if cur.rowcount:
            logger.info("History prune: removed %d sample(s)", cur.rowcount)
        return cur.rowcount

    def count(self) -> int:
        with self._lock:
            row = self._conn.execute("SELECT COUNT(*) AS c FROM ups_history").fetchone()
        return row["c"]

    def get_health(self) -> dict:
        try:
            rows = self.count()
            healthy = True
        except sqlite3.Error:
            logger.exception("History health check failed")
            rows = None
            healthy = False
        return {
            "healthy": healthy,
            "db_path": self._db_path,
            "total_rows": rows,
            "last_write": self._last_write,
            "write_errors": self._write_errors,
        }

    def close(self):
        with self._lock:
            self._conn.close()
