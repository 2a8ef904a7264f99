# UPS Fleet Monitor
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License

"""Change-detection recorder: persist a sample only when telemetry moves.

A healthy UPS reports the same battery/load/temperature for hours, so
storing every poll would mostly store duplicates. Each online reading is
compared to the newest stored sample for its device and written only when
the (battery, load, temperature) triple differs. Offline readings are
never stored; an outage shows up as a gap.
"""

import logging
import time

from .history import HistoryStore
from .ups_model import (
    DAY_MS,
    RETENTION_DAYS,
    HistorySample,
    UPSReading,
    same_metrics,
)

logger = logging.getLogger(__name__)


class ChangeRecorder:
    def __init__(self, store: HistoryStore, retention_days: int = RETENTION_DAYS):
        self._store = store
        self._retention_ms = retention_days * DAY_MS
        self._samples_written = 0
        self._batches = 0

    def record(self, readings: list[UPSReading],
               now_ms: int | None = None) -> list[HistorySample]:
        """Record one poll batch. Returns the samples that were written.

        All samples share one timestamp taken per batch. Inserts and the
        retention prune run in a single transaction.
        A sample is never stamped earlier than the stored one it follows, so
        a wall clock stepping backwards keeps per-device time non-decreasing.
        """
        if now_ms is None:
            now_ms = int(time.time() * 1000)

        pending: dict[str, HistorySample] = {}
        to_write: list[HistorySample] = []
        for reading in readings:
            if not reading.online:
                continue
            previous = pending.get(reading.device_id)
            if previous is None:
                previous = self._store.latest_sample(reading.device_id)
            if previous is not None and same_metrics(previous.metrics(), reading.metrics()):
                continue
            timestamp_ms = now_ms
            if previous is not None and previous.timestamp_ms > now_ms:
                timestamp_ms = previous.timestamp_ms
            sample = HistorySample(
                device_id=reading.device_id,
                name=reading.name,
                timestamp_ms=timestamp_ms,
                battery=reading.battery,
                load=reading.load,
                temperature=reading.temperature,
            )
            pending[reading.device_id] = sample
            to_write.append(sample)

        pruned = self._store.record_batch(to_write, now_ms - self._retention_ms)
        self._batches += 1
        self._samples_written += len(to_write)
        logger.debug(
            "Recorded %d new sample(s) from %d reading(s), pruned %d",
            len(to_write), len(readings), pruned,
        )
        return to_write

    def get_stats(self) -> dict:
        return {
            "batches": self._batches,
            "samples_written": self._samples_written,
            "retention_days": self._retention_ms // DAY_MS,
        }
