# UPS Fleet Monitor
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License

"""Simulated UPS fleet for running without real hardware.

Battery charge drifts slowly, load wobbles around a per-device base and
temperature follows load. Values are rounded so a quiet device often
reports the same triple twice in a row, like real hardware does.
"""

import asyncio
import logging
import math
import random
import time

from .ups_config import UPSConfig
from .ups_model import STATUS_ONLINE, UPSReading, offline_reading

logger = logging.getLogger(__name__)


class MockSNMPClient:
    """Drop-in replacement for SNMPClient that makes up plausible readings."""

    def __init__(self, seed: int | None = None, offline: set[str] | None = None):
        self._rng = random.Random(seed)
        self._start_time = time.time()
        self._base_load: dict[str, float] = {}
        self._offline: set[str] = set(offline or ())
        self._total_queries = 0

    def set_offline(self, device_id: str, offline: bool = True):
        """Force a device to report offline (or bring it back)."""
        if offline:
            self._offline.add(device_id)
        else:
            self._offline.discard(device_id)

    async def query(self, device: UPSConfig) -> UPSReading:
        self._total_queries += 1
        ts = int(time.time() * 1000)
        if device.device_id in self._offline:
            return offline_reading(device.device_id, device.display_name,
                                   device.host, ts)

        base = self._base_load.setdefault(
            device.device_id, self._rng.uniform(15.0, 65.0),
        )
        elapsed_h = (time.time() - self._start_time) / 3600.0
        load = base + 3.0 * math.sin(elapsed_h * 2 * math.pi / 6) + self._rng.choice((-1, 0, 0, 1))
        battery = 100.0 - (elapsed_h % 24) * 0.2
        temperature = 22.0 + load / 10.0

        return UPSReading(
            device_id=device.device_id,
            name=device.display_name,
            host=device.host,
            timestamp_ms=ts,
            status=STATUS_ONLINE,
            battery=float(round(battery)),
            load=float(round(max(0.0, min(100.0, load)))),
            temperature=float(round(temperature)),
            input_voltage=float(round(self._rng.uniform(228.0, 232.0))),
        )

    async def query_many(self, devices: list[UPSConfig]) -> list[UPSReading]:
        return list(await asyncio.gather(*(self.query(d) for d in devices)))

    def get_health(self) -> dict:
        return {
            "mock": True,
            "total_queries": self._total_queries,
            "forced_offline": sorted(self._offline),
        }

    def close(self):
        pass


def demo_devices(subnet_base: str = "10.40.40", count: int = 3) -> list[UPSConfig]:
    """A small in-memory fleet for mock runs with an empty inventory."""
    return [
        UPSConfig(device_id=f"ups-{i}", host=f"{subnet_base}.{i}",
                  name=f"Mock UPS {i - 1}")
        for i in range(2, 2 + count)
    ]
