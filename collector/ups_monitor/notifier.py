# UPS Fleet Monitor
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License

"""Status-transition alerts and the scheduled daily digest.

TransitionNotifier keeps the last reading per device in memory and sends
a message only on an online/offline edge. The map starts empty, so the
first poll after a restart never alerts.

DailySummary wakes once a day at a fixed wall-clock time, queries every
device live and sends one fleet summary.
"""

import asyncio
import logging
from datetime import datetime, time as dt_time, timedelta, timezone
from typing import Callable

from .notify_transport import NotificationTransport, fire_and_forget
from .transport import UPSQueryClient
from .ups_config import UPSInventory
from .ups_model import STATUS_OFFLINE, STATUS_ONLINE, UPSReading

logger = logging.getLogger(__name__)


def offline_message(reading: UPSReading) -> str:
    return f"⚠️ UPS OFFLINE: {reading.name} ({reading.host}) is not responding."


def recovered_message(reading: UPSReading) -> str:
    return f"✅ UPS RECOVERED: {reading.name} ({reading.host}) is back online."


class TransitionNotifier:
    def __init__(self, transport: NotificationTransport):
        self._transport = transport
        self._last_state: dict[str, UPSReading] = {}
        self._sent = 0

    def observe(self, readings: list[UPSReading]) -> list[str]:
        """Compare a batch with the previous one and alert on edges.

        Returns the messages that were dispatched.
        """
        messages = []
        for reading in readings:
            previous = self._last_state.get(reading.device_id)
            if previous is not None:
                if previous.status == STATUS_ONLINE and reading.status == STATUS_OFFLINE:
                    messages.append(offline_message(reading))
                elif previous.status == STATUS_OFFLINE and reading.status == STATUS_ONLINE:
                    messages.append(recovered_message(reading))
            self._last_state[reading.device_id] = reading

        for text in messages:
            logger.warning("Status change: %s", text)
            fire_and_forget(self._transport, text)
        self._sent += len(messages)
        return messages

    def get_status(self) -> dict:
        return {
            "tracked_devices": len(self._last_state),
            "transitions_sent": self._sent,
            "offline": sorted(
                did for did, r in self._last_state.items() if r.status == STATUS_OFFLINE
            ),
        }


# ---------------------------------------------------------------------------
# Daily digest
# ---------------------------------------------------------------------------

def seconds_until(hour: int, minute: int, now: datetime) -> float:
    """Seconds from now to the next hour:minute, tomorrow if already passed.

    A naive ``now`` is local time. Both ends are resolved to UTC before
    subtracting, so a DST change in between shortens or stretches the delay.
    """
    def at(day) -> datetime:
        wall = datetime.combine(day, dt_time(hour, minute))
        if now.tzinfo is not None:
            wall = wall.replace(tzinfo=now.tzinfo)
        return wall.astimezone(timezone.utc)

    now_utc = now.astimezone(timezone.utc)
    target = at(now.date())
    if target <= now_utc:
        target = at(now.date() + timedelta(days=1))
    return (target - now_utc).total_seconds()


def _fmt(value: float | None, unit: str) -> str:
    if value is None:
        return "n/a"
    return f"{value:g}{unit}"


def format_summary(readings: list[UPSReading], now: datetime) -> str:
    online = sum(1 for r in readings if r.online)
    lines = [
        f"📊 UPS Daily Summary ({now:%Y-%m-%d %H:%M})",
        f"Online: {online}/{len(readings)}",
    ]
    for r in readings:
        if not r.online:
            lines.append(f"• {r.name}: OFFLINE")
            continue
        lines.append(
            f"• {r.name}: battery {_fmt(r.battery, '%')}, "
            f"load {_fmt(r.load, '%')}, temp {_fmt(r.temperature, '°C')}"
        )
    return "\n".join(lines)


class DailySummary:
    def __init__(self, client: UPSQueryClient, inventory: UPSInventory,
                 transport: NotificationTransport, hour: int, minute: int,
                 clock: Callable[[], datetime] = datetime.now):
        self._client = client
        self._inventory = inventory
        self._transport = transport
        self._hour = hour
        self._minute = minute
        self._clock = clock
        self._running = False
        self._last_sent: datetime | None = None

    def next_delay(self) -> float:
        return seconds_until(self._hour, self._minute, self._clock())

    async def send_summary(self) -> str | None:
        """Query the whole fleet live and send one summary message."""
        devices = self._inventory.devices()
        if not devices:
            logger.info("Daily summary skipped: no devices configured")
            return None
        readings = await self._client.query_many(devices)
        text = format_summary(readings, self._clock())
        await self._transport.send(text)
        self._last_sent = self._clock()
        logger.info("Daily summary sent (%d/%d online)",
                    sum(1 for r in readings if r.online), len(readings))
        return text

    async def run(self):
        """Sleep until the next hour:minute, send, repeat."""
        self._running = True
        logger.info("Daily summary scheduled for %02d:%02d", self._hour, self._minute)
        while self._running:
            delay = self.next_delay()
            logger.debug("Next daily summary in %.0fs", delay)
            await asyncio.sleep(delay)
            if not self._running:
                break
            # Woke a hair early after the previous send: wait for the next slot
            if self._last_sent and self._clock() - self._last_sent < timedelta(minutes=1):
                await asyncio.sleep(60)
                continue
            try:
                await self.send_summary()
            except Exception:
                logger.exception("Daily summary failed")

    def stop(self):
        self._running = False

    def get_status(self) -> dict:
        return {
            "time": f"{self._hour:02d}:{self._minute:02d}",
            "last_sent": self._last_sent.isoformat() if self._last_sent else None,
            "next_in_seconds": round(self.next_delay()),
        }
