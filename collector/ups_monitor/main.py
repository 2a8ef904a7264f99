# UPS Fleet Monitor
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License

"""Entry point -- UPS fleet SNMP poller with change-recorded history.

Architecture
------------
MonitorManager  -- builds the shared services (inventory, SNMP client,
                   history, notifier, web) and runs the timer tasks.
UPSPoller       -- every interval queries the whole fleet concurrently and
                   hands the batch to the recorder and the notifier.
"""

__version__ = "1.0.0"

import asyncio
import logging
import signal
import sys
import time

from .config import Config, ConfigError
from .discovery import discover
from .history import HistoryStore
from .mock_ups import MockSNMPClient, demo_devices
from .notifier import DailySummary, TransitionNotifier
from .notify_transport import build_transport
from .recorder import ChangeRecorder
from .snmp_client import SNMPClient
from .transport import UPSQueryClient
from .ups_config import UPSInventory
from .ups_model import UPSReading
from .web import RingBufferHandler, WebServer

logger = logging.getLogger("ups_monitor")


class UPSPoller:
    """Fixed-interval poll loop over the whole inventory."""

    def __init__(self, client: UPSQueryClient, inventory: UPSInventory,
                 recorder: ChangeRecorder | None, notifier: TransitionNotifier,
                 interval: float = 300, start_delay: float = 10):
        self._client = client
        self._inventory = inventory
        self._recorder = recorder
        self._notifier = notifier
        self._interval = interval
        self._start_delay = start_delay
        self._running = False

        self._latest: list[UPSReading] = []
        self._poll_count = 0
        self._poll_errors = 0
        self._last_poll_duration: float | None = None
        self._last_successful_poll: float | None = None
        self._subsystem_errors = {"history": 0, "notifier": 0}

    @property
    def latest(self) -> list[UPSReading]:
        """Readings from the most recent completed cycle."""
        return list(self._latest)

    async def run_cycle(self) -> list[UPSReading]:
        """Query every device once and pass the batch downstream."""
        devices = self._inventory.devices()
        if not devices:
            logger.debug("No UPS devices configured, nothing to poll")
            return []

        readings = await self._client.query_many(devices)
        self._latest = readings

        # Subsystem isolation: a history failure must not hide transitions
        self._safe_record(readings)
        self._safe_notify(readings)

        online = sum(1 for r in readings if r.online)
        logger.info("Successfully polled %d UPS(es) (%d online)", len(readings), online)
        return readings

    async def run(self):
        self._running = True
        logger.info("Poller starting in %.0fs (interval %.0fs)",
                    self._start_delay, self._interval)
        await asyncio.sleep(self._start_delay)

        while self._running:
            poll_start = time.monotonic()
            try:
                await self.run_cycle()
                self._poll_count += 1
                self._last_successful_poll = time.time()
            except Exception:
                self._poll_errors += 1
                if self._poll_errors <= 5 or self._poll_errors % 30 == 0:
                    logger.exception("Error in poll loop (error %d)", self._poll_errors)
            self._last_poll_duration = time.monotonic() - poll_start

            # Next tick on the interval boundary, not interval after the cycle
            await asyncio.sleep(max(0.0, self._interval - self._last_poll_duration))

    # -- Subsystem isolation ----------------------------------------------

    def _safe_record(self, readings: list[UPSReading]):
        if self._recorder is None:
            return
        try:
            self._recorder.record(readings)
        except Exception:
            self._subsystem_errors["history"] += 1
            if self._subsystem_errors["history"] <= 3:
                logger.exception("History record error")

    def _safe_notify(self, readings: list[UPSReading]):
        try:
            self._notifier.observe(readings)
        except Exception:
            self._subsystem_errors["notifier"] += 1
            if self._subsystem_errors["notifier"] <= 3:
                logger.exception("Notifier error")

    def get_status_detail(self) -> dict:
        now = time.time()
        detail = {
            "interval": self._interval,
            "poll_count": self._poll_count,
            "poll_errors": self._poll_errors,
            "last_poll_duration_ms": (
                round(self._last_poll_duration * 1000, 1)
                if self._last_poll_duration is not None else None
            ),
            "last_successful_poll": self._last_successful_poll,
            "seconds_since_last_poll": (
                round(now - self._last_successful_poll, 1)
                if self._last_successful_poll else None
            ),
            "devices": len(self._latest),
            "online": sum(1 for r in self._latest if r.online),
        }
        if any(v > 0 for v in self._subsystem_errors.values()):
            detail["subsystem_errors"] = dict(self._subsystem_errors)
        return detail

    def stop(self):
        self._running = False


# ---------------------------------------------------------------------------
# MonitorManager -- shared services + timer tasks
# ---------------------------------------------------------------------------

class MonitorManager:
    """Top-level orchestrator.

    Owns the inventory, query client, history store and notifier, and
    runs the poll, discovery and daily-summary loops plus the web server
    as independent asyncio tasks.
    """

    def __init__(self, config: Config | None = None):
        self.config = config or Config()
        self._running = False
        self._start_time = time.time()
        self._tasks: list[asyncio.Task] = []

        self.inventory = UPSInventory(self.config.ups_config_file)
        if self.config.mock_mode and len(self.inventory) == 0:
            logger.info("Mock mode with empty inventory, using in-memory demo fleet")
            self.inventory = UPSInventory(
                self.config.ups_config_file,
                devices=demo_devices(self.config.discovery_subnet),
                persist=False,
            )

        try:
            self.history = HistoryStore(self.config.history_db)
        except Exception:
            logger.exception(
                "Could not open history database %s, running WITHOUT history",
                self.config.history_db,
            )
            self.history = None

        if self.config.mock_mode:
            self.client: UPSQueryClient = MockSNMPClient()
        else:
            self.client = SNMPClient(self.config)

        self.recorder = ChangeRecorder(self.history) if self.history else None
        self.transport = build_transport(self.config)
        self.notifier = TransitionNotifier(self.transport)
        self.poller = UPSPoller(
            self.client, self.inventory, self.recorder, self.notifier,
            interval=self.config.poll_interval,
            start_delay=self.config.poll_start_delay,
        )

        self.summary: DailySummary | None = None
        if self.config.summary_enabled:
            self.summary = DailySummary(
                self.client, self.inventory, self.transport,
                self.config.summary_hour, self.config.summary_minute,
            )

        self.web = WebServer(
            self.config.web_port,
            self.inventory,
            self.client,
            history=self.history,
        )
        self.web.set_discovery_callback(self._handle_discovery)
        self.web.set_status_callback(self._get_status)
        self.web.set_version(__version__)
        self.web.set_start_time(self._start_time)

        logger.info("MonitorManager: %d UPS(es) in inventory", len(self.inventory))

    # ------------------------------------------------------------------
    # Web callback handlers
    # ------------------------------------------------------------------

    async def _handle_discovery(self, community: str | None = None):
        return await discover(
            self.inventory,
            community=community or self.config.community,
            subnet_base=self.config.discovery_subnet,
            start=self.config.discovery_start,
            end=self.config.discovery_end,
            port=self.config.snmp_port,
            timeout=self.config.discovery_timeout,
        )

    def _get_status(self) -> dict:
        status = {
            "poller": self.poller.get_status_detail(),
            "snmp": self.client.get_health(),
            "notifications": self.transport.get_status(),
            "transitions": self.notifier.get_status(),
        }
        if self.recorder is not None:
            status["recorder"] = self.recorder.get_stats()
        if self.summary is not None:
            status["daily_summary"] = self.summary.get_status()
        return status

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    async def _discovery_scheduler(self):
        """Periodic sweep for new UPSes. Never fatal."""
        await asyncio.sleep(self.config.discovery_start_delay)
        while self._running:
            try:
                await self._handle_discovery()
            except Exception:
                logger.exception("Error in discovery scheduler")
            await asyncio.sleep(self.config.discovery_interval)

    def _spawn(self, coro, name: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.append(task)
        return task

    async def run(self):
        """Start the web server and all timer tasks."""
        self._running = True

        await self.web.start()

        self._spawn(self.poller.run(), "poller")

        if self.config.auto_discovery and not self.config.mock_mode:
            self._spawn(self._discovery_scheduler(), "discovery")
        else:
            logger.info("Automatic discovery disabled")

        if self.summary is not None:
            self._spawn(self.summary.run(), "daily-summary")

        await asyncio.gather(*self._tasks, return_exceptions=True)

    async def _async_stop(self):
        await self.web.stop()
        await self.transport.close()

    def stop(self):
        if not self._running:
            return
        self._running = False

        self.poller.stop()
        if self.summary is not None:
            self.summary.stop()

        for task in self._tasks:
            if not task.done():
                task.cancel()
        self._tasks.clear()

        try:
            loop = asyncio.get_event_loop()
            if loop.is_running():
                loop.create_task(self._async_stop())
            else:
                loop.run_until_complete(self._async_stop())
        except Exception:
            logger.debug("Error during async shutdown", exc_info=True)

        self.client.close()
        if self.history is not None:
            self.history.close()


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main():
    try:
        config = Config()
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    # Ring buffer for the log viewer endpoint
    log_buffer = RingBufferHandler(1000)
    log_buffer.setFormatter(logging.Formatter("%(asctime)s %(name)s %(levelname)s %(message)s"))
    logging.getLogger().addHandler(log_buffer)

    manager = MonitorManager(config)
    manager.web.set_log_buffer(log_buffer)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def _shutdown(sig, frame):
        logger.info("Received signal %s, shutting down...", sig)
        manager.stop()
        loop.stop()

    signal.signal(signal.SIGTERM, _shutdown)
    signal.signal(signal.SIGINT, _shutdown)

    try:
        loop.run_until_complete(manager.run())
    except (KeyboardInterrupt, RuntimeError):
        pass
    finally:
        manager.stop()
        loop.close()
        logger.info("Monitor stopped.")


if __name__ == "__main__":
    main()
