# UPS Fleet Monitor
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License

"""REST API server for the UPS fleet: live status, history, discovery, names."""

import collections
import csv
import io
import json
import logging
import time
from typing import Any, Awaitable, Callable

from aiohttp import web

from .alerts import derive_alerts
from .history import HistoryStore
from .snmp_client import now_ms
from .transport import UPSQueryClient
from .ups_config import UPSConfig, UPSInventory
from .ups_model import DAY_MS

logger = logging.getLogger(__name__)

DiscoveryCallback = Callable[[str | None], Awaitable[list[UPSConfig]]]
StatusCallback = Callable[[], dict[str, Any]]

# Accepted history windows in days; anything else falls back to the first
HISTORY_RANGES = (1, 2, 7)
HISTORY_CSV_FIELDS = ["id", "name", "timestamp", "battery", "load", "temperature"]


# ---------------------------------------------------------------------------
# RingBufferHandler -- in-memory log capture for the log endpoint
# ---------------------------------------------------------------------------

class RingBufferHandler(logging.Handler):
    """Logging handler that stores records in a bounded deque for web access."""

    def __init__(self, capacity: int = 1000):
        super().__init__()
        self._records: collections.deque = collections.deque(maxlen=capacity)

    def emit(self, record):
        try:
            self._records.append({
                "ts": record.created,
                "level": record.levelname,
                "logger": record.name,
                "message": self.format(record),
            })
        except Exception:
            self.handleError(record)

    def get_records(self, level: str | None = None, limit: int = 200,
                    search: str | None = None) -> list[dict]:
        """Return filtered log records, newest first."""
        level_num = getattr(logging, level.upper(), 0) if level else 0
        results = []
        for rec in reversed(self._records):
            if level_num and getattr(logging, rec["level"], 0) < level_num:
                continue
            if search and search.lower() not in rec["message"].lower():
                continue
            results.append(rec)
            if len(results) >= limit:
                break
        return results


@web.middleware
async def cors_middleware(request, handler):
    if request.method == "OPTIONS":
        resp = web.Response(status=204)
    else:
        resp = await handler(request)
    resp.headers["Access-Control-Allow-Origin"] = "*"
    resp.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
    resp.headers["Access-Control-Allow-Headers"] = "Content-Type"
    return resp


def parse_range_days(raw: str | None) -> int:
    """History window in days from the ``range`` query value."""
    try:
        days = int(raw) if raw is not None else HISTORY_RANGES[0]
    except ValueError:
        return HISTORY_RANGES[0]
    return days if days in HISTORY_RANGES else HISTORY_RANGES[0]


class WebServer:
    def __init__(self, port: int = 3001, inventory: UPSInventory | None = None,
                 client: UPSQueryClient | None = None,
                 history: HistoryStore | None = None):
        self._port = port
        self._inventory = inventory
        self._client = client
        self._history = history

        self._discovery_callback: DiscoveryCallback | None = None
        self._status_callback: StatusCallback | None = None
        self._log_buffer: RingBufferHandler | None = None

        self._version: str = "0.0.0"
        self._start_time: float = time.time()

        self._app = web.Application(middlewares=[cors_middleware])
        self._runner: web.AppRunner | None = None
        self._setup_routes()

    def set_discovery_callback(self, callback: DiscoveryCallback):
        self._discovery_callback = callback

    def set_status_callback(self, callback: StatusCallback):
        self._status_callback = callback

    def set_log_buffer(self, handler: RingBufferHandler):
        self._log_buffer = handler

    def set_version(self, version: str):
        self._version = version

    def set_start_time(self, start_time: float):
        self._start_time = start_time

    def _setup_routes(self):
        self._app.router.add_get("/api/ups", self._handle_list_ups)
        self._app.router.add_get("/api/ups/history", self._handle_history)
        self._app.router.add_get("/api/ups/history.csv", self._handle_history_csv)
        self._app.router.add_post("/api/ups/{id}/update", self._handle_update_ups)
        self._app.router.add_post("/api/discover", self._handle_discover)
        self._app.router.add_get("/api/alerts", self._handle_alerts)
        self._app.router.add_get("/api/health", self._handle_health)
        self._app.router.add_get("/api/system/logs", self._handle_system_logs)

    def _json(self, data, status=200):
        return web.Response(
            text=json.dumps(data),
            content_type="application/json",
            status=status,
        )

    def _csv_response(self, rows: list[dict], filename: str, fields: list[str]):
        output = io.StringIO()
        writer = csv.DictWriter(output, fieldnames=fields, extrasaction="ignore")
        writer.writeheader()
        for row in rows:
            writer.writerow(row)
        return web.Response(
            text=output.getvalue(),
            content_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    async def _live_readings(self):
        return await self._client.query_many(self._inventory.devices())

    # --- Live status ---

    async def _handle_list_ups(self, request):
        """GET /api/ups -- query every configured UPS right now."""
        if self._inventory is None or self._client is None or len(self._inventory) == 0:
            return self._json({"error": "No UPS configuration loaded"}, 500)
        try:
            readings = await self._live_readings()
        except Exception as e:
            logger.exception("Live UPS query failed")
            return self._json({"error": f"Failed to fetch UPS data: {e}"}, 500)
        return self._json([r.to_dict() for r in readings])

    async def _handle_alerts(self, request):
        """GET /api/alerts -- threshold alerts from a live query."""
        if self._inventory is None or self._client is None or len(self._inventory) == 0:
            return self._json([])
        try:
            readings = await self._live_readings()
        except Exception as e:
            logger.exception("Live UPS query for alerts failed")
            return self._json({"error": f"Failed to fetch UPS data: {e}"}, 500)
        return self._json([a.to_dict() for a in derive_alerts(readings)])

    # --- History ---

    def _history_rows(self, request) -> list[dict]:
        days = parse_range_days(request.query.get("range"))
        start = now_ms() - days * DAY_MS
        return [s.to_dict() for s in self._history.query_range(start)]

    async def _handle_history(self, request):
        """GET /api/ups/history?range=1|2|7"""
        if not self._history:
            return self._json({"error": "history not available"}, 503)
        try:
            rows = self._history_rows(request)
        except Exception as e:
            logger.exception("History query failed")
            return self._json({"error": f"Failed to fetch history: {e}"}, 500)
        return self._json(rows)

    async def _handle_history_csv(self, request):
        if not self._history:
            return self._json({"error": "history not available"}, 503)
        try:
            rows = self._history_rows(request)
        except Exception as e:
            logger.exception("History query failed")
            return self._json({"error": f"Failed to fetch history: {e}"}, 500)
        return self._csv_response(rows, "ups_history.csv", HISTORY_CSV_FIELDS)

    # --- Inventory management ---

    async def _handle_update_ups(self, request):
        """POST /api/ups/{id}/update -- rename a UPS."""
        device_id = request.match_info["id"]
        try:
            body = await request.json()
        except Exception:
            return self._json({"error": "invalid JSON body"}, 400)

        name = body.get("name") if isinstance(body, dict) else None
        if not isinstance(name, str) or not name.strip():
            return self._json({"error": "Name is required"}, 400)

        if self._inventory is None:
            return self._json({"error": "UPS not found"}, 404)
        try:
            updated = await self._inventory.rename(device_id, name.strip())
        except Exception as e:
            logger.exception("Failed to persist UPS config")
            return self._json({"error": f"Config save failed: {e}"}, 500)
        if updated is None:
            return self._json({"error": "UPS not found"}, 404)
        return self._json({"success": True, "ups": updated.to_dict()})

    async def _handle_discover(self, request):
        """POST /api/discover -- run one discovery sweep now."""
        if not self._discovery_callback:
            return self._json({"error": "discovery not available"}, 503)

        community = request.query.get("community") or None
        try:
            added = await self._discovery_callback(community)
        except Exception as e:
            logger.exception("UPS discovery failed")
            return self._json({"error": f"Discovery failed: {e}"}, 500)
        return self._json({
            "success": True,
            "discovered": len(added),
            "ups": [d.to_dict() for d in added],
        })

    # --- System ---

    async def _handle_health(self, request):
        """Health check endpoint for Docker HEALTHCHECK and monitoring."""
        issues = []
        device_count = len(self._inventory) if self._inventory is not None else 0
        if device_count == 0:
            issues.append("No UPS configured")

        if self._history:
            history_health = self._history.get_health()
            if not history_health.get("healthy"):
                issues.append("History database unhealthy")
        else:
            history_health = {"status": "unavailable"}
            issues.append("History not available")

        result = {
            "status": "healthy" if not issues else "degraded",
            "issues": issues,
            "version": self._version,
            "ups_count": device_count,
            "uptime_seconds": round(time.time() - self._start_time, 1),
            "history": history_health,
        }
        if self._status_callback:
            try:
                result.update(self._status_callback())
            except Exception:
                logger.exception("Failed to get monitor status")

        return self._json(result, 200 if not issues else 503)

    async def _handle_system_logs(self, request):
        """GET /api/system/logs -- retrieve log records from ring buffer."""
        if not self._log_buffer:
            return self._json({"error": "log buffer not available"}, 503)

        level = request.query.get("level")
        try:
            limit = min(int(request.query.get("limit", "200")), 1000)
        except ValueError:
            return self._json({"error": "limit must be an integer"}, 400)
        search = request.query.get("search")

        records = self._log_buffer.get_records(level=level, limit=limit, search=search)
        return self._json({"logs": records, "count": len(records)})

    async def start(self):
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, "0.0.0.0", self._port)
        await site.start()
        logger.info("API server started on http://0.0.0.0:%d", self._port)

    async def stop(self):
        if self._runner:
            await self._runner.cleanup()
