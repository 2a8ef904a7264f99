# UPS Fleet Monitor
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 MIT License

"""SNMP GET wrapper for UPS-MIB devices with health tracking.

One batched GET per device per poll. Transport failures turn into an
offline reading; identifiers the agent cannot resolve turn into None for
that field only.
"""

import asyncio
import logging
import time
from typing import Any

from pysnmp.hlapi.v3arch.asyncio import (
    CommunityData,
    ContextData,
    ObjectIdentity,
    ObjectType,
    SnmpEngine,
    UdpTransportTarget,
    get_cmd,
)

from .config import Config
from .ups_config import UPSConfig
from .ups_model import (
    STATUS_ONLINE,
    TELEMETRY_OIDS,
    UPSReading,
    offline_reading,
)

logger = logging.getLogger(__name__)


def to_number(value: Any) -> float | None:
    """Convert an SNMP value to float, or None if it did not resolve."""
    if value is None:
        return None
    text = str(value)
    if "noSuch" in text or "No Such" in text or "No more variables" in text:
        return None
    try:
        return float(value)
    except (ValueError, TypeError):
        pass
    try:
        return float(text)
    except ValueError:
        return None


def now_ms() -> int:
    return int(time.time() * 1000)


class SNMPClient:
    """Queries UPS telemetry over SNMP v2c. One engine shared by all devices."""

    def __init__(self, config: Config | None = None, port: int = 161,
                 timeout: float = 5.0, retries: int = 1):
        if config is not None:
            port = config.snmp_port
            timeout = config.snmp_timeout
            retries = config.snmp_retries
        self._port = port
        self._timeout = timeout
        self._retries = retries
        self.engine = SnmpEngine()

        # Health tracking
        self._total_queries = 0
        self._failed_queries = 0
        self._device_failures: dict[str, int] = {}
        self._last_success_time: float | None = None
        self._last_error_time: float | None = None
        self._last_error_msg: str | None = None
        self._last_batch_duration: float | None = None

    def get_health(self) -> dict:
        """Return SNMP query health metrics."""
        return {
            "port": self._port,
            "timeout": self._timeout,
            "retries": self._retries,
            "total_queries": self._total_queries,
            "failed_queries": self._failed_queries,
            "consecutive_failures": dict(self._device_failures),
            "last_success": self._last_success_time,
            "last_error": self._last_error_time,
            "last_error_msg": self._last_error_msg,
            "last_batch_duration_ms": (
                round(self._last_batch_duration * 1000, 1)
                if self._last_batch_duration is not None else None
            ),
        }

    async def get_values(self, host: str, community: str,
                         oids: list[str]) -> list[Any] | None:
        """Batched SNMP GET. Returns values in OID order, or None on failure."""
        target = await UdpTransportTarget.create(
            (host, self._port), timeout=self._timeout, retries=self._retries,
        )
        error_indication, error_status, error_index, var_binds = await get_cmd(
            self.engine,
            CommunityData(community),
            target,
            ContextData(),
            *[ObjectType(ObjectIdentity(oid)) for oid in oids],
        )
        if error_indication:
            raise ConnectionError(str(error_indication))
        if error_status:
            raise ConnectionError(
                f"{error_status.prettyPrint()} at "
                f"{var_binds[int(error_index) - 1][0] if error_index else '?'}"
            )
        return [value for _oid, value in var_binds]

    async def query(self, device: UPSConfig) -> UPSReading:
        """Query one UPS. Never raises."""
        self._total_queries += 1
        ts = now_ms()
        keys = list(TELEMETRY_OIDS)
        try:
            values = await self.get_values(
                device.host, device.community, [TELEMETRY_OIDS[k] for k in keys],
            )
        except Exception as e:
            self._record_failure(device, str(e) or type(e).__name__)
            return offline_reading(device.device_id, device.display_name,
                                   device.host, ts)

        resolved = {k: to_number(v) for k, v in zip(keys, values)}
        self._record_success(device)
        return UPSReading(
            device_id=device.device_id,
            name=device.display_name,
            host=device.host,
            timestamp_ms=ts,
            status=STATUS_ONLINE,
            battery=resolved.get("battery"),
            load=resolved.get("load"),
            temperature=resolved.get("temperature"),
            input_voltage=resolved.get("input_voltage"),
        )

    async def query_many(self, devices: list[UPSConfig]) -> list[UPSReading]:
        """Query every device concurrently. Results follow input order."""
        start = time.monotonic()
        results = await asyncio.gather(
            *(self.query(d) for d in devices),
            return_exceptions=True,
        )
        readings = []
        for device, result in zip(devices, results):
            if isinstance(result, BaseException):
                logger.error("SNMP query %s raised: %s", device.device_id, result)
                result = offline_reading(device.device_id, device.display_name,
                                         device.host, now_ms())
            readings.append(result)
        self._last_batch_duration = time.monotonic() - start
        return readings

    def _record_success(self, device: UPSConfig):
        if self._device_failures.get(device.device_id, 0) > 0:
            logger.info("SNMP: %s (%s) is responding again",
                        device.device_id, device.host)
        self._device_failures[device.device_id] = 0
        self._last_success_time = time.time()

    def _record_failure(self, device: UPSConfig, msg: str):
        self._failed_queries += 1
        failures = self._device_failures.get(device.device_id, 0) + 1
        self._device_failures[device.device_id] = failures
        self._last_error_time = time.time()
        self._last_error_msg = f"{device.device_id} ({device.host}): {msg}"
        # Log at different levels based on consecutive failures
        if failures == 1:
            logger.warning("SNMP: %s", self._last_error_msg)
        elif failures <= 5:
            logger.error("SNMP: %s (failure %d)", self._last_error_msg, failures)
        elif failures % 30 == 0:
            logger.error(
                "SNMP: %s unreachable for %d consecutive polls: %s",
                device.device_id, failures, msg,
            )

    def close(self):
        try:
            self.engine.close_dispatcher()
        except Exception:
            logger.debug("Error closing SNMP engine", exc_info=True)
