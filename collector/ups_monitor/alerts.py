# UPS Fleet Monitor
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License

"""Threshold alerts derived from a batch of live readings."""

from dataclasses import dataclass

from .ups_model import UPSReading

SEVERITY_ORDER = {"critical": 0, "warning": 1, "info": 2}

# (field, critical, warning, compare, critical message, warning message)
# "le" alerts at or below the limit, "ge" at or above
THRESHOLDS = [
    ("battery", 20, 40, "le",
     "Battery level critical. Immediate attention required.",
     "Battery level below threshold."),
    ("load", 95, 80, "ge",
     "Load exceeded maximum capacity.",
     "Load approaching maximum capacity."),
    ("temperature", 45, 40, "ge",
     "Temperature threshold exceeded. Cooling system failure.",
     "High temperature detected."),
]


@dataclass
class Alert:
    alert_id: str
    device_id: str
    device: str
    severity: str
    message: str
    timestamp_ms: int

    def to_dict(self) -> dict:
        return {
            "id": self.alert_id,
            "device_id": self.device_id,
            "device": self.device,
            "severity": self.severity,
            "message": self.message,
            "timestamp": self.timestamp_ms,
        }


def _hit(value: float, limit: float, compare: str) -> bool:
    return value <= limit if compare == "le" else value >= limit


def derive_alerts(readings: list[UPSReading]) -> list[Alert]:
    """Turn readings into alerts, most severe first, newest first within a level."""
    raw: list[tuple[UPSReading, str, str]] = []
    for r in readings:
        if not r.online or r.battery is None:
            raw.append((r, "critical", "UPS offline. Network connection lost."))
        for field, crit, warn, compare, crit_msg, warn_msg in THRESHOLDS:
            value = getattr(r, field)
            if value is None:
                continue
            if _hit(value, crit, compare):
                raw.append((r, "critical", crit_msg))
            elif _hit(value, warn, compare):
                raw.append((r, "warning", warn_msg))

    if not raw and readings:
        raw.append((readings[0], "info",
                    "All monitored UPS devices are within normal operating parameters."))

    alerts = [
        Alert(
            alert_id=f"ALERT-{i:03d}",
            device_id=r.device_id,
            device=r.name or r.device_id or r.host,
            severity=severity,
            message=message,
            timestamp_ms=r.timestamp_ms,
        )
        for i, (r, severity, message) in enumerate(raw, start=1)
    ]
    alerts.sort(key=lambda a: (SEVERITY_ORDER[a.severity], -a.timestamp_ms))
    return alerts
