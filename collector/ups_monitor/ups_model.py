"""OID constants and data models for UPS-MIB (RFC 1628) devices."""

from dataclasses import dataclass

# UPS-MIB base
UPS_MIB = "1.3.6.1.2.1.33.1"

OID_BATTERY_CHARGE = f"{UPS_MIB}.2.4.0"       # upsEstimatedChargeRemaining, %
OID_BATTERY_TEMP = f"{UPS_MIB}.2.7.0"         # upsBatteryTemperature, degC
OID_INPUT_VOLTAGE = f"{UPS_MIB}.3.3.1.3.1"    # upsInputVoltage, line 1, V
OID_OUTPUT_LOAD = f"{UPS_MIB}.4.4.1.5.1"      # upsOutputPercentLoad, line 1, %

# MIB-II system group
OID_SYS_NAME = "1.3.6.1.2.1.1.5.0"

# Polled on every cycle, one batched GET per device
TELEMETRY_OIDS = {
    "battery": OID_BATTERY_CHARGE,
    "input_voltage": OID_INPUT_VOLTAGE,
    "load": OID_OUTPUT_LOAD,
    "temperature": OID_BATTERY_TEMP,
}

STATUS_ONLINE = "online"
STATUS_OFFLINE = "offline"

RETENTION_DAYS = 7
DAY_MS = 24 * 60 * 60 * 1000


@dataclass
class UPSReading:
    """One live query result for a device."""
    device_id: str
    name: str = ""
    host: str = ""
    timestamp_ms: int = 0
    status: str = STATUS_OFFLINE
    battery: float | None = None        # percent
    load: float | None = None           # percent
    temperature: float | None = None    # degC
    input_voltage: float | None = None  # volts

    @property
    def online(self) -> bool:
        return self.status == STATUS_ONLINE

    def metrics(self) -> tuple:
        return (self.battery, self.load, self.temperature)

    def to_dict(self) -> dict:
        return {
            "id": self.device_id,
            "name": self.name,
            "ip": self.host,
            "status": self.status,
            "battery": self.battery,
            "load": self.load,
            "temperature": self.temperature,
            "input_voltage": self.input_voltage,
            "lastUpdate": self.timestamp_ms,
        }


@dataclass
class HistorySample:
    """Persisted, deduplicated subset of a reading."""
    device_id: str
    name: str
    timestamp_ms: int
    battery: float | None = None
    load: float | None = None
    temperature: float | None = None

    def metrics(self) -> tuple:
        return (self.battery, self.load, self.temperature)

    def to_dict(self) -> dict:
        return {
            "id": self.device_id,
            "name": self.name,
            "timestamp": self.timestamp_ms,
            "battery": self.battery,
            "load": self.load,
            "temperature": self.temperature,
        }


def offline_reading(device_id: str, name: str = "", host: str = "",
                    timestamp_ms: int = 0) -> UPSReading:
    return UPSReading(
        device_id=device_id,
        name=name,
        host=host,
        timestamp_ms=timestamp_ms,
        status=STATUS_OFFLINE,
    )


def same_metrics(a: tuple, b: tuple) -> bool:
    """Field-wise equality where None only equals None.

    Numbers compare by value (50 == 50.0) but never equal None.
    """
    if len(a) != len(b):
        return False
    for x, y in zip(a, b):
        if x is None or y is None:
            if x is not y:
                return False
        elif x != y:
            return False
    return True
