# UPS Fleet Monitor
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License

"""Device inventory: a JSON list of UPS records, with serialized writes."""

import asyncio
import json
import logging
from dataclasses import dataclass, replace
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_UPS_FILE = "/data/ups-config.json"
DEFAULT_COMMUNITY = "public"


@dataclass
class UPSConfig:
    """Configuration for a single UPS device."""
    device_id: str                      # stable key, e.g., "ups-12"
    host: str                           # IP address or hostname
    name: str = ""                      # human-friendly, renamable
    community: str = DEFAULT_COMMUNITY  # SNMP read community

    @property
    def display_name(self) -> str:
        return self.name or self.device_id

    def to_dict(self) -> dict:
        d = {
            "id": self.device_id,
            "name": self.name,
            "ip": self.host,
        }
        if self.community != DEFAULT_COMMUNITY:
            d["community"] = self.community
        return d

    @classmethod
    def from_dict(cls, d: dict) -> "UPSConfig":
        return cls(
            device_id=str(d["id"]),
            host=str(d["ip"]),
            name=str(d.get("name", "")),
            community=d.get("community") or DEFAULT_COMMUNITY,
        )

    def validate(self):
        if not self.device_id.strip():
            raise ValueError("UPS entry has an empty id")
        if not self.host.strip():
            raise ValueError(f"UPS {self.device_id!r} has no ip configured")


def next_device_id(host_octet: int, existing: set[str] | None = None) -> str:
    """Return ``ups-<octet>``, suffixed if that id is already taken."""
    existing = existing or set()
    base = f"ups-{host_octet}"
    if base not in existing:
        return base
    n = 2
    while f"{base}-{n}" in existing:
        n += 1
    return f"{base}-{n}"


def load_ups_configs(ups_file: str = DEFAULT_UPS_FILE) -> list[UPSConfig]:
    """Load the inventory file. Missing or corrupt files yield an empty list."""
    path = Path(ups_file)
    if not path.exists():
        logger.warning("Inventory file %s not found, starting with no devices", path)
        return []

    try:
        data = json.loads(path.read_text())
    except Exception:
        logger.exception("Failed to load %s, starting with no devices", path)
        return []

    if not isinstance(data, list):
        logger.error("Inventory file %s must hold a JSON list, starting with no devices", path)
        return []

    devices = []
    seen: set[str] = set()
    for entry in data:
        try:
            ups = UPSConfig.from_dict(entry)
            ups.validate()
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Skipping invalid inventory entry %r: %s", entry, e)
            continue
        if ups.device_id in seen:
            logger.warning("Skipping duplicate inventory id %s", ups.device_id)
            continue
        seen.add(ups.device_id)
        devices.append(ups)

    logger.info("Loaded %d UPS device(s) from %s", len(devices), path)
    return devices


def save_ups_configs(devices: list[UPSConfig], ups_file: str = DEFAULT_UPS_FILE):
    """Save the inventory to JSON atomically."""
    path = Path(ups_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    data = json.dumps([d.to_dict() for d in devices], indent=2) + "\n"
    tmp = path.with_suffix(".tmp")
    try:
        tmp.write_text(data)
        tmp.replace(path)
        logger.info("Saved %d UPS device(s) to %s", len(devices), path)
    except Exception:
        logger.exception("Failed to save UPS inventory")
        try:
            tmp.unlink(missing_ok=True)
        except OSError:
            pass
        raise


class UPSInventory:
    """In-memory device list backed by the inventory file.

    Readers get snapshot copies. Mutations hold an asyncio lock, write the
    file, then reload it, so nobody observes a half-applied change. With
    persist=False the list lives in memory only and the file is never written.
    """

    def __init__(self, ups_file: str = DEFAULT_UPS_FILE,
                 devices: list[UPSConfig] | None = None, persist: bool = True):
        self._path = ups_file
        self._persist = persist
        self._lock = asyncio.Lock()
        if devices is None:
            devices = load_ups_configs(ups_file)
        self._devices: list[UPSConfig] = list(devices)

    def __len__(self) -> int:
        return len(self._devices)

    def devices(self) -> list[UPSConfig]:
        return [replace(d) for d in self._devices]

    def get(self, device_id: str) -> UPSConfig | None:
        for d in self._devices:
            if d.device_id == device_id:
                return replace(d)
        return None

    def hosts(self) -> set[str]:
        return {d.host for d in self._devices}

    def ids(self) -> set[str]:
        return {d.device_id for d in self._devices}

    async def rename(self, device_id: str, name: str) -> UPSConfig | None:
        """Set a device's display name. Returns None if the id is unknown."""
        async with self._lock:
            updated = [replace(d) for d in self._devices]
            target = next((d for d in updated if d.device_id == device_id), None)
            if target is None:
                return None
            target.name = name
            self._commit(updated)
            logger.info("Renamed %s to %r", device_id, name)
            return self.get(device_id)

    async def add_devices(self, new_devices: list[UPSConfig]) -> list[UPSConfig]:
        """Append devices in one write. Hosts or ids already present are skipped."""
        if not new_devices:
            return []
        async with self._lock:
            hosts = self.hosts()
            ids = self.ids()
            added = []
            for d in new_devices:
                if d.host in hosts or d.device_id in ids:
                    continue
                hosts.add(d.host)
                ids.add(d.device_id)
                added.append(replace(d))
            if added:
                self._commit([replace(d) for d in self._devices] + added)
            return added

    def _commit(self, devices: list[UPSConfig]):
        if not self._persist:
            self._devices = devices
            return
        save_ups_configs(devices, self._path)
        reloaded = load_ups_configs(self._path)
        self._devices = reloaded if reloaded else devices
