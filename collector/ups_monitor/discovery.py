# UPS Fleet Monitor
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License

"""Network discovery for UPS-MIB devices.

Sweeps a fixed host range of one /24 (default 10.40.40.2-30), skipping
addresses already in the inventory, and probes the rest concurrently.
An address counts as a UPS when its battery-charge OID answers with a
number between 0 and 100. Probe errors are ignored; discovery is best
effort and never fatal.
"""

import argparse
import asyncio
import logging
from dataclasses import dataclass

from pysnmp.hlapi.v3arch.asyncio import (
    CommunityData,
    ContextData,
    ObjectIdentity,
    ObjectType,
    SnmpEngine,
    UdpTransportTarget,
    get_cmd,
)

from .snmp_client import to_number
from .ups_config import UPSConfig, UPSInventory, next_device_id
from .ups_model import OID_BATTERY_CHARGE, OID_SYS_NAME

logger = logging.getLogger(__name__)

DEFAULT_SUBNET = "10.40.40"
DEFAULT_START = 2
DEFAULT_END = 30


@dataclass
class DiscoveredUPS:
    """A UPS that answered a discovery probe."""
    host: str
    host_octet: int
    device_name: str = ""
    battery: float | None = None


def candidate_hosts(subnet_base: str, start: int, end: int) -> list[tuple[str, int]]:
    """(address, host octet) pairs for subnet_base.start .. subnet_base.end."""
    return [(f"{subnet_base}.{i}", i) for i in range(start, end + 1)]


def fallback_name(subnet_base: str, host_octet: int) -> str:
    return f"UPS-{subnet_base.split('.')[-1]}-{host_octet}"


async def _probe_host(engine: SnmpEngine, host: str, host_octet: int,
                      community: str, port: int,
                      timeout: float) -> DiscoveredUPS | None:
    """Probe a single host for a UPS battery-charge reading."""
    try:
        target = await UdpTransportTarget.create(
            (host, port), timeout=timeout, retries=1,
        )
        error_indication, error_status, error_index, var_binds = await get_cmd(
            engine, CommunityData(community), target, ContextData(),
            ObjectType(ObjectIdentity(OID_BATTERY_CHARGE)),
            ObjectType(ObjectIdentity(OID_SYS_NAME)),
        )
        if error_indication or error_status or not var_binds:
            return None

        battery = to_number(var_binds[0][1])
        # Sanity bound only; anything that answers with a percentage passes
        if battery is None or not (0 <= battery <= 100):
            return None

        name = ""
        if len(var_binds) > 1:
            raw_name = str(var_binds[1][1]).strip()
            if raw_name and "noSuch" not in raw_name and "No Such" not in raw_name:
                name = raw_name

        return DiscoveredUPS(
            host=host,
            host_octet=host_octet,
            device_name=name,
            battery=battery,
        )
    except Exception:
        logger.debug("Probe %s failed", host, exc_info=True)
        return None


async def scan_range(subnet_base: str = DEFAULT_SUBNET,
                     start: int = DEFAULT_START, end: int = DEFAULT_END,
                     community: str = "public", port: int = 161,
                     timeout: float = 2.0, concurrency: int = 32,
                     configured_hosts: set[str] | None = None,
                     ) -> list[DiscoveredUPS]:
    """Probe every candidate host that is not already configured.

    Args:
        subnet_base: first three octets, e.g., "10.40.40"
        start, end: inclusive host octet range
        community: SNMP community string
        port: SNMP port
        timeout: per-probe timeout in seconds
        concurrency: max concurrent probes
        configured_hosts: addresses to skip without probing
    """
    configured_hosts = configured_hosts or set()
    candidates = [(h, o) for h, o in candidate_hosts(subnet_base, start, end)
                  if h not in configured_hosts]
    if not candidates:
        return []

    engine = SnmpEngine()
    semaphore = asyncio.Semaphore(concurrency)

    async def _probe_with_limit(host: str, octet: int):
        async with semaphore:
            return await _probe_host(engine, host, octet, community, port, timeout)

    try:
        results = await asyncio.gather(
            *(_probe_with_limit(h, o) for h, o in candidates),
            return_exceptions=True,
        )
    finally:
        try:
            engine.close_dispatcher()
        except Exception:
            logger.debug("Error closing discovery SNMP engine", exc_info=True)

    found = [r for r in results if isinstance(r, DiscoveredUPS)]
    found.sort(key=lambda d: d.host_octet)
    return found


async def discover(inventory: UPSInventory, community: str = "public",
                   subnet_base: str = DEFAULT_SUBNET,
                   start: int = DEFAULT_START, end: int = DEFAULT_END,
                   port: int = 161, timeout: float = 2.0,
                   concurrency: int = 32) -> list[UPSConfig]:
    """Run one sweep and append new devices to the inventory in one write.

    Returns the devices that were added.
    """
    logger.info("Starting UPS discovery on %s.%d-%d...", subnet_base, start, end)
    found = await scan_range(
        subnet_base, start, end,
        community=community, port=port, timeout=timeout,
        concurrency=concurrency, configured_hosts=inventory.hosts(),
    )

    taken = inventory.ids()
    new_devices = []
    for ups in found:
        device_id = next_device_id(ups.host_octet, taken)
        taken.add(device_id)
        name = ups.device_name or fallback_name(subnet_base, ups.host_octet)
        new_devices.append(UPSConfig(
            device_id=device_id, host=ups.host, name=name, community=community,
        ))
        logger.info("Discovered UPS at %s - adding as %r", ups.host, name)

    added = await inventory.add_devices(new_devices)
    if added:
        logger.info("Discovery complete: added %d new UPS(es)", len(added))
    else:
        logger.info("Discovery complete: no new UPSes found")
    return added


def _format_table(found: list[DiscoveredUPS]) -> str:
    """Format discovered UPSes as an ASCII table."""
    if not found:
        return "  No UPS devices found."

    lines = []
    lines.append(f"  {'Host':<18} {'Name':<30} {'Battery':>7}")
    lines.append(f"  {'─' * 18} {'─' * 30} {'─' * 7}")
    for ups in found:
        battery = f"{ups.battery:g}%" if ups.battery is not None else "?"
        lines.append(
            f"  {ups.host:<18} {ups.device_name or '-':<30} {battery:>7}"
        )
    return "\n".join(lines)


async def _main_async(args):
    """Async entry point for CLI usage. Does not touch the inventory."""
    print(f"Scanning {args.subnet}.{args.start}-{args.end} "
          f"(community={args.community}, timeout={args.timeout}s)...")
    found = await scan_range(
        args.subnet, args.start, args.end,
        community=args.community, port=args.port, timeout=args.timeout,
    )
    print()
    if found:
        print(f"Found {len(found)} UPS device(s):\n")
        print(_format_table(found))
    else:
        print("No UPS devices found on the network.")
        print()
        print("Troubleshooting:")
        print("  - Verify the UPS network card is powered and reachable")
        print("  - Check that the SNMP community string is correct (default: public)")
        print("  - Ensure UDP port 161 is not blocked by a firewall")
    print()
    return found


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Discover UPS devices on the network")
    parser.add_argument("--subnet", default=DEFAULT_SUBNET,
                        help="First three octets to scan, e.g., 10.40.40")
    parser.add_argument("--start", type=int, default=DEFAULT_START, help="First host octet")
    parser.add_argument("--end", type=int, default=DEFAULT_END, help="Last host octet")
    parser.add_argument("--community", default="public", help="SNMP community string")
    parser.add_argument("--port", type=int, default=161, help="SNMP port")
    parser.add_argument("--timeout", type=float, default=2.0, help="Per-host timeout")
    args = parser.parse_args()

    asyncio.run(_main_async(args))


if __name__ == "__main__":
    main()
