# UPS Fleet Monitor
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License

"""Query client protocol shared by the SNMP client and the mock client.

The poller, the daily digest and the web API only depend on this
interface, so any client that can turn a device into a reading works.
"""

from typing import Protocol, runtime_checkable

from .ups_config import UPSConfig
from .ups_model import UPSReading


@runtime_checkable
class UPSQueryClient(Protocol):
    """Protocol for device query clients.

    Implementations: SNMPClient, MockSNMPClient.
    """

    async def query(self, device: UPSConfig) -> UPSReading:
        """Query one device. Never raises; failures come back offline."""
        ...

    async def query_many(self, devices: list[UPSConfig]) -> list[UPSReading]:
        """Query devices concurrently, results in input order."""
        ...

    def get_health(self) -> dict:
        """Return query health metrics."""
        ...

    def close(self) -> None:
        """Release resources."""
        ...
