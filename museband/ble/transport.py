"""Transport capability used by the session, and its bleak implementation."""

from __future__ import annotations

import logging
import subprocess
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from bleak import BleakClient, BleakScanner
from bleak.exc import BleakError

from ..errors import TransportUnavailable

NotifyCallback = Callable[[bytes], None]
DisconnectCallback = Callable[[], None]

logger = logging.getLogger(__name__)


class Transport(ABC):
    """What a headband session needs from a BLE stack.

    ``device`` and ``link`` are opaque handles owned by the transport.
    """

    @abstractmethod
    async def discover(self, service: str) -> Any:
        """Find a device advertising ``service``."""

    @abstractmethod
    async def open_link(self, device: Any, on_disconnect: DisconnectCallback) -> Any:
        """Connect to ``device``.

        ``on_disconnect`` must be called when the link drops without
        :meth:`close_link` having been requested.
        """

    @abstractmethod
    async def list_endpoints(self, link: Any) -> list[str]:
        ...

    @abstractmethod
    async def subscribe(self, link: Any, endpoint: str, on_notify: NotifyCallback) -> None:
        ...

    @abstractmethod
    async def write(self, link: Any, endpoint: str, data: bytes) -> None:
        ...

    @abstractmethod
    async def close_link(self, link: Any) -> None:
        ...


class BleakTransport(Transport):
    """Transport over bleak.

    Usage::

        transport = BleakTransport(device_name="Muse-31A9")
        conn = MuseConnection(transport)
    """

    def __init__(
        self,
        device_name: str | None = None,
        *,
        scan_timeout: float = 10.0,
        connect_timeout: float = 30.0,
    ):
        self.device_name = device_name
        self.scan_timeout = scan_timeout
        self.connect_timeout = connect_timeout

    async def discover(self, service: str) -> Any:
        if self.device_name:
            logger.info("Scanning for %s...", self.device_name)
            device = await BleakScanner.find_device_by_name(
                self.device_name, timeout=self.scan_timeout
            )
        else:
            logger.info("Scanning for service %s...", service)
            device = await BleakScanner.find_device_by_filter(
                lambda _d, adv: service.lower() in
                [u.lower() for u in adv.service_uuids],
                timeout=self.scan_timeout,
            )
        if not device:
            target = self.device_name or "Muse headband"
            raise TransportUnavailable(f"{target} not found. Is it in pairing mode?")
        logger.info("Found: %s (%s)", device.name, device.address)
        return device

    def _trust(self, address: str) -> None:
        """Trust the device via bluetoothctl to avoid BlueZ auth issues."""
        try:
            subprocess.run(
                ["bluetoothctl", "trust", address],
                capture_output=True,
                timeout=5,
            )
        except (subprocess.TimeoutExpired, FileNotFoundError):
            logger.debug("bluetoothctl trust skipped for %s", address)

    async def open_link(self, device: Any, on_disconnect: DisconnectCallback) -> BleakClient:
        self._trust(device.address)
        client = BleakClient(
            device,
            disconnected_callback=lambda _client: on_disconnect(),
            timeout=self.connect_timeout,
        )
        await client.connect()
        return client

    async def list_endpoints(self, link: BleakClient) -> list[str]:
        return [
            char.uuid
            for service in link.services
            for char in service.characteristics
        ]

    async def subscribe(self, link: BleakClient, endpoint: str, on_notify: NotifyCallback) -> None:
        if link.services.get_characteristic(endpoint) is None:
            raise BleakError(f"characteristic {endpoint} not found")
        await link.start_notify(endpoint, lambda _sender, data: on_notify(bytes(data)))

    async def write(self, link: BleakClient, endpoint: str, data: bytes) -> None:
        await link.write_gatt_char(endpoint, data)

    async def close_link(self, link: BleakClient) -> None:
        await link.disconnect()
