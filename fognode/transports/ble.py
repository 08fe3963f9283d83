"""BLE transport: scanning, connection lifecycle and reading fan-out."""

from __future__ import annotations

import asyncio
import enum
import logging
import threading
from collections.abc import Awaitable, Callable, Coroutine, Sequence
from functools import partial
from typing import Any, Protocol

from bleak import BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.exc import BleakError

from fognode.core.callbacks import CallbackRegistry, Deliver
from fognode.core.connections import Connection, ConnectionRegistry, ConnectionState
from fognode.core.errors import ConnectionSetupError, TransportConnectError, TransportError
from fognode.core.model import Advertisement, Reading
from fognode.devices.base import Device
from fognode.devices.registry import DeviceRecognizer, recognize
from fognode.transports.peripheral import (
    PeripheralHandle,
    advertisement_from_bleak,
    connect_peripheral,
)

LOGGER = logging.getLogger(__name__)

SCANNER_PERIOD_S = 10.0

DetectionCallback = Callable[[BLEDevice, AdvertisementData], None]
Connector = Callable[..., Awaitable[PeripheralHandle]]


class Scanner(Protocol):
    async def start(self) -> None: ...

    async def stop(self) -> None: ...


ScannerFactory = Callable[[DetectionCallback], Scanner]


class TransportState(enum.Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    STOPPED = "stopped"


def _bleak_scanner_factory(adapter: str | None) -> ScannerFactory:
    def factory(callback: DetectionCallback) -> Scanner:
        kwargs: dict[str, Any] = {}
        if adapter:
            kwargs["adapter"] = adapter
        return BleakScanner(detection_callback=callback, **kwargs)

    return factory


class BLETransport:
    """Discovers peripherals, keeps one connection per peripheral, fans readings out.

    The scan loop re-issues a scan every ``scan_period_s`` until the shutdown
    event fires. Each connection runs its device's ``on_connected`` in its own
    task, so a slow device never blocks discovery or other devices.
    """

    def __init__(
        self,
        recognizers: Sequence[DeviceRecognizer],
        *,
        scan_period_s: float = SCANNER_PERIOD_S,
        scanner_factory: ScannerFactory | None = None,
        connector: Connector | None = None,
        adapter: str | None = None,
    ) -> None:
        self.recognizers = list(recognizers)
        self.scan_period_s = scan_period_s
        self.connections = ConnectionRegistry()
        self.callbacks = CallbackRegistry()
        self.state = TransportState.IDLE
        self._scanner_factory = scanner_factory or _bleak_scanner_factory(adapter)
        self._connector = connector or partial(connect_peripheral, adapter=adapter)
        self._pending: set[str] = set()
        self._pending_lock = threading.Lock()
        self._tasks: set[asyncio.Task[Any]] = set()

    def __str__(self) -> str:
        return "<BLETransport>"

    async def start(self, shutdown: asyncio.Event) -> None:
        LOGGER.info("BLE init called")
        try:
            scanner = self._scanner_factory(self._on_detection)
        except (BleakError, OSError) as exc:
            self.state = TransportState.STOPPED
            raise TransportError(f"BLE scanner unavailable: {exc}") from exc
        try:
            while not shutdown.is_set():
                await self._rescan(scanner)
                if await self._wait_for_shutdown(shutdown):
                    break
        finally:
            await self._shutdown(scanner)

    async def _wait_for_shutdown(self, shutdown: asyncio.Event) -> bool:
        try:
            await asyncio.wait_for(shutdown.wait(), timeout=self.scan_period_s)
        except asyncio.TimeoutError:
            # Shutdown wins when it fires together with the tick.
            return shutdown.is_set()
        return True

    async def _rescan(self, scanner: Scanner) -> None:
        if self.state is TransportState.SCANNING:
            await self._stop_scanner(scanner)

        LOGGER.info("Scanning...")
        try:
            await scanner.start()
        except (BleakError, OSError) as exc:
            LOGGER.warning("BLE host not ready, retrying in %.0fs: %s", self.scan_period_s, exc)
            self.state = TransportState.IDLE
            return
        self.state = TransportState.SCANNING

    async def _stop_scanner(self, scanner: Scanner) -> None:
        try:
            await scanner.stop()
        except (BleakError, OSError) as exc:
            LOGGER.warning("Failed to stop scanning: %s", exc)

    async def _shutdown(self, scanner: Scanner) -> None:
        was_scanning = self.state is TransportState.SCANNING
        self.state = TransportState.STOPPED

        self.connections.close_all()

        LOGGER.info("Stop scanning...")
        if was_scanning:
            await self._stop_scanner(scanner)

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _on_detection(self, device: BLEDevice, data: AdvertisementData) -> None:
        self.handle_discovery(advertisement_from_bleak(device, data), target=device)

    def handle_discovery(self, advertisement: Advertisement, target: Any = None) -> bool:
        """Start connecting to a recognized peripheral. Returns True if an attempt started."""
        if self.state is not TransportState.SCANNING:
            return False

        peripheral_id = advertisement.address
        if peripheral_id in self.connections:
            LOGGER.debug("Peripheral %s (%s) already connected", peripheral_id, advertisement.name)
            return False

        device = recognize(advertisement, self.recognizers, self.on_reading_produced)
        if device is None:
            LOGGER.debug("Skipping ID:%s, NAME:(%s)", peripheral_id, advertisement.name)
            return False

        with self._pending_lock:
            if peripheral_id in self._pending:
                return False
            self._pending.add(peripheral_id)

        LOGGER.info("Setting %s device for p: %s (%s)", device.variant, peripheral_id, device.name)
        self._spawn(self._connect(device, target if target is not None else peripheral_id))
        return True

    async def _connect(self, device: Device, target: Any) -> None:
        peripheral_id = device.identity()
        connection = Connection(device)
        try:
            handle = await self._connector(
                target,
                name=device.name,
                on_disconnect=lambda: self._on_host_disconnected(connection),
            )
        except TransportConnectError as exc:
            LOGGER.warning("%s", exc)
            self._release_pending(peripheral_id)
            return

        connection.handle = handle
        added = self.state is not TransportState.STOPPED and self.connections.add(connection)
        self._release_pending(peripheral_id)
        if not added:
            await handle.disconnect()
            return

        LOGGER.info("BLE device connected: %s (%s)", peripheral_id, device.name)
        connection.state = ConnectionState.CONNECTED
        try:
            await device.on_connected(handle, connection.teardown)
        except ConnectionSetupError as exc:
            LOGGER.error("%s", exc)
        finally:
            if connection.state is not ConnectionState.CLOSED:
                connection.state = ConnectionState.DISCONNECTING
                await handle.disconnect()
                await self._finalize(connection)

    def _release_pending(self, peripheral_id: str) -> None:
        with self._pending_lock:
            self._pending.discard(peripheral_id)

    def _on_host_disconnected(self, connection: Connection) -> None:
        self._spawn(self._finalize(connection))

    async def _finalize(self, connection: Connection) -> None:
        if connection.state is ConnectionState.CLOSED:
            return
        connection.state = ConnectionState.CLOSED
        peripheral_id = connection.peripheral_id
        LOGGER.info("BLE device disconnected: %s (%s)", peripheral_id, connection.device.name)

        if connection.handle is not None:
            await connection.device.on_disconnected(connection.handle)
        connection.close()
        if self.connections.get(peripheral_id) is connection:
            self.connections.remove(peripheral_id)

    def on_reading_produced(self, peripheral_id: str, reading: Reading) -> None:
        self._spawn(self.callbacks.dispatch(peripheral_id, reading))

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error("BLE transport task failed: %s", exc, exc_info=exc)

    def get_devices(self) -> list[Device]:
        return self.connections.devices()

    def get_device_by_id(self, peripheral_id: str) -> Device | None:
        return self.connections.get_device(peripheral_id)

    def add_callback(self, subscriber_key: str, deliver: Deliver) -> str:
        return self.callbacks.add(subscriber_key, deliver)

    def remove_callback(self, callback_id: str) -> None:
        self.callbacks.remove(callback_id)

    def get_callback_id(self, subscriber_key: str) -> str | None:
        return self.callbacks.id_for(subscriber_key)
