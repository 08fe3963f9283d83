"""In-memory stand-ins for the BLE host stack."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

from fognode.core.errors import (
    CharacteristicDiscoveryError,
    ConnectionSetupError,
    TransportConnectError,
)
from fognode.core.model import GattCharacteristic, GattService
from fognode.devices import smartvase

NOTIFY = frozenset({"read", "notify"})
WRITE = frozenset({"write"})


class FakePeripheral:
    def __init__(
        self,
        peripheral_id: str,
        name: str = "",
        services: dict[GattService, list[GattCharacteristic]] | None = None,
        *,
        fail_mtu: bool = False,
        fail_services: bool = False,
        failing_services: frozenset[str] = frozenset(),
        failing_subscriptions: frozenset[str] = frozenset(),
    ) -> None:
        self._id = peripheral_id
        self._name = name
        self.services = services or {}
        self.fail_mtu = fail_mtu
        self.fail_services = fail_services
        self.failing_services = failing_services
        self.failing_subscriptions = failing_subscriptions
        self.handlers: dict[str, Callable[[bytes], None]] = {}
        self.writes: list[tuple[str, bytes]] = []
        self.write_gate = asyncio.Event()
        self.write_gate.set()
        self.requested_services: list[str] | None = None
        self.disconnect_calls = 0
        self.on_disconnect: Callable[[], None] | None = None

    @property
    def id(self) -> str:
        return self._id

    @property
    def name(self) -> str:
        return self._name

    async def negotiate_mtu(self, mtu: int) -> int:
        if self.fail_mtu:
            raise ConnectionSetupError(f"Failed to set MTU for {self._id}")
        return mtu

    async def discover_services(self, uuids=None) -> list[GattService]:
        if self.fail_services:
            raise ConnectionSetupError(f"Failed to discover services for {self._id}")
        self.requested_services = None if uuids is None else list(uuids)
        return [s for s in self.services if uuids is None or s.uuid in set(uuids)]

    async def discover_characteristics(self, service: GattService, uuids=None) -> list[GattCharacteristic]:
        if service.uuid in self.failing_services:
            raise CharacteristicDiscoveryError(f"Service {service.uuid} failed")
        return [c for c in self.services[service] if uuids is None or c.uuid in set(uuids)]

    async def write(self, characteristic: GattCharacteristic, data: bytes, *, response: bool = True) -> None:
        await self.write_gate.wait()
        self.writes.append((characteristic.uuid, data))

    async def subscribe(self, characteristic: GattCharacteristic, handler: Callable[[bytes], None]) -> None:
        if characteristic.uuid in self.failing_subscriptions:
            raise CharacteristicDiscoveryError(f"Failed to subscribe characteristic {characteristic.uuid}")
        self.handlers[characteristic.uuid] = handler

    def notify(self, uuid: str, data: bytes) -> None:
        self.handlers[uuid](data)

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        if self.on_disconnect is not None:
            callback, self.on_disconnect = self.on_disconnect, None
            callback()

    def drop_link(self) -> None:
        """Simulate the peripheral going away on its own."""
        if self.on_disconnect is not None:
            callback, self.on_disconnect = self.on_disconnect, None
            callback()


def smartvase_peripheral(peripheral_id: str = "P1", name: str = "BBC micro:bit [zatig]", **kwargs) -> FakePeripheral:
    services: dict[GattService, list[GattCharacteristic]] = {}
    for service, characteristic in zip(smartvase.SERVICES, smartvase.CHARACTERISTICS):
        properties = WRITE if characteristic.name == "watering" else NOTIFY
        services[service] = [
            GattCharacteristic(
                uuid=characteristic.uuid,
                service_uuid=service.uuid,
                name=characteristic.name,
                properties=properties,
            )
        ]
    return FakePeripheral(peripheral_id, name, services, **kwargs)


class FakeScanner:
    def __init__(self, callback, *, fail_starts: int = 0) -> None:
        self.callback = callback
        self.fail_starts = fail_starts
        self.starts = 0
        self.stops = 0

    async def start(self) -> None:
        if self.fail_starts:
            self.fail_starts -= 1
            raise OSError("adapter powered off")
        self.starts += 1

    async def stop(self) -> None:
        self.stops += 1


class FakeConnector:
    def __init__(self, peripherals: dict[str, FakePeripheral] | None = None) -> None:
        self.peripherals = peripherals or {}
        self.calls: list[str] = []
        self.gate = asyncio.Event()
        self.gate.set()

    async def __call__(self, target, *, name: str = "", on_disconnect) -> FakePeripheral:
        self.calls.append(target)
        await self.gate.wait()
        peripheral = self.peripherals.get(target)
        if peripheral is None:
            raise TransportConnectError(f"BLE connect failed for {target}")
        peripheral.on_disconnect = on_disconnect
        return peripheral


class ScannerFactory:
    def __init__(self, **kwargs) -> None:
        self.kwargs = kwargs
        self.scanner: FakeScanner | None = None

    def __call__(self, callback) -> FakeScanner:
        self.scanner = FakeScanner(callback, **self.kwargs)
        return self.scanner


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)
