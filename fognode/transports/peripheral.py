"""Peripheral handle interface and its bleak-backed implementation."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Collection
from typing import Any, Protocol

from bleak import BleakClient
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.exc import BleakError
from bleak.uuids import normalize_uuid_str

from fognode.core.errors import (
    CharacteristicDiscoveryError,
    ConnectionSetupError,
    TransportConnectError,
    TransportWriteError,
)
from fognode.core.model import Advertisement, GattCharacteristic, GattService

LOGGER = logging.getLogger(__name__)

NotificationHandler = Callable[[bytes], None]


class PeripheralHandle(Protocol):
    """What a device needs from a connected peripheral."""

    @property
    def id(self) -> str:
        """Stable peripheral identity as reported by the host stack."""

    @property
    def name(self) -> str:
        """Advertised peripheral name, possibly empty."""

    async def negotiate_mtu(self, mtu: int) -> int:
        """Negotiate link MTU and return the effective value."""

    async def discover_services(self, uuids: Collection[str] | None = None) -> list[GattService]:
        """Return services, restricted to ``uuids`` when given."""

    async def discover_characteristics(
        self,
        service: GattService,
        uuids: Collection[str] | None = None,
    ) -> list[GattCharacteristic]:
        """Return characteristics of ``service``, restricted to ``uuids`` when given."""

    async def write(self, characteristic: GattCharacteristic, data: bytes, *, response: bool = True) -> None:
        """Write ``data`` to ``characteristic``."""

    async def subscribe(self, characteristic: GattCharacteristic, handler: NotificationHandler) -> None:
        """Deliver every notification of ``characteristic`` to ``handler``."""

    async def disconnect(self) -> None:
        """Tear down the radio link."""


def normalize_uuids(uuids: Collection[str] | None) -> frozenset[str] | None:
    if uuids is None:
        return None
    return frozenset(normalize_uuid_str(u) for u in uuids)


def advertisement_from_bleak(device: BLEDevice, data: AdvertisementData) -> Advertisement:
    return Advertisement(
        address=device.address,
        name=device.name or "",
        local_name=data.local_name or "",
        service_uuids=tuple(u.lower() for u in (data.service_uuids or [])),
        rssi=data.rssi,
    )


class BleakPeripheral:
    def __init__(self, client: BleakClient, name: str = "") -> None:
        self._client = client
        self._name = name

    @property
    def id(self) -> str:
        return self._client.address

    @property
    def name(self) -> str:
        return self._name

    async def negotiate_mtu(self, mtu: int) -> int:
        # BlueZ only exchanges MTU on demand; other backends negotiate on connect.
        acquire = getattr(getattr(self._client, "_backend", None), "_acquire_mtu", None)
        try:
            if acquire is not None:
                await acquire()
            return min(mtu, self._client.mtu_size)
        except (BleakError, OSError) as exc:
            raise ConnectionSetupError(f"Failed to set MTU for {self.id}: {exc}") from exc

    async def discover_services(self, uuids: Collection[str] | None = None) -> list[GattService]:
        wanted = normalize_uuids(uuids)
        try:
            services = list(self._client.services)
        except BleakError as exc:
            raise ConnectionSetupError(f"Failed to discover services for {self.id}: {exc}") from exc
        return [
            GattService(uuid=s.uuid, name=s.description)
            for s in services
            if wanted is None or s.uuid in wanted
        ]

    async def discover_characteristics(
        self,
        service: GattService,
        uuids: Collection[str] | None = None,
    ) -> list[GattCharacteristic]:
        wanted = normalize_uuids(uuids)
        bleak_service = self._client.services.get_service(service.uuid)
        if bleak_service is None:
            raise CharacteristicDiscoveryError(
                f"Service {service.uuid} disappeared from {self.id}"
            )
        result: list[GattCharacteristic] = []
        for c in bleak_service.characteristics:
            if wanted is not None and c.uuid not in wanted:
                continue
            LOGGER.debug("Characteristic %s has %d descriptors", c.uuid, len(c.descriptors))
            result.append(
                GattCharacteristic(
                    uuid=c.uuid,
                    service_uuid=service.uuid,
                    name=c.description,
                    properties=frozenset(c.properties),
                )
            )
        return result

    async def write(self, characteristic: GattCharacteristic, data: bytes, *, response: bool = True) -> None:
        try:
            await self._client.write_gatt_char(characteristic.uuid, data, response=response)
        except (BleakError, OSError) as exc:
            raise TransportWriteError(f"Failed to write on characteristic {characteristic.uuid}: {exc}") from exc

    async def subscribe(self, characteristic: GattCharacteristic, handler: NotificationHandler) -> None:
        def _notify_handler(_: Any, data: bytearray) -> None:
            handler(bytes(data))

        try:
            await self._client.start_notify(characteristic.uuid, _notify_handler)
        except (BleakError, OSError) as exc:
            raise CharacteristicDiscoveryError(
                f"Failed to subscribe characteristic {characteristic.uuid}: {exc}"
            ) from exc

    async def disconnect(self) -> None:
        try:
            await self._client.disconnect()
        except (BleakError, OSError) as exc:
            LOGGER.warning("Failed to disconnect %s cleanly: %s", self.id, exc)


async def connect_peripheral(
    target: BLEDevice | str,
    *,
    name: str = "",
    on_disconnect: Callable[[], None],
    adapter: str | None = None,
    timeout_s: float = 10.0,
) -> BleakPeripheral:
    """Connect to ``target`` and return a handle once the host reports connected."""
    kwargs: dict[str, Any] = {"timeout": timeout_s}
    if adapter:
        kwargs["adapter"] = adapter

    client = BleakClient(target, disconnected_callback=lambda _: on_disconnect(), **kwargs)
    try:
        await client.connect()
    except (BleakError, OSError, asyncio.TimeoutError) as exc:
        raise TransportConnectError(f"BLE connect failed for {client.address}: {exc}") from exc
    return BleakPeripheral(client, name=name)
