"""Generic device that exposes whatever the peripheral offers at connect time."""

from __future__ import annotations

from collections.abc import Collection

from fognode.core.model import (
    ActionPayload,
    Characteristic,
    GattCharacteristic,
    GattService,
    Reading,
    byte_list,
)
from fognode.devices.base import Device


def _raw_reading(uuid: str, data: bytes) -> Reading:
    return Reading(name=uuid, value=byte_list(data), unit="")


class GenericDevice(Device):
    variant = "generic"

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.services: list[GattService] = []
        self.characteristics: list[Characteristic] = []

    def available_characteristics(self) -> list[Characteristic]:
        return list(self.characteristics)

    def service_uuids(self) -> Collection[str] | None:
        return None

    def characteristic_uuids(self) -> Collection[str] | None:
        return None

    def on_service(self, service: GattService) -> None:
        self.services.append(service)

    def on_characteristic(self, characteristic: GattCharacteristic) -> None:
        uuid = characteristic.uuid
        name = characteristic.name
        if not name or name == "Unknown":
            name = uuid
        self.characteristics.append(
            Characteristic(uuid=uuid, name=name, decode=lambda data: _raw_reading(uuid, data))
        )

    def decode(self, characteristic: GattCharacteristic, data: bytes) -> Reading | None:
        return _raw_reading(characteristic.uuid, data)

    def action_name_for(self, characteristic: GattCharacteristic) -> str | None:
        return characteristic.uuid

    def encode_action(self, name: str, payload: ActionPayload) -> bytes:
        return payload.encode()
