"""Smart vase: a micro:bit running the plant-care firmware."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Collection

from fognode.core.errors import DeviceServiceError
from fognode.core.model import (
    ActionPayload,
    Characteristic,
    DeviceRecord,
    GattCharacteristic,
    GattService,
    Reading,
    byte_list,
)
from fognode.devices.base import Device
from fognode.services.device_service import DeviceServiceClient
from fognode.transports.peripheral import PeripheralHandle

LOGGER = logging.getLogger(__name__)

REGISTRATION_RETRY_S = 5.0
WATERING_COMMAND = bytes([0x74])


def decode_light(data: bytes) -> Reading:
    return Reading(name="light", value=byte_list(data), unit="")


def decode_temperature(data: bytes) -> Reading:
    return Reading(name="temperature", value=byte_list(data)[1:-1], unit="C°")


def decode_moisture(data: bytes) -> Reading:
    return Reading(name="moisture", value=byte_list(data)[1:-1], unit="")


SERVICES = (
    GattService(uuid="02751625-523e-493b-8f94-1765effa1b20", name="light"),
    GattService(uuid="e95d6100-251d-470a-a062-fa1922dfa9a8", name="temperature"),
    GattService(uuid="73cd5e04-d32c-4345-a543-487435c70c48", name="moisture"),
    GattService(uuid="ce9eafe4-c443-41db-9cb5-81e567f3ba93", name="watering"),
)

CHARACTERISTICS = (
    Characteristic(uuid="02759250-523e-493b-8f94-1765effa1b20", name="light", decode=decode_light),
    Characteristic(
        uuid="e95d9250-251d-470a-a062-fa1922dfa9a8", name="temperature", decode=decode_temperature
    ),
    Characteristic(uuid="73cd7350-d32c-4345-a543-487435c70c48", name="moisture", decode=decode_moisture),
    Characteristic(uuid="ce9e7625-c443-41db-9cb5-81e567f3ba93", name="watering"),
)

ACTIONS = {"watering": WATERING_COMMAND}

_BY_UUID = {c.uuid: c for c in CHARACTERISTICS}


class SmartVase(Device):
    """Light, temperature and moisture sensors plus a watering actuator.

    Readings go to the transport fan-out and, once the vase is registered,
    to the device service. Readings produced before registration succeeds
    are dropped.
    """

    variant = "smartvase"

    def __init__(
        self,
        *args,
        device_service: DeviceServiceClient | None = None,
        room: str = "default",
        registration_retry_s: float = REGISTRATION_RETRY_S,
        **kwargs,
    ) -> None:
        super().__init__(*args, **kwargs)
        self.device_service = device_service
        self.room = room
        self.registration_retry_s = registration_retry_s
        self.record: DeviceRecord | None = None

    def available_characteristics(self) -> list[Characteristic]:
        return list(CHARACTERISTICS)

    def service_uuids(self) -> Collection[str] | None:
        return [s.uuid for s in SERVICES]

    def characteristic_uuids(self) -> Collection[str] | None:
        return list(_BY_UUID)

    def decode(self, characteristic: GattCharacteristic, data: bytes) -> Reading | None:
        known = _BY_UUID.get(characteristic.uuid)
        if known is None:
            return None
        return known.reading_from(data)

    def action_name_for(self, characteristic: GattCharacteristic) -> str | None:
        known = _BY_UUID.get(characteristic.uuid)
        if known is None or known.name not in ACTIONS:
            return None
        return known.name

    def encode_action(self, name: str, payload: ActionPayload) -> bytes:
        return ACTIONS[name]

    async def on_link_ready(self, handle: PeripheralHandle, teardown: asyncio.Event) -> None:
        if self.device_service is not None:
            self.spawn(self._register(teardown))

    async def _register(self, teardown: asyncio.Event) -> None:
        while not teardown.is_set():
            try:
                self.record = await self.device_service.register(self.identity(), self.room)
            except DeviceServiceError as exc:
                LOGGER.warning("Cannot register the device to the DeviceService: %s", exc)
                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(teardown.wait(), timeout=self.registration_retry_s)
            else:
                LOGGER.info("Device %s registered with id: %s", self.record.name, self.record.id)
                return
        LOGGER.info("Stop trying to register device %s", self.identity())

    def emit(self, reading: Reading) -> None:
        super().emit(reading)
        if self.device_service is None:
            return
        if self.record is None:
            LOGGER.info("Skipping sending data: Not registered")
            return
        self.spawn(self._send(self.record, reading))

    async def _send(self, record: DeviceRecord, reading: Reading) -> None:
        LOGGER.debug("Sending data to DeviceService: %s", reading)
        try:
            await self.device_service.send_data(record, reading)
        except DeviceServiceError as exc:
            LOGGER.warning("%s", exc)
        else:
            LOGGER.debug("Send success!")
