"""Device abstraction shared by every peripheral variant."""

from __future__ import annotations

import abc
import asyncio
import contextlib
import logging
from collections.abc import Callable, Collection, Coroutine
from functools import partial
from typing import Any, ClassVar

from fognode.core.errors import (
    ActionNotRecognizedError,
    CharacteristicDiscoveryError,
    TransportWriteError,
)
from fognode.core.model import (
    ActionPayload,
    Advertisement,
    Characteristic,
    GattCharacteristic,
    GattService,
    Reading,
)
from fognode.transports.peripheral import PeripheralHandle

LOGGER = logging.getLogger(__name__)

ReadingSink = Callable[[str, Reading], None]

DEFAULT_MTU = 500
DEFAULT_ACTION_SETTLE_S = 1.0


class ActionChannel:
    """Single-slot mailbox that serializes action requests into characteristic writes."""

    def __init__(
        self,
        name: str,
        characteristic: GattCharacteristic,
        handle: PeripheralHandle,
        *,
        settle_s: float = DEFAULT_ACTION_SETTLE_S,
    ) -> None:
        self.name = name
        self.characteristic = characteristic
        self._handle = handle
        self._settle_s = settle_s
        self._mailbox: asyncio.Queue[bytes] = asyncio.Queue(maxsize=1)
        self._task: asyncio.Task[None] | None = None
        self._closed = asyncio.Event()

    def open(self) -> None:
        LOGGER.info("Start action listener for characteristic %s", self.characteristic.uuid)
        self._task = asyncio.create_task(self._run(), name=f"action-{self.name}")

    async def submit(self, data: bytes) -> None:
        """Wait for the slot to free up, then hand ``data`` to the writer.

        Raises ActionNotRecognizedError if the channel closes while waiting.
        """
        if self._closed.is_set():
            raise ActionNotRecognizedError(self.name)
        put = asyncio.ensure_future(self._mailbox.put(data))
        closed = asyncio.ensure_future(self._closed.wait())
        try:
            await asyncio.wait({put, closed}, return_when=asyncio.FIRST_COMPLETED)
            queued = put.done()
        finally:
            put.cancel()
            closed.cancel()
        if not queued:
            raise ActionNotRecognizedError(self.name)

    async def _run(self) -> None:
        while True:
            data = await self._mailbox.get()
            LOGGER.info("Action requested: %s. Characteristic: %s", self.name, self.characteristic.uuid)
            try:
                await self._handle.write(self.characteristic, data, response=True)
            except TransportWriteError as exc:
                LOGGER.warning("%s", exc)
            else:
                LOGGER.info("Written on characteristic %s", self.characteristic.uuid)
            await asyncio.sleep(self._settle_s)

    async def close(self) -> None:
        self._closed.set()
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None


class Device(abc.ABC):
    """One connected peripheral exposed through named characteristics and actions.

    Subclasses describe which services and characteristics they care about,
    how notifications decode into readings, and which characteristics accept
    actions. The connection pipeline itself lives in :meth:`on_connected`.
    """

    variant: ClassVar[str]

    def __init__(
        self,
        advertisement: Advertisement,
        reading_sink: ReadingSink,
        *,
        mtu: int = DEFAULT_MTU,
        action_settle_s: float = DEFAULT_ACTION_SETTLE_S,
    ) -> None:
        self.advertisement = advertisement
        self.mtu = mtu
        self.action_settle_s = action_settle_s
        self._reading_sink = reading_sink
        self._action_channels: dict[str, ActionChannel] = {}
        self._tasks: set[asyncio.Task[Any]] = set()

    def identity(self) -> str:
        return self.advertisement.address

    @property
    def name(self) -> str:
        return self.advertisement.name or self.advertisement.local_name or f"device{self.identity()}"

    @abc.abstractmethod
    def available_characteristics(self) -> list[Characteristic]:
        """Characteristics this device exposes to clients."""

    @abc.abstractmethod
    def service_uuids(self) -> Collection[str] | None:
        """Services to discover, or None for every service."""

    @abc.abstractmethod
    def characteristic_uuids(self) -> Collection[str] | None:
        """Characteristics to discover, or None for every characteristic."""

    @abc.abstractmethod
    def decode(self, characteristic: GattCharacteristic, data: bytes) -> Reading | None:
        """Turn notification bytes into a reading, or None when nothing is produced."""

    @abc.abstractmethod
    def action_name_for(self, characteristic: GattCharacteristic) -> str | None:
        """Action name served by a writable characteristic, or None."""

    @abc.abstractmethod
    def encode_action(self, name: str, payload: ActionPayload) -> bytes:
        """Bytes written on the radio link for an action request."""

    def on_service(self, service: GattService) -> None:
        pass

    def on_characteristic(self, characteristic: GattCharacteristic) -> None:
        pass

    async def on_link_ready(self, handle: PeripheralHandle, teardown: asyncio.Event) -> None:
        pass

    async def on_connected(self, handle: PeripheralHandle, teardown: asyncio.Event) -> None:
        """Set up the peripheral and block until ``teardown`` fires.

        Raises ConnectionSetupError when MTU negotiation or service discovery
        fails. Per-characteristic failures are logged and skipped.
        """
        LOGGER.info("%s on_connected called for %s", type(self).__name__, self.identity())
        try:
            mtu = await handle.negotiate_mtu(self.mtu)
            LOGGER.debug("MTU for %s set to %d", self.identity(), mtu)

            services = await handle.discover_services(self.service_uuids())
            await self.on_link_ready(handle, teardown)

            for service in services:
                self.on_service(service)
                await self._setup_service(handle, service)

            await teardown.wait()
        finally:
            await self._close()

    async def _setup_service(self, handle: PeripheralHandle, service: GattService) -> None:
        try:
            characteristics = await handle.discover_characteristics(service, self.characteristic_uuids())
        except CharacteristicDiscoveryError as exc:
            LOGGER.warning("Failed to discover characteristics, err: %s", exc)
            return

        for characteristic in characteristics:
            self.on_characteristic(characteristic)

            action = self.action_name_for(characteristic) if characteristic.writable else None
            if action is not None:
                channel = ActionChannel(action, characteristic, handle, settle_s=self.action_settle_s)
                self._action_channels[action] = channel
                channel.open()

            if characteristic.notifiable:
                try:
                    await handle.subscribe(characteristic, partial(self._on_notification, characteristic))
                except CharacteristicDiscoveryError as exc:
                    LOGGER.warning("%s", exc)

    def _on_notification(self, characteristic: GattCharacteristic, data: bytes) -> None:
        reading = self.decode(characteristic, data)
        if reading is None:
            LOGGER.debug("Skipping data notification from %s: No value to send", characteristic.uuid)
            return
        LOGGER.info("Reading produced: %s", reading)
        self.emit(reading)

    def emit(self, reading: Reading) -> None:
        self._reading_sink(self.identity(), reading)

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
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
            LOGGER.error("%s task failed: %s", self.identity(), exc, exc_info=exc)

    async def _close(self) -> None:
        channels = list(self._action_channels.values())
        self._action_channels.clear()
        for channel in channels:
            await channel.close()

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def on_disconnected(self, handle: PeripheralHandle) -> None:
        LOGGER.info("%s on_disconnected called for %s", type(self).__name__, self.identity())

    async def trigger_action(self, name: str, payload: ActionPayload | None = None) -> None:
        """Queue an action request. Returns once queued, before the write happens."""
        LOGGER.info("Triggering %s on %s", name, self.identity())
        channel = self._action_channels.get(name)
        if channel is None:
            raise ActionNotRecognizedError(name)
        await channel.submit(self.encode_action(name, payload or ActionPayload()))

    def actions(self) -> list[str]:
        return sorted(self._action_channels)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.identity(),
            "name": self.name,
            "variant": self.variant,
            "characteristics": [c.to_dict() for c in self.available_characteristics()],
        }

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.identity()} ({self.name})>"
