"""Live BLE connections keyed by peripheral id."""

from __future__ import annotations

import asyncio
import enum
import logging
import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fognode.devices.base import Device
    from fognode.transports.peripheral import PeripheralHandle

LOGGER = logging.getLogger(__name__)


class ConnectionState(enum.Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"
    CLOSED = "closed"


class Connection:
    """One connected device together with its teardown signal."""

    def __init__(self, device: Device, handle: PeripheralHandle | None = None) -> None:
        self.device = device
        self.handle = handle
        self.teardown = asyncio.Event()
        self.state = ConnectionState.CONNECTING

    @property
    def peripheral_id(self) -> str:
        return self.device.identity()

    @property
    def closed(self) -> bool:
        return self.teardown.is_set()

    def close(self) -> None:
        if self.teardown.is_set():
            return
        LOGGER.info("Closing connection with device %s", self.peripheral_id)
        self.teardown.set()

    def __repr__(self) -> str:
        return f"<Connection {self.peripheral_id} {self.state.value}>"


class ConnectionRegistry:
    """Mutually exclusive map from peripheral id to its live connection."""

    def __init__(self) -> None:
        self._connections: dict[str, Connection] = {}
        self._lock = threading.Lock()

    def add(self, connection: Connection) -> bool:
        peripheral_id = connection.peripheral_id
        with self._lock:
            if peripheral_id in self._connections:
                LOGGER.warning("Peripheral %s already connected", peripheral_id)
                return False
            self._connections[peripheral_id] = connection
            return True

    def remove(self, peripheral_id: str) -> Connection | None:
        with self._lock:
            return self._connections.pop(peripheral_id, None)

    def get(self, peripheral_id: str) -> Connection | None:
        with self._lock:
            return self._connections.get(peripheral_id)

    def get_device(self, peripheral_id: str) -> Device | None:
        connection = self.get(peripheral_id)
        return connection.device if connection else None

    def devices(self) -> list[Device]:
        with self._lock:
            return [c.device for c in self._connections.values()]

    def close_all(self) -> None:
        with self._lock:
            connections = list(self._connections.values())
        for connection in connections:
            connection.close()

    def __contains__(self, peripheral_id: object) -> bool:
        with self._lock:
            return peripheral_id in self._connections

    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)
