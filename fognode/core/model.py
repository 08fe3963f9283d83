"""Core data models shared by devices, transports, and the REST layer."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from fognode.core.errors import InvalidActionPayloadError

WRITE_PROPERTIES = frozenset({"write", "write-without-response"})
NOTIFY_PROPERTIES = frozenset({"notify", "indicate"})


@dataclass(frozen=True)
class MatchRules:
    name_contains: tuple[str, ...] = ()
    address_prefix: tuple[str, ...] = ()

    @property
    def empty(self) -> bool:
        return not self.name_contains and not self.address_prefix


@dataclass(frozen=True)
class Advertisement:
    """Advertisement data as reported by the host stack during a scan."""

    address: str
    name: str = ""
    local_name: str = ""
    service_uuids: tuple[str, ...] = ()
    rssi: int | None = None


@dataclass(frozen=True)
class Reading:
    name: str
    value: str | int | float
    unit: str = ""
    created_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    id: str = ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "value": self.value,
            "unit": self.unit,
            "creation_timestamp": self.created_at,
        }
        if self.id:
            data["id"] = self.id
        return data

    def __str__(self) -> str:
        return f"<Reading {self.id}, {self.name}, {self.value}, {self.unit}, {self.created_at}>"


Decoder = Callable[[bytes], "Reading | None"]


@dataclass(frozen=True)
class Characteristic:
    uuid: str
    name: str
    decode: Decoder | None = field(default=None, compare=False, repr=False)

    def reading_from(self, data: bytes) -> Reading | None:
        if self.decode is None:
            return None
        return self.decode(data)

    def to_dict(self) -> dict[str, str]:
        return {"uuid": self.uuid, "name": self.name}


@dataclass(frozen=True)
class GattService:
    uuid: str
    name: str = ""


@dataclass(frozen=True)
class GattCharacteristic:
    uuid: str
    service_uuid: str
    name: str = ""
    properties: frozenset[str] = frozenset()

    @property
    def writable(self) -> bool:
        return bool(self.properties & WRITE_PROPERTIES)

    @property
    def notifiable(self) -> bool:
        return bool(self.properties & NOTIFY_PROPERTIES)


@dataclass(frozen=True)
class ActionPayload:
    value: int = 0

    def encode(self) -> bytes:
        if not 0 <= self.value <= 0xFF:
            raise InvalidActionPayloadError(
                f"action value {self.value} does not fit in a single byte"
            )
        return bytes([self.value])


@dataclass(frozen=True)
class Room:
    id: str
    name: str


@dataclass(frozen=True)
class DeviceRecord:
    """A device as registered on the remote device service."""

    id: str
    name: str
    mac: str
    room: str = ""


def byte_list(data: bytes) -> str:
    """Render bytes as a bracketed list of decimal values, e.g. ``[22 0]``."""
    return "[" + " ".join(str(b) for b in data) + "]"


@dataclass(frozen=True)
class DeviceServiceConfig:
    host: str
    port: int
    timeout_s: float = 10.0

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"


@dataclass(frozen=True)
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 5003


@dataclass(frozen=True)
class BLEConfig:
    scan_period_s: float = 10.0
    mtu: int = 500
    action_settle_s: float = 1.0
    adapter: str | None = None


@dataclass(frozen=True)
class VariantConfig:
    variant: str
    match: MatchRules
    room: str = "default"


@dataclass(frozen=True)
class GatewayConfig:
    server: ServerConfig = field(default_factory=ServerConfig)
    ble: BLEConfig = field(default_factory=BLEConfig)
    devices: tuple[VariantConfig, ...] = ()
    device_service: DeviceServiceConfig | None = None
