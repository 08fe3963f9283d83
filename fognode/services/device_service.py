"""HTTP client for the remote device service that stores readings."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp

from fognode.core.errors import DeviceServiceError
from fognode.core.model import DeviceRecord, DeviceServiceConfig, Reading, Room

LOGGER = logging.getLogger(__name__)


class DeviceServiceClient:
    def __init__(
        self,
        base_url: str,
        *,
        timeout_s: float = 10.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self._session = session
        self._owns_session = session is None

    @classmethod
    def from_config(cls, config: DeviceServiceConfig) -> DeviceServiceClient:
        LOGGER.info("DeviceService URL: %s", config.url)
        return cls(config.url, timeout_s=config.timeout_s)

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout_s)
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self._session

    async def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            async with self._get_session().post(url, json=body) as response:
                if response.status != 200:
                    raise DeviceServiceError(
                        f"cannot perform the requested operation: ({response.status}) {response.reason}"
                    )
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            raise DeviceServiceError(f"POST {url} failed: {exc!r}") from exc
        return data if isinstance(data, dict) else {}

    async def register(self, peripheral_id: str, room_name: str) -> DeviceRecord:
        """Create the room, then the device inside it."""
        room_data = await self._post("/rooms", {"name": room_name})
        if not room_data.get("id"):
            raise DeviceServiceError(f"device service returned no id for room '{room_name}'")
        room = Room(id=str(room_data["id"]), name=room_data.get("name", room_name))

        device_data = await self._post(
            f"/rooms/{room.id}/devices",
            {"name": f"device{peripheral_id}", "mac": peripheral_id},
        )
        return DeviceRecord(
            id=str(device_data.get("id", "")),
            name=device_data.get("name", f"device{peripheral_id}"),
            mac=device_data.get("mac", peripheral_id),
            room=str(device_data.get("room") or room.id),
        )

    async def send_data(self, record: DeviceRecord, reading: Reading) -> None:
        await self._post(f"/rooms/{record.room}/devices/{record.id}/readings", reading.to_dict())

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
