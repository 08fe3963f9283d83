"""Stable public API for embedding the fog-node gateway.

`FogNode` wires configuration, the BLE transport, its runner, the device
service client and the REST façade together. Third-party callers should
import from this module rather than from internal packages.
"""

from __future__ import annotations

import asyncio
import logging

from aiohttp import web

from fognode.core.config_loader import LoadedConfig, load_config
from fognode.core.errors import (
    ActionNotRecognizedError,
    AlreadyRegisteredError,
    AlreadyRunningError,
    CallbackDeliveryError,
    CharacteristicDiscoveryError,
    ConfigError,
    ConfigLoadError,
    ConfigValidationError,
    ConnectionSetupError,
    DeviceError,
    DeviceServiceError,
    FognodeError,
    InvalidActionPayloadError,
    TransportConnectError,
    TransportError,
    TransportWriteError,
)
from fognode.core.model import ActionPayload, Advertisement, Characteristic, GatewayConfig, Reading
from fognode.devices.base import Device
from fognode.devices.registry import build_recognizers
from fognode.services.device_service import DeviceServiceClient
from fognode.services.server import create_app, start_server
from fognode.transports.ble import BLETransport, Connector, ScannerFactory
from fognode.transports.runner import TransportRunner

__all__ = [
    "FognodeError",
    "ConfigError",
    "ConfigLoadError",
    "ConfigValidationError",
    "ConnectionSetupError",
    "CharacteristicDiscoveryError",
    "DeviceError",
    "ActionNotRecognizedError",
    "InvalidActionPayloadError",
    "AlreadyRegisteredError",
    "AlreadyRunningError",
    "CallbackDeliveryError",
    "DeviceServiceError",
    "TransportError",
    "TransportConnectError",
    "TransportWriteError",
    "ActionPayload",
    "Advertisement",
    "Characteristic",
    "Device",
    "GatewayConfig",
    "LoadedConfig",
    "Reading",
    "BLETransport",
    "TransportRunner",
    "FogNode",
    "load_config",
]

LOGGER = logging.getLogger(__name__)


class FogNode:
    """A running gateway: one BLE transport, its runner and the REST façade."""

    def __init__(
        self,
        config: GatewayConfig,
        *,
        scanner_factory: ScannerFactory | None = None,
        connector: Connector | None = None,
        serve_http: bool = True,
    ) -> None:
        self.config = config
        self.device_service = (
            DeviceServiceClient.from_config(config.device_service) if config.device_service else None
        )
        self.transport = BLETransport(
            build_recognizers(config, self.device_service),
            scan_period_s=config.ble.scan_period_s,
            scanner_factory=scanner_factory,
            connector=connector,
            adapter=config.ble.adapter,
        )
        self.runner = TransportRunner()
        self.runner.add(self.transport)
        self.serve_http = serve_http
        self._web_runner: web.AppRunner | None = None

    async def start(self) -> None:
        await self.runner.run()
        if self.serve_http:
            self._web_runner = await start_server(
                create_app(self.transport), self.config.server.host, self.config.server.port
            )

    async def stop(self) -> None:
        if self._web_runner is not None:
            await self._web_runner.cleanup()
            self._web_runner = None
        await self.runner.stop()
        if self.device_service is not None:
            await self.device_service.close()
        LOGGER.info("Done")

    async def serve(self, stop: asyncio.Event) -> None:
        """Run until ``stop`` fires."""
        await self.start()
        try:
            await stop.wait()
        finally:
            await self.stop()
