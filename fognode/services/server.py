"""REST façade over the BLE transport and HTTP delivery of readings."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator

import aiohttp
from aiohttp import web

from fognode.core.callbacks import Deliver
from fognode.core.errors import (
    ActionNotRecognizedError,
    AlreadyRegisteredError,
    CallbackDeliveryError,
    InvalidActionPayloadError,
)
from fognode.core.model import ActionPayload, Reading
from fognode.transports.ble import BLETransport

LOGGER = logging.getLogger(__name__)

TRANSPORT_KEY = web.AppKey("transport", BLETransport)
SESSION_KEY = web.AppKey("session", aiohttp.ClientSession)
DELIVERY_TIMEOUT_S = 10.0

routes = web.RouteTableDef()


def _message(message: str, *, status: int = 200, **extra: str) -> web.Response:
    return web.json_response({"message": message, **extra}, status=status)


def http_deliver(session: aiohttp.ClientSession, url: str) -> Deliver:
    """Deliver function that POSTs each reading to ``url``."""

    async def deliver(peripheral_id: str, reading: Reading) -> None:
        body = {"peripheral_id": peripheral_id, "reading": reading.to_dict()}
        try:
            async with session.post(url, json=body) as response:
                if not 200 <= response.status < 300:
                    raise CallbackDeliveryError(
                        f"Callback result unsuccessful: {url} answered {response.status}"
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise CallbackDeliveryError(f"error calling callback {url}: {exc!r}") from exc
        LOGGER.debug("Callback at %s called successfully", url)

    return deliver


async def _json_body(request: web.Request) -> dict:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise web.HTTPBadRequest(
            text=json.dumps({"message": "invalid data"}), content_type="application/json"
        ) from None
    if not isinstance(body, dict):
        raise web.HTTPBadRequest(
            text=json.dumps({"message": "invalid data"}), content_type="application/json"
        )
    return body


@routes.get("/devices")
async def list_devices(request: web.Request) -> web.Response:
    LOGGER.info("Requested device list")
    devices = request.app[TRANSPORT_KEY].get_devices()
    return web.json_response([d.to_dict() for d in devices])


@routes.get("/devices/{device_id}")
async def get_device(request: web.Request) -> web.Response:
    device_id = request.match_info["device_id"]
    LOGGER.info("Requested device %s information", device_id)
    device = request.app[TRANSPORT_KEY].get_device_by_id(device_id)
    if device is None:
        return _message("device not found", status=404)
    return web.json_response(device.to_dict())


@routes.post("/devices/{device_id}/actions/{action_name}")
async def trigger_action(request: web.Request) -> web.Response:
    device_id = request.match_info["device_id"]
    action_name = request.match_info["action_name"]
    LOGGER.info("Requested device %s action for %s", device_id, action_name)

    device = request.app[TRANSPORT_KEY].get_device_by_id(device_id)
    if device is None:
        return _message("device not found", status=404)

    value = 0
    if request.can_read_body:
        value = (await _json_body(request)).get("value", 0)
    if not isinstance(value, int) or isinstance(value, bool):
        return _message("value must be an integer", status=400)

    try:
        await device.trigger_action(action_name, ActionPayload(value=value))
    except (ActionNotRecognizedError, InvalidActionPayloadError) as exc:
        return _message(str(exc), status=400)
    return _message("Done")


@routes.post("/callbacks")
async def add_callback(request: web.Request) -> web.Response:
    url = (await _json_body(request)).get("url")
    if not isinstance(url, str) or not url:
        return _message("invalid data", status=400)

    transport = request.app[TRANSPORT_KEY]
    try:
        callback_id = transport.add_callback(url, http_deliver(request.app[SESSION_KEY], url))
    except AlreadyRegisteredError as exc:
        return _message(str(exc), id=exc.callback_id)
    return _message(callback_id)


@routes.get("/callbacks")
async def find_callback(request: web.Request) -> web.Response:
    url = request.query.get("url", "")
    callback_id = request.app[TRANSPORT_KEY].get_callback_id(url)
    if callback_id is None:
        return _message("callback not found", status=404)
    return _message(callback_id)


@routes.delete("/callbacks/{callback_id}")
async def remove_callback(request: web.Request) -> web.Response:
    request.app[TRANSPORT_KEY].remove_callback(request.match_info["callback_id"])
    return _message("Done")


async def _client_session(app: web.Application) -> AsyncIterator[None]:
    timeout = aiohttp.ClientTimeout(total=DELIVERY_TIMEOUT_S)
    async with aiohttp.ClientSession(timeout=timeout) as session:
        app[SESSION_KEY] = session
        yield


def create_app(transport: BLETransport) -> web.Application:
    app = web.Application()
    app[TRANSPORT_KEY] = transport
    app.cleanup_ctx.append(_client_session)
    app.add_routes(routes)
    return app


async def start_server(app: web.Application, host: str, port: int) -> web.AppRunner:
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    LOGGER.info("REST server listening on %s:%d", host, port)
    return runner
