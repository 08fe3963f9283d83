from __future__ import annotations

import asyncio

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestClient, TestServer

from fakes import smartvase_peripheral, wait_until
from fognode.core.connections import Connection
from fognode.core.model import Advertisement, Reading
from fognode.devices import smartvase
from fognode.devices.smartvase import SmartVase
from fognode.services.server import create_app
from fognode.transports.ble import BLETransport

WATERING = smartvase.CHARACTERISTICS[3].uuid


@pytest_asyncio.fixture
async def connected():
    transport = BLETransport([])
    peripheral = smartvase_peripheral()
    device = SmartVase(
        Advertisement(address="P1", name="BBC micro:bit [zatig]"),
        transport.on_reading_produced,
        action_settle_s=0,
    )
    connection = Connection(device, peripheral)
    task = asyncio.create_task(device.on_connected(peripheral, connection.teardown))
    await wait_until(lambda: device.actions() == ["watering"])
    transport.connections.add(connection)

    yield transport, peripheral

    connection.close()
    await asyncio.wait_for(task, timeout=1)


@pytest_asyncio.fixture
async def client(connected):
    transport, _ = connected
    async with TestClient(TestServer(create_app(transport))) as test_client:
        yield test_client


@pytest.mark.asyncio
async def test_list_and_get_devices(client) -> None:
    response = await client.get("/devices")
    assert response.status == 200
    devices = await response.json()
    assert [d["id"] for d in devices] == ["P1"]
    assert devices[0]["name"] == "BBC micro:bit [zatig]"

    response = await client.get("/devices/P1")
    body = await response.json()
    assert body["variant"] == "smartvase"
    assert {"name": "watering", "uuid": WATERING} in body["characteristics"]


@pytest.mark.asyncio
async def test_unknown_device_is_404(client) -> None:
    response = await client.get("/devices/NOPE")
    assert response.status == 404
    assert await response.json() == {"message": "device not found"}

    response = await client.post("/devices/NOPE/actions/watering")
    assert response.status == 404


@pytest.mark.asyncio
async def test_trigger_action(client, connected) -> None:
    _, peripheral = connected

    response = await client.post("/devices/P1/actions/watering")
    assert response.status == 200
    assert await response.json() == {"message": "Done"}
    await wait_until(lambda: peripheral.writes == [(WATERING, b"\x74")])


@pytest.mark.asyncio
async def test_unknown_action_and_bad_payload_are_400(client) -> None:
    response = await client.post("/devices/P1/actions/light")
    assert response.status == 400
    assert await response.json() == {"message": "action light not recognised"}

    response = await client.post("/devices/P1/actions/watering", json={"value": "lots"})
    assert response.status == 400

    response = await client.post("/devices/P1/actions/watering", data="{not json")
    assert response.status == 400
    assert await response.json() == {"message": "invalid data"}


@pytest.mark.asyncio
async def test_action_requests_queue_behind_pending_write(client, connected) -> None:
    _, peripheral = connected
    peripheral.write_gate.clear()

    assert (await client.post("/devices/P1/actions/watering")).status == 200
    await asyncio.sleep(0.05)
    assert (await client.post("/devices/P1/actions/watering")).status == 200

    third = asyncio.create_task(client.post("/devices/P1/actions/watering"))
    await asyncio.sleep(0.05)
    assert not third.done()

    peripheral.write_gate.set()
    response = await asyncio.wait_for(third, timeout=1)
    assert response.status == 200
    await wait_until(lambda: len(peripheral.writes) == 3)


@pytest.mark.asyncio
async def test_undecodable_body_is_400(client) -> None:
    response = await client.post(
        "/devices/P1/actions/watering",
        data=b'{"value": "\xff\xfe"}',
        headers={"Content-Type": "application/json"},
    )
    assert response.status == 400
    assert await response.json() == {"message": "invalid data"}

    response = await client.post(
        "/callbacks", data=b"\xff\xfe", headers={"Content-Type": "application/json"}
    )
    assert response.status == 400


@pytest.mark.asyncio
async def test_callback_lifecycle(client) -> None:
    response = await client.post("/callbacks", json={"url": "http://localhost:9/hook"})
    assert response.status == 200
    callback_id = (await response.json())["message"]

    response = await client.post("/callbacks", json={"url": "http://localhost:9/hook"})
    assert response.status == 200
    duplicate = await response.json()
    assert duplicate["id"] == callback_id
    assert "already registered" in duplicate["message"]

    response = await client.get("/callbacks", params={"url": "http://localhost:9/hook"})
    assert (await response.json())["message"] == callback_id

    response = await client.delete(f"/callbacks/{callback_id}")
    assert await response.json() == {"message": "Done"}

    response = await client.get("/callbacks", params={"url": "http://localhost:9/hook"})
    assert response.status == 404
    assert (await client.delete(f"/callbacks/{callback_id}")).status == 200


@pytest.mark.asyncio
async def test_callback_requires_url(client) -> None:
    response = await client.post("/callbacks", json={"address": "http://localhost:9/hook"})
    assert response.status == 400
    assert await response.json() == {"message": "invalid data"}

    response = await client.post("/callbacks", json=["http://localhost:9/hook"])
    assert response.status == 400


@pytest.mark.asyncio
async def test_readings_are_posted_to_callbacks(client, connected) -> None:
    transport, peripheral = connected
    received: list[dict] = []

    async def hook(request: web.Request) -> web.Response:
        received.append(await request.json())
        return web.json_response({})

    async def broken(request: web.Request) -> web.Response:
        return web.json_response({}, status=500)

    receiver = web.Application()
    receiver.router.add_post("/hook", hook)
    receiver.router.add_post("/broken", broken)

    async with TestServer(receiver) as server:
        good_url = str(server.make_url("/hook"))
        bad_url = str(server.make_url("/broken"))
        await client.post("/callbacks", json={"url": good_url})
        await client.post("/callbacks", json={"url": bad_url})

        peripheral.notify(smartvase.CHARACTERISTICS[1].uuid, bytes([0x16, 0x00]))
        await wait_until(lambda: transport.get_callback_id(bad_url) is None)

        assert len(received) == 1
        assert received[0]["peripheral_id"] == "P1"
        assert received[0]["reading"]["name"] == "temperature"
        assert received[0]["reading"]["value"] == "22 0"
        assert transport.get_callback_id(good_url) is not None


@pytest.mark.asyncio
async def test_dispatch_reading_directly(connected) -> None:
    transport, _ = connected
    seen: list[Reading] = []

    async def deliver(peripheral_id: str, reading: Reading) -> None:
        seen.append(reading)

    transport.add_callback("local", deliver)
    await transport.callbacks.dispatch("P1", Reading(name="light", value="[3]"))
    assert [r.value for r in seen] == ["[3]"]
