from __future__ import annotations

import asyncio

import pytest

from fakes import FakeConnector, ScannerFactory, smartvase_peripheral, wait_until
from fognode import api
from fognode.core.model import Advertisement, BLEConfig, GatewayConfig, MatchRules, VariantConfig

VASE = VariantConfig(variant="smartvase", match=MatchRules(name_contains=("bbc micro:bit",)))


def _node(connector: FakeConnector, scanners: ScannerFactory) -> api.FogNode:
    config = GatewayConfig(ble=BLEConfig(scan_period_s=0.05, action_settle_s=0), devices=(VASE,))
    return api.FogNode(config, scanner_factory=scanners, connector=connector, serve_http=False)


def test_public_exports() -> None:
    for name in api.__all__:
        assert hasattr(api, name)


@pytest.mark.asyncio
async def test_fog_node_lifecycle() -> None:
    peripheral = smartvase_peripheral()
    scanners = ScannerFactory()
    node = _node(FakeConnector({"P1": peripheral}), scanners)
    assert node.device_service is None

    await node.start()
    await wait_until(lambda: scanners.scanner is not None and scanners.scanner.starts >= 1)
    node.transport.handle_discovery(Advertisement(address="P1", name="BBC micro:bit [zatig]"))
    await wait_until(lambda: len(node.transport.get_devices()) == 1)

    await asyncio.wait_for(node.stop(), timeout=2)
    assert node.transport.get_devices() == []
    assert peripheral.disconnect_calls == 1


@pytest.mark.asyncio
async def test_serve_returns_when_stop_fires() -> None:
    node = _node(FakeConnector(), ScannerFactory())
    stop = asyncio.Event()
    task = asyncio.create_task(node.serve(stop))
    await wait_until(lambda: node.runner.running)

    stop.set()
    await asyncio.wait_for(task, timeout=2)
    assert node.runner.shutdown.is_set()


@pytest.mark.asyncio
async def test_second_start_is_rejected() -> None:
    node = _node(FakeConnector(), ScannerFactory())
    await node.start()
    with pytest.raises(api.AlreadyRunningError):
        await node.start()
    await node.stop()
