from __future__ import annotations

import pytest

from fognode.core.connections import Connection, ConnectionRegistry
from fognode.core.model import Advertisement
from fognode.devices.generic import GenericDevice


def _connection(address: str) -> Connection:
    device = GenericDevice(Advertisement(address=address, name="BBC micro:bit"), lambda pid, r: None)
    return Connection(device)


@pytest.mark.asyncio
async def test_duplicate_add_is_rejected() -> None:
    registry = ConnectionRegistry()
    first = _connection("P1")
    assert registry.add(first)
    assert not registry.add(_connection("P1"))
    assert len(registry) == 1
    assert registry.get("P1") is first


@pytest.mark.asyncio
async def test_get_remove_and_list() -> None:
    registry = ConnectionRegistry()
    registry.add(_connection("P1"))
    registry.add(_connection("P2"))

    assert {d.identity() for d in registry.devices()} == {"P1", "P2"}
    assert registry.get_device("P3") is None

    removed = registry.remove("P1")
    assert removed is not None
    assert "P1" not in registry
    assert registry.remove("P1") is None


@pytest.mark.asyncio
async def test_close_all_fires_every_teardown_once() -> None:
    registry = ConnectionRegistry()
    connections = [_connection("P1"), _connection("P2")]
    for connection in connections:
        registry.add(connection)

    registry.close_all()
    registry.close_all()

    assert all(c.teardown.is_set() for c in connections)
    assert all(c.closed for c in connections)
