from __future__ import annotations

import pytest

from fognode.core.errors import InvalidActionPayloadError
from fognode.core.model import ActionPayload, Characteristic, Reading, byte_list
from fognode.devices import smartvase


def test_byte_list_renders_decimal_values() -> None:
    assert byte_list(bytes([0x16, 0x00])) == "[22 0]"
    assert byte_list(b"") == "[]"


def test_temperature_strips_brackets_and_sets_unit() -> None:
    first = smartvase.decode_temperature(bytes([0x16, 0x00]))
    second = smartvase.decode_temperature(bytes([0x16, 0x00]))
    assert first.value == "22 0"
    assert first.unit == "C°"
    assert first.name == "temperature"
    assert (second.name, second.value, second.unit) == (first.name, first.value, first.unit)


def test_light_keeps_brackets() -> None:
    reading = smartvase.decode_light(bytes([1, 2, 3]))
    assert reading.value == "[1 2 3]"
    assert reading.unit == ""


def test_write_only_characteristic_has_no_reading() -> None:
    watering = next(c for c in smartvase.CHARACTERISTICS if c.name == "watering")
    assert watering.reading_from(b"\x01") is None


def test_characteristic_serializes_without_decoder() -> None:
    characteristic = Characteristic(uuid="2a19", name="Battery Level", decode=lambda b: None)
    assert characteristic.to_dict() == {"uuid": "2a19", "name": "Battery Level"}


def test_reading_to_dict_omits_empty_id() -> None:
    reading = Reading(name="moisture", value="12", unit="", created_at="2024-01-01T00:00:00+00:00")
    assert reading.to_dict() == {
        "name": "moisture",
        "value": "12",
        "unit": "",
        "creation_timestamp": "2024-01-01T00:00:00+00:00",
    }


def test_action_payload_encodes_single_byte() -> None:
    assert ActionPayload(value=7).encode() == b"\x07"
    with pytest.raises(InvalidActionPayloadError):
        ActionPayload(value=256).encode()
    with pytest.raises(InvalidActionPayloadError):
        ActionPayload(value=-1).encode()
