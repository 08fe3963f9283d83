"""Ordered recognizers that turn an advertisement into a device variant."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from functools import partial
from typing import Any

from fognode.core.device_match import match_score
from fognode.core.model import Advertisement, GatewayConfig, MatchRules
from fognode.devices.base import Device, ReadingSink
from fognode.devices.generic import GenericDevice
from fognode.devices.smartvase import SmartVase
from fognode.services.device_service import DeviceServiceClient

DeviceFactory = Callable[[Advertisement, ReadingSink], Device]

VARIANTS: dict[str, type[Device]] = {
    GenericDevice.variant: GenericDevice,
    SmartVase.variant: SmartVase,
}


@dataclass(frozen=True)
class DeviceRecognizer:
    variant: str
    match: MatchRules
    factory: DeviceFactory
    fallback: bool = False

    def accepts(self, advertisement: Advertisement) -> bool:
        if self.fallback and self.match.empty:
            return True
        return match_score(advertisement, self.match) > 0


def best_recognizer(
    advertisement: Advertisement,
    recognizers: Sequence[DeviceRecognizer],
) -> DeviceRecognizer | None:
    """Most specific non-fallback match; ties go to the earlier recognizer."""
    best: DeviceRecognizer | None = None
    best_score = 0
    fallback: DeviceRecognizer | None = None
    for recognizer in recognizers:
        if recognizer.fallback:
            if fallback is None and recognizer.accepts(advertisement):
                fallback = recognizer
            continue
        score = match_score(advertisement, recognizer.match)
        if score > best_score:
            best = recognizer
            best_score = score
    return best or fallback


def recognize(
    advertisement: Advertisement,
    recognizers: Sequence[DeviceRecognizer],
    reading_sink: ReadingSink,
) -> Device | None:
    recognizer = best_recognizer(advertisement, recognizers)
    if recognizer is None:
        return None
    return recognizer.factory(advertisement, reading_sink)


def build_recognizers(
    config: GatewayConfig,
    device_service: DeviceServiceClient | None = None,
) -> list[DeviceRecognizer]:
    recognizers: list[DeviceRecognizer] = []
    for entry in config.devices:
        options: dict[str, Any] = {"mtu": config.ble.mtu, "action_settle_s": config.ble.action_settle_s}
        if entry.variant == SmartVase.variant:
            options.update(device_service=device_service, room=entry.room)
        recognizers.append(
            DeviceRecognizer(
                variant=entry.variant,
                match=entry.match,
                factory=partial(VARIANTS[entry.variant], **options),
                fallback=entry.variant == GenericDevice.variant,
            )
        )
    return recognizers
