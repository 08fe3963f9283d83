"""Subscriber callbacks that receive every produced reading."""

from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from fognode.core.errors import AlreadyRegisteredError
from fognode.core.model import Reading

LOGGER = logging.getLogger(__name__)

Deliver = Callable[[str, Reading], Awaitable[None]]


@dataclass(frozen=True)
class CallbackRegistration:
    id: str
    subscriber_key: str
    deliver: Deliver


class CallbackRegistry:
    """Concurrency-safe callback map that prunes subscribers whose delivery fails.

    A deliver function signals failure by raising. Failed registrations are
    removed only after every registration of the round has been attempted.
    """

    def __init__(self) -> None:
        self._by_key: dict[str, CallbackRegistration] = {}
        self._lock = threading.Lock()

    def id_for(self, subscriber_key: str) -> str | None:
        with self._lock:
            registration = self._by_key.get(subscriber_key)
            return registration.id if registration else None

    def add(self, subscriber_key: str, deliver: Deliver) -> str:
        with self._lock:
            existing = self._by_key.get(subscriber_key)
            if existing is not None:
                raise AlreadyRegisteredError(subscriber_key, existing.id)
            registration = CallbackRegistration(
                id=str(uuid.uuid4()),
                subscriber_key=subscriber_key,
                deliver=deliver,
            )
            self._by_key[subscriber_key] = registration
        LOGGER.info("Registered callback %s for %s", registration.id, subscriber_key)
        return registration.id

    def remove(self, callback_id: str) -> None:
        with self._lock:
            for key, registration in list(self._by_key.items()):
                if registration.id == callback_id:
                    del self._by_key[key]
                    LOGGER.info("Removed callback %s (%s)", callback_id, key)
                    return

    def registrations(self) -> list[CallbackRegistration]:
        with self._lock:
            return list(self._by_key.values())

    async def dispatch(self, peripheral_id: str, reading: Reading) -> None:
        registrations = self.registrations()
        if not registrations:
            LOGGER.warning("No callbacks to call for reading %s from %s", reading.name, peripheral_id)
            return

        results = await asyncio.gather(
            *(r.deliver(peripheral_id, reading) for r in registrations),
            return_exceptions=True,
        )

        for registration, result in zip(registrations, results):
            if isinstance(result, Exception):
                LOGGER.info(
                    "Removing callback %s due to errors: %s", registration.subscriber_key, result
                )
                self.remove(registration.id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_key)
