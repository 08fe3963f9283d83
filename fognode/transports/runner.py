"""Supervisor that runs transports concurrently under one shutdown signal."""

from __future__ import annotations

import asyncio
import logging

from fognode.core.errors import AlreadyRunningError, FognodeError
from fognode.transports.base import Transport

LOGGER = logging.getLogger(__name__)


class TransportRunner:
    def __init__(self) -> None:
        self.transports: list[Transport] = []
        self.shutdown = asyncio.Event()
        self._tasks: list[asyncio.Task[None]] = []
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def add(self, transport: Transport) -> None:
        self.transports.append(transport)

    async def _run_transport(self, transport: Transport) -> None:
        try:
            await transport.start(self.shutdown)
        except FognodeError as exc:
            LOGGER.error("Failed starting Transport %s, err: %s", transport, exc)
        except Exception:
            LOGGER.exception("Transport %s crashed", transport)

    async def run(self) -> None:
        """Start every transport and return once they are scheduled."""
        if self._running:
            raise AlreadyRunningError("already running")
        self._running = True

        for transport in self.transports:
            self._tasks.append(
                asyncio.create_task(self._run_transport(transport), name=f"transport-{transport}")
            )
        LOGGER.info("Runner started with %d transport(s)", len(self._tasks))

    async def stop(self) -> None:
        """Fire the shared shutdown signal and wait for every transport to exit."""
        self.shutdown.set()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        LOGGER.info("Runner stopped")
