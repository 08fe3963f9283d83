"""Transport interfaces."""

from __future__ import annotations

import asyncio
from typing import Protocol

from fognode.core.callbacks import Deliver
from fognode.core.model import Reading


class Transport(Protocol):
    async def start(self, shutdown: asyncio.Event) -> None:
        """Run until ``shutdown`` fires, then release every connection."""

    def on_reading_produced(self, peripheral_id: str, reading: Reading) -> None:
        """Fan a reading out to registered callbacks without blocking the caller."""

    def add_callback(self, subscriber_key: str, deliver: Deliver) -> str:
        """Register ``deliver`` and return its id."""

    def remove_callback(self, callback_id: str) -> None:
        """Forget a callback; unknown ids are ignored."""
