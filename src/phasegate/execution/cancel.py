"""Cooperative cancellation token."""

from __future__ import annotations

import asyncio


class CancelToken:
    """Set once to ask in-flight work to stop. Runners poll `cancelled` or await `wait()`."""

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()
