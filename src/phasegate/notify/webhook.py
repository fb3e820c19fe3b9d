"""Webhook notifications for run events."""

from __future__ import annotations

import asyncio
import logging
from fnmatch import fnmatch

import httpx

from phasegate.notify.base import Notifier
from phasegate.notify.events import Event

logger = logging.getLogger("phasegate.webhooks")


class WebhookNotifier(Notifier):
    """POSTs `{"event": name, "payload": {...}}` for matching events.

    `events` are glob patterns over event names (`run.blocked`, `job.*`, `*`).
    Deliveries run as background tasks; `aclose()` waits for them.
    """

    def __init__(
        self,
        url: str,
        events: list[str] | None = None,
        secret: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ):
        self.url = url
        self.events = events or ["run.blocked"]
        self.secret = secret
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout
        self._pending: set[asyncio.Task] = set()
        self.delivered: list[tuple[str, int]] = []

    def wants(self, event_name: str) -> bool:
        return any(fnmatch(event_name, pattern) for pattern in self.events)

    def emit(self, event: Event) -> None:
        if not self.wants(event.name):
            return
        task = asyncio.get_running_loop().create_task(self._post(event.name, event.to_dict()))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _post(self, event_name: str, payload: dict) -> None:
        headers = {"Content-Type": "application/json"}
        if self.secret:
            headers["X-Phasegate-Secret"] = self.secret
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        try:
            resp = await self._client.post(
                self.url,
                json={"event": event_name, "payload": payload},
                headers=headers,
            )
            self.delivered.append((event_name, resp.status_code))
            logger.info(f"Webhook fired: {self.url} → {resp.status_code}")
        except httpx.HTTPError as e:
            logger.error(f"Webhook failed: {self.url} → {e}")

    async def aclose(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending))
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
