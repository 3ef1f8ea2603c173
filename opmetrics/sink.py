"""Delivery of event payloads to the remote collector."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Protocol

import httpx

from .config import DEFAULT_COLLECTOR_URL, MetricsSettings
from .events import EventPayload

logger = logging.getLogger("opmetrics.sink")

SOURCE_KEY_HEADER = "Sparrow-Source-Key"


class EventSink(Protocol):
    """Minimal surface the reporter needs from a collector client."""

    def has_source_key(self) -> bool:
        """Whether a delivery credential is configured."""

    async def send(self, payload: EventPayload) -> None:
        """Deliver one payload; failures are raised to the caller."""


@dataclass(slots=True)
class HttpEventSink:
    """POSTs events as JSON to ``<base_url>/api/v1/event``.

    An empty ``source_key`` acts as a kill-switch: nothing is ever sent.
    """

    source_key: str = ""
    base_url: str = DEFAULT_COLLECTOR_URL
    timeout_s: float | None = 5.0
    client: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(cls, settings: MetricsSettings) -> HttpEventSink:
        return cls(
            source_key=settings.source_key,
            base_url=settings.collector_url,
            timeout_s=settings.timeout_s,
        )

    def has_source_key(self) -> bool:
        return bool(self.source_key)

    @asynccontextmanager
    async def _client_context(self) -> AsyncIterator[httpx.AsyncClient]:
        if self.client is not None:
            yield self.client
            return
        async with httpx.AsyncClient(timeout=self.timeout_s) as client:
            yield client

    async def send(self, payload: EventPayload) -> None:
        if not self.source_key:
            return
        url = f"{self.base_url.rstrip('/')}/api/v1/event"
        headers = {
            "Content-Type": "application/json",
            SOURCE_KEY_HEADER: self.source_key,
        }
        async with self._client_context() as client:
            response = await client.post(url, json=payload.to_wire(), headers=headers)
        response.raise_for_status()
        logger.debug(
            "event_delivered",
            extra={"event": payload.event, "status_code": response.status_code},
        )


__all__ = ["EventSink", "HttpEventSink", "SOURCE_KEY_HEADER"]
