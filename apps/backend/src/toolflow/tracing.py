"""Optional tracing sink. Recording an event never fails the caller."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional, Protocol

import httpx

if TYPE_CHECKING:
    from .config import Settings

logger = logging.getLogger(__name__)


class TraceSink(Protocol):
    async def record(self, name: str, metadata: dict[str, Any]) -> None: ...


class NullTraceSink:
    """Drops every event."""

    async def record(self, name: str, metadata: dict[str, Any]) -> None:
        return None


class HttpTraceSink:
    """Posts events as JSON to a tracing ingestion endpoint."""

    def __init__(
        self,
        endpoint: str,
        http_client: httpx.AsyncClient,
        api_key: Optional[str] = None,
    ) -> None:
        self.endpoint = endpoint
        self.http = http_client
        self.api_key = api_key

    @classmethod
    def from_settings(cls, settings: Settings, http_client: httpx.AsyncClient) -> TraceSink:
        if not settings.tracing_endpoint:
            return NullTraceSink()
        return cls(settings.tracing_endpoint, http_client, settings.tracing_api_key)

    async def record(self, name: str, metadata: dict[str, Any]) -> None:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        payload = {
            "name": name,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "metadata": metadata,
        }
        resp = await self.http.post(self.endpoint, json=payload, headers=headers)
        resp.raise_for_status()


async def emit(sink: Optional[TraceSink], name: str, metadata: dict[str, Any]) -> None:
    """Record an event on ``sink``, logging (not raising) any failure."""
    if sink is None:
        return
    try:
        await sink.record(name, metadata)
    except Exception as exc:
        logger.warning("Tracing sink failed to record %s: %s", name, exc)
