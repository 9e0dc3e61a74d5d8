from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import httpx
import structlog

logger = structlog.get_logger()


class AnalyticsSink:
    """Fire-and-forget event records. Posting never blocks or fails a lookup."""

    def __init__(self, url: str, http: httpx.AsyncClient):
        self.url = url
        self._http = http
        self._tasks: set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    def track(self, event: str, **properties) -> None:
        if not self.enabled:
            return
        record = {
            "event": event,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "properties": properties,
        }
        task = asyncio.create_task(self._post(record))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _post(self, record: dict) -> None:
        try:
            resp = await self._http.post(self.url, json=record, timeout=5.0)
            if resp.status_code >= 400:
                logger.warning("analytics_rejected", status=resp.status_code, analytics_event=record["event"])
        except httpx.HTTPError as e:
            logger.warning("analytics_post_failed", error=str(e), analytics_event=record["event"])

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
