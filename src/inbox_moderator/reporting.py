"""Fire-and-forget telemetry: moderation log events, counters and gate persistence."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable

from inbox_moderator.api_client import ModeratorClient
from inbox_moderator.models import ScanStats

LOGGER = logging.getLogger(__name__)


class Reporter:
    """Schedules backend writes as background tasks; failures are logged and dropped."""

    def __init__(self, client: ModeratorClient) -> None:
        self._client = client
        self._tasks: set[asyncio.Task] = set()

    def _spawn(self, what: str, coro: Awaitable[None]) -> None:
        async def _guarded() -> None:
            try:
                await coro
            except Exception as exc:  # noqa: BLE001
                LOGGER.warning("Background %s failed: %s", what, exc)

        task = asyncio.get_running_loop().create_task(_guarded())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def log_event(self, event: dict) -> None:
        self._spawn("log event", self._client.send_log(event))

    def send_counters(self, stats: ScanStats) -> None:
        totals = {
            "total_processed": stats.scanned,
            "flagged_total": stats.flagged,
            "auto_hidden_total": stats.hidden,
            "completed_total": stats.completed,
            "today_processed_increment": stats.scanned,
            "today_flagged_increment": stats.flagged,
            "today_auto_hidden_increment": stats.hidden,
            "today_completed_increment": stats.completed,
        }
        self._spawn("counters update", self._client.send_counters(totals))

    def save_timestamp(self, timestamp: int) -> None:
        self._spawn("gate save", self._client.save_last_timestamp(timestamp))

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def flush(self) -> None:
        """Wait for every scheduled write to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
