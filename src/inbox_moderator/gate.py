"""Timestamp gate: the high-water mark below which rows count as already evaluated."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from tenacity import retry, retry_if_exception, stop_after_attempt, wait_incrementing
from tenacity.wait import wait_base

from inbox_moderator.api_client import is_retryable_error
from inbox_moderator.constants import GATE_FETCH_ATTEMPTS

LOGGER = logging.getLogger(__name__)

_MILLISECONDS_FLOOR = 9_999_999_999


def normalize_timestamp(raw: Any) -> int:
    """Coerce a stored gate value to whole seconds (values in milliseconds are scaled down)."""
    try:
        value = int(float(raw or 0))
    except (TypeError, ValueError):
        return 0
    if value > _MILLISECONDS_FLOOR:
        LOGGER.warning("Gate value %s looks like milliseconds, normalizing to seconds", value)
        value //= 1000
    return max(value, 0)


@retry(
    retry=retry_if_exception(is_retryable_error),
    wait=wait_incrementing(start=1.0, increment=0.8),
    stop=stop_after_attempt(GATE_FETCH_ATTEMPTS),
    reraise=True,
)
async def _fetch_with_retry(fetch: Callable[[], Awaitable[Any]]) -> Any:
    return await fetch()


class TimestampGate:
    """Session-local watermark seeded once from the remote store.

    ``fetch`` reads the remote value; ``persist`` schedules a best-effort write
    and must not block. Transport errors and 429/5xx answers are retried before
    the gate falls back to 0.
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[Any]],
        persist: Callable[[int], None],
        wait: wait_base | None = None,
    ) -> None:
        self._fetch = fetch
        self._fetch_with_retry = _fetch_with_retry.retry_with(wait=wait) if wait is not None else _fetch_with_retry
        self._persist = persist
        self.value = 0
        self.loaded = False

    async def ensure_loaded(self) -> int:
        if self.loaded:
            return self.value
        try:
            self.value = normalize_timestamp(await self._fetch_with_retry(self._fetch))
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Could not fetch gate timestamp, defaulting to 0: %s", exc)
            self.value = 0
        self.loaded = True
        LOGGER.info("Gate seeded from server: %s", self.value)
        return self.value

    def is_old(self, timestamp: int) -> bool:
        """True for rows at or below an established gate."""
        return timestamp > 0 and self.value > 0 and timestamp <= self.value

    def advance(self, candidate: int) -> bool:
        """Raise the watermark to ``candidate`` if it is higher; persist in the background."""
        if candidate <= self.value:
            return False
        self.value = candidate
        LOGGER.info("Updated gate timestamp: %s", candidate)
        self._persist(candidate)
        return True

    def reset(self) -> None:
        """Forget the local value so the next scan re-fetches from the server."""
        self.value = 0
        self.loaded = False
