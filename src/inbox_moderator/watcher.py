"""Change detection: debounced host mutations plus a periodic poll, both funnelled into one decision."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Coroutine, Iterable

from .constants import (
    BADGE_CLASS,
    CONFIG_REFRESH_INTERVAL,
    GUID_ATTR,
    MODE_FULL,
    MODE_VISIBLE,
    MUTATION_DEBOUNCE,
    POLL_INTERVAL,
    PROCESSED_ATTR,
)
from .page import HostPage
from .scanner import ScanOrchestrator
from .session import Session

LOGGER = logging.getLogger(__name__)

OWN_ATTRIBUTES = (PROCESSED_ATTR, GUID_ATTR)


@dataclass(frozen=True)
class Mutation:
    """One host mutation record.

    ``kind`` is ``"attributes"`` or ``"childList"``; ``added`` holds the class
    attribute of each added node (empty string for text nodes).
    """

    kind: str
    attribute: str | None = None
    added: tuple[str, ...] = ()


def is_own_mutation(mutation: Mutation) -> bool:
    """True when the mutation was caused by our own markers or badges."""
    if mutation.kind == "attributes":
        return mutation.attribute in OWN_ATTRIBUTES
    if mutation.kind == "childList":
        return all(BADGE_CLASS in classes.split() for classes in mutation.added)
    return False


class ChangeDetector:
    """Decides when to scan and in which mode."""

    def __init__(
        self,
        orchestrator: ScanOrchestrator,
        page: HostPage,
        session: Session,
        refresh_config: Callable[[], Awaitable[Any]] | None = None,
        poll_interval: float = POLL_INTERVAL,
        debounce: float = MUTATION_DEBOUNCE,
        config_interval: float = CONFIG_REFRESH_INTERVAL,
    ) -> None:
        self._orchestrator = orchestrator
        self._page = page
        self._session = session
        self._refresh_config = refresh_config
        self._poll_interval = poll_interval
        self._debounce = debounce
        self._config_interval = config_interval
        self._debounce_task: asyncio.Task | None = None
        self._loops: list[asyncio.Task] = []
        self._scans: set[asyncio.Task] = set()

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._scans.add(task)
        task.add_done_callback(self._scans.discard)
        return task

    def on_mutation(self, mutations: Iterable[Mutation]) -> None:
        """Feed host mutation records; scans start after a quiet period."""
        if all(is_own_mutation(m) for m in mutations):
            return
        if self._debounce_task is not None and not self._debounce_task.done():
            self._debounce_task.cancel()
        self._debounce_task = asyncio.get_running_loop().create_task(self._debounced())

    async def _debounced(self) -> None:
        await asyncio.sleep(self._debounce)
        # Detached so a later mutation only cancels the wait, never a running scan.
        self._spawn(self._guarded_check("observer"))

    async def _guarded_check(self, trigger: str) -> None:
        try:
            await self.maybe_scan(trigger)
        except Exception:  # noqa: BLE001
            LOGGER.exception("%s: scan check failed", trigger)

    async def maybe_scan(self, trigger: str) -> None:
        orchestrator = self._orchestrator
        session = self._session
        if session.config is None:
            return

        banner = await self._page.new_messages_banner()
        has_banner = banner is not None and banner.visible

        if orchestrator.scanning:
            if has_banner:
                orchestrator.request(MODE_VISIBLE)
            elif session.full_scan_complete:
                if await orchestrator.has_genuinely_new_items():
                    orchestrator.request(MODE_VISIBLE)
            else:
                orchestrator.request(MODE_FULL)
            return

        if has_banner:
            LOGGER.info("%s: 'New Messages' banner detected", trigger)
            await orchestrator.scan(MODE_VISIBLE)
            return

        if session.full_scan_complete:
            await orchestrator.restore_visible_badges()
            if await orchestrator.has_genuinely_new_items():
                LOGGER.info("%s: new items detected", trigger)
                await orchestrator.scan(MODE_VISIBLE)
            return

        if await orchestrator.has_unmarked_rows():
            await orchestrator.scan(MODE_FULL)

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self._poll_interval)
            await self._guarded_check("poll")

    async def _config_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config_interval)
            try:
                await self._refresh_config()
            except Exception as exc:  # noqa: BLE001
                LOGGER.warning("Periodic config refresh failed: %s", exc)

    @property
    def running(self) -> bool:
        return bool(self._loops)

    def start(self) -> None:
        if self._loops:
            return
        loop = asyncio.get_running_loop()
        self._loops.append(loop.create_task(self._poll_loop()))
        if self._refresh_config is not None:
            self._loops.append(loop.create_task(self._config_loop()))
        LOGGER.info("Change detection started (poll every %ss)", self._poll_interval)

    async def stop(self) -> None:
        tasks = list(self._loops)
        if self._debounce_task is not None:
            tasks.append(self._debounce_task)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._loops.clear()
        self._debounce_task = None
        if self._scans:
            await asyncio.gather(*list(self._scans), return_exceptions=True)
