"""Runtime wiring: one moderator per host page."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from tenacity.wait import wait_base

from .actions import ActionExecutor
from .api_client import ModeratorClient
from .cache import ActionCache, LocalStore
from .config import ConfigLoader
from .constants import MODE_FULL, ROW_WAIT_ATTEMPTS
from .gate import TimestampGate
from .models import ModerationConfig, ScanStats
from .moderation import ModerationEngine
from .page import HostPage
from .polling import Timings, pause
from .reporting import Reporter
from .scanner import ScanOrchestrator, ScanState
from .session import Session
from .watcher import ChangeDetector

LOGGER = logging.getLogger(__name__)


class Moderator:
    """Owns the session and every collaborator for a single host page."""

    def __init__(
        self,
        page: HostPage,
        client: ModeratorClient,
        store: LocalStore,
        timings: Timings | None = None,
        on_stats: Callable[[ScanStats], None] | None = None,
        retry_wait: wait_base | None = None,
    ) -> None:
        self.page = page
        self.client = client
        self.store = store
        self.timings = timings or Timings()
        self.reporter = Reporter(client)
        self.loader = ConfigLoader(client, store, wait=retry_wait)
        self.session = Session(
            cache=ActionCache(store),
            gate=TimestampGate(
                fetch=client.get_last_timestamp, persist=self.reporter.save_timestamp, wait=retry_wait
            ),
        )
        engine = ModerationEngine(
            page,
            self.session,
            ActionExecutor(page, self.timings),
            client,
            self.reporter,
            self.timings,
        )
        self.orchestrator = ScanOrchestrator(
            page,
            self.session,
            engine,
            self.reporter,
            self.timings,
            refresh_config=self.refresh_config,
            on_stats=on_stats,
        )
        self.detector = ChangeDetector(self.orchestrator, page, self.session, refresh_config=self.refresh_config)

    async def refresh_config(self) -> Optional[ModerationConfig]:
        """Reload the remote config; a different user identity resets the session."""
        config = await self.loader.load()
        if config is None:
            return None
        if self.session.apply_config(config):
            await self.orchestrator.clear_markers()
        return config

    async def _wait_for_rows(self) -> bool:
        for _ in range(ROW_WAIT_ATTEMPTS):
            if await self.page.list_rows():
                return True
            await pause(self.timings.row_wait)
        LOGGER.warning("No rows appeared after %s checks", ROW_WAIT_ATTEMPTS)
        return False

    async def start(self) -> Optional[ScanState]:
        """Initialize the session, run the first full scan and start change detection."""
        session = self.session
        session.user_id = self.client.auth.user_id()
        session.cache.load(session.user_id)

        await self._wait_for_rows()

        config = await self.refresh_config()
        state = None
        if config is None:
            session.stats.status = "no_config"
            LOGGER.warning("No moderation config available; sign in with 'inbox-moderator login'")
        else:
            session.cache.prune_keywords(rule.keyword for rule in config.keywords)
            session.full_scan_complete = False
            state = await self.orchestrator.scan(MODE_FULL)

        self.detector.start()
        return state

    async def run_forever(self) -> None:
        await self.start()
        try:
            await asyncio.Event().wait()
        finally:
            await self.close()

    async def rescan(self) -> Optional[ScanState]:
        return await self.orchestrator.rescan()

    async def full_reset(self) -> Optional[ScanState]:
        return await self.orchestrator.full_reset()

    async def close(self) -> None:
        await self.detector.stop()
        await self.reporter.flush()
        await self.client.aclose()
