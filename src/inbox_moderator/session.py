"""Per-session moderation state and its reset rules."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable

from inbox_moderator.cache import ActionCache
from inbox_moderator.config import config_fingerprint
from inbox_moderator.constants import REPLAY_WINDOW_SECONDS
from inbox_moderator.gate import TimestampGate
from inbox_moderator.models import ModerationConfig, ScanStats

LOGGER = logging.getLogger(__name__)


@dataclass
class Session:
    """Everything the orchestrator mutates between scans.

    A user-identity change replaces the cache, the gate and the scan flags
    wholesale; DOM-side markers are cleared by the orchestrator.
    """

    cache: ActionCache
    gate: TimestampGate
    config: ModerationConfig | None = None
    user_id: str | None = None
    full_scan_complete: bool = False
    stats: ScanStats = field(default_factory=ScanStats)
    last_banner_click_at: float | None = None
    last_badge_restore_at: float | None = None
    replay_window: float = REPLAY_WINDOW_SECONDS
    clock: Callable[[], float] = time.monotonic
    _fingerprint: str | None = None

    def switch_user(self, user_id: str) -> None:
        LOGGER.info("User switch: %s -> %s", self.user_id, user_id)
        self.user_id = user_id
        self.cache.load(user_id)
        self.gate.reset()
        self.full_scan_complete = False
        self.stats = ScanStats(status="running")
        self._fingerprint = None

    def apply_config(self, config: ModerationConfig) -> bool:
        """Install a freshly loaded config; return True when it belongs to another user."""
        switched = False
        if config.user_id and config.user_id != self.user_id:
            if self.user_id is None:
                self.user_id = config.user_id
                if self.cache.user_id != config.user_id:
                    self.cache.load(config.user_id)
            else:
                self.switch_user(config.user_id)
                switched = True

        fingerprint = config_fingerprint(config)
        if self._fingerprint is not None and fingerprint != self._fingerprint:
            # Already-terminal rows keep their outcome; only future rows see the change.
            LOGGER.info("Config changed, applying to future messages only")
        self._fingerprint = fingerprint
        self.config = config
        self.stats.status = "running"

        LOGGER.info(
            "Config loaded: user=%s keywords=%s categories=%s threshold=%s hide=%s complete=%s dry_run=%s",
            self.user_id,
            len(config.keywords),
            len(config.categories),
            config.threshold,
            config.auto_hide_enabled,
            config.auto_complete_enabled,
            config.dry_run_mode,
        )
        return switched

    def rescan(self) -> None:
        self.gate.reset()
        self.full_scan_complete = False

    def full_reset(self) -> None:
        self.cache.clear()
        self.gate.reset()
        self.full_scan_complete = False

    def note_banner_click(self) -> None:
        self.last_banner_click_at = self.clock()

    def in_replay_window(self) -> bool:
        if self.last_banner_click_at is None:
            return False
        return self.clock() - self.last_banner_click_at < self.replay_window
