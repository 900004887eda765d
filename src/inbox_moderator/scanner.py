"""Scan orchestration - walks the rendered message list, dedupes, classifies, advances the gate.

Rows are tracked through idempotent markers written onto the host rows. A row
carrying any marker is terminal and is never processed again while the marker
persists. Because the host recycles row nodes, every read reconciles the id a
node last represented before looking at its marker.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Protocol

from .constants import (
    BADGE_RESTORE_THROTTLE,
    FULL_SCAN_MAX_PASSES,
    GUID_ATTR,
    MARKER_ERROR,
    MARKER_SKIPPED_DUP,
    MARKER_SKIPPED_NO_TS,
    MARKER_SKIPPED_OLD,
    MODE_FULL,
    MODE_VISIBLE,
    PROCESSED_ATTR,
    QUIET_ACTIONS,
    REPLAY_BUDGET,
    STAGNANT_SCROLL_LIMIT,
    TOP_TIMESTAMP_ROWS,
    VISIBLE_SCAN_MAX_PASSES,
)
from .models import ActionRecord, Badge, MessageRow, ScanStats
from .moderation import ModerationEngine
from .page import HostPage
from .polling import Timings, pause, wait_until
from .session import Session

LOGGER = logging.getLogger(__name__)


class CounterSink(Protocol):
    def send_counters(self, stats: ScanStats) -> None:
        ...


@dataclass
class ScanState:
    """Counters and bookkeeping for one scan invocation."""

    mode: str
    scanned: int = 0
    flagged: int = 0
    hidden: int = 0
    completed: int = 0
    skipped: int = 0
    replayed: int = 0
    highest_processed: int = 0
    seen: set[str] = field(default_factory=set)


class ScanOrchestrator:
    """Runs full/visible scans one at a time, coalescing requests that arrive mid-scan."""

    def __init__(
        self,
        page: HostPage,
        session: Session,
        engine: ModerationEngine,
        counters: CounterSink,
        timings: Timings | None = None,
        refresh_config: Callable[[], Awaitable[Any]] | None = None,
        on_stats: Callable[[ScanStats], None] | None = None,
    ) -> None:
        self._page = page
        self._session = session
        self._engine = engine
        self._counters = counters
        self._timings = timings or Timings()
        self._refresh_config = refresh_config
        self._on_stats = on_stats
        self._scanning = False
        self._current_mode: Optional[str] = None
        self._pending: Optional[str] = None

    @property
    def scanning(self) -> bool:
        return self._scanning

    @property
    def current_mode(self) -> Optional[str]:
        return self._current_mode

    @property
    def pending_mode(self) -> Optional[str]:
        return self._pending

    def request(self, mode: str) -> None:
        """Queue a scan for after the current one. Full supersedes visible, never the reverse."""
        if self._pending is None or (self._pending == MODE_VISIBLE and mode == MODE_FULL):
            self._pending = mode

    async def scan(self, mode: str | None = None) -> Optional[ScanState]:
        """Run a scan now, or queue it if one is in flight. Returns the last run's state."""
        if self._session.config is None:
            return None

        requested = mode or (MODE_VISIBLE if self._session.full_scan_complete else MODE_FULL)
        if self._scanning:
            self.request(requested)
            return None

        self._scanning = True
        try:
            state = await self._run(requested)
            while self._pending is not None:
                next_mode, self._pending = self._pending, None
                state = await self._run(next_mode)
        finally:
            self._scanning = False
            self._current_mode = None
        return state

    async def _run(self, mode: str) -> ScanState:
        self._current_mode = mode
        state = ScanState(mode=mode)
        gate = self._session.gate
        try:
            await gate.ensure_loaded()
            state.highest_processed = gate.value

            await self.check_new_messages_banner()

            if mode == MODE_FULL:
                await self._full_scan(state)
            else:
                await self._visible_scan(state)

            self._finish(state)

            if await self.check_new_messages_banner():
                self.request(MODE_VISIBLE)
        except Exception:  # noqa: BLE001
            LOGGER.exception("Scan error (%s)", mode)
        return state

    # --- row helpers ---

    async def _marker(self, row: Any) -> Optional[str]:
        return await self._page.get_attribute(row, PROCESSED_ATTR)

    async def _mark(self, row: Any, marker: str) -> None:
        await self._page.set_attribute(row, PROCESSED_ATTR, marker)

    async def _read(self, row: Any) -> MessageRow:
        """Read a row, clearing stale markers if the node now shows another message."""
        message = await self._page.read_row(row)
        if message.message_id:
            previous = await self._page.get_attribute(row, GUID_ATTR)
            if previous != message.message_id:
                if previous:
                    LOGGER.debug("Row recycled: %s -> %s", previous, message.message_id)
                    await self._page.remove_attribute(row, PROCESSED_ATTR)
                    await self._page.clear_decorations(row)
                await self._page.set_attribute(row, GUID_ATTR, message.message_id)
        return message

    async def _snapshot(self) -> list[tuple[Any, MessageRow]]:
        return [(row, await self._read(row)) for row in await self._page.list_rows()]

    async def _signature(self) -> str:
        rows = await self._page.list_rows()
        if not rows:
            return "0||"
        first = (await self._page.read_row(rows[0])).message_id or ""
        last = (await self._page.read_row(rows[-1])).message_id or ""
        return f"{len(rows)}|{first}|{last}"

    async def _restore(self, row: Any, record: ActionRecord) -> None:
        await self._mark(row, f"restored-{record.action}")
        if record.action in QUIET_ACTIONS:
            return
        label = record.keyword or record.category or "Flagged"
        await self._page.add_badge(row, Badge(label, record.confidence or 1.0, is_keyword=bool(record.keyword)))

    def _replay_allowed(self, state: ScanState) -> bool:
        return state.replayed < REPLAY_BUDGET and self._session.in_replay_window()

    async def _process(self, row: Any, message: MessageRow, state: ScanState, new: bool = True) -> None:
        try:
            outcome = await self._engine.process_row(row, message)
        except Exception:  # noqa: BLE001
            LOGGER.warning("Error processing row %s", message.message_id, exc_info=True)
            await self._mark(row, MARKER_ERROR)
            outcome = None

        if not new:
            return
        if outcome is not None:
            state.flagged += int(outcome.flagged)
            state.hidden += int(outcome.hidden)
            state.completed += int(outcome.completed)
        effective = message.timestamp if message.timestamp > 0 else int(time.time())
        state.highest_processed = max(state.highest_processed, effective)

    async def _process_new(self, row: Any, message: MessageRow, state: ScanState) -> None:
        state.scanned += 1
        LOGGER.info("NEW: %s ts: %s", message.message_id, message.timestamp)
        await self._process(row, message, state)

    async def _handle_old(self, row: Any, message: MessageRow, state: ScanState) -> bool:
        """Restore, replay or skip a row at/below the gate. Returns True if it was replayed."""
        gate = self._session.gate.value
        cached = self._session.cache.get(message.message_id)
        if cached is not None:
            LOGGER.info("RESTORE_CACHED_OLD: %s ts=%s gate=%s", message.message_id, message.timestamp, gate)
            await self._restore(row, cached)
            state.skipped += 1
            return False

        if self._replay_allowed(state):
            state.replayed += 1
            LOGGER.warning(
                "REPLAY_PROCESS_OLD: %s ts=%s gate=%s replayed=%s",
                message.message_id,
                message.timestamp,
                gate,
                state.replayed,
            )
            await self._process(row, message, state, new=False)
            return True

        LOGGER.info("SKIP_OLD_NO_CACHE: %s ts=%s gate=%s", message.message_id, message.timestamp, gate)
        await self._mark(row, MARKER_SKIPPED_OLD)
        state.skipped += 1
        return False

    # --- list movement ---

    async def _advance_list(self) -> bool:
        """Scroll forward and report whether the rendered list changed."""
        before = await self._signature()
        moved = await self._page.scroll_forward()
        await pause(self._timings.scroll_settle)

        async def _changed() -> bool:
            return await self._signature() != before

        if await wait_until(_changed, self._timings.signature_wait, self._timings.signature_poll):
            return True
        return moved

    async def _wait_for_top_timestamps(self) -> bool:
        async def _populated() -> bool:
            checked = 0
            for _, message in await self._snapshot():
                if checked >= TOP_TIMESTAMP_ROWS:
                    break
                if not message.is_comment:
                    continue
                if message.timestamp <= 0:
                    return False
                checked += 1
            return checked > 0

        return await wait_until(_populated, self._timings.top_timestamps_wait, self._timings.top_timestamps_poll)

    async def check_new_messages_banner(self) -> bool:
        """Click the "new messages" banner if shown and let the list settle. Never aborts a scan."""
        banner = await self._page.new_messages_banner()
        if banner is None or not banner.visible:
            return False

        t = self._timings
        before = await self._signature()
        LOGGER.info("Found 'New Messages' banner, clicking")
        await self._page.click(banner)
        self._session.note_banner_click()
        await pause(t.banner_click_settle)

        async def _changed() -> bool:
            return await self._signature() != before

        await wait_until(_changed, t.banner_signature_wait, t.signature_poll)
        await self._wait_for_top_timestamps()
        await pause(t.banner_final_settle)

        if self._refresh_config is not None:
            try:
                await self._refresh_config()
            except Exception as exc:  # noqa: BLE001
                LOGGER.warning("Config refresh after banner click failed: %s", exc)
        await self.restore_visible_badges(force=True)
        return True

    # --- scan modes ---

    async def _full_scan(self, state: ScanState) -> None:
        session = self._session
        gate = session.gate
        cache = session.cache

        await self._page.scroll_to_top()
        await pause(self._timings.scroll_top_settle)

        stagnant = 0
        for _ in range(FULL_SCAN_MAX_PASSES):
            comment_rows = [(row, msg) for row, msg in await self._snapshot() if msg.is_comment]

            if not comment_rows:
                if not await self._advance_list():
                    break
                await pause(self._timings.empty_pass_settle)
                continue

            top = max(msg.timestamp for _, msg in comment_rows)
            has_unmarked = False
            for row, _ in comment_rows:
                if await self._marker(row) is None:
                    has_unmarked = True
                    break

            if gate.value > 0 and 0 < top <= gate.value:
                LOGGER.info("All visible rows are at/below the gate; restoring/skipping. top=%s gate=%s", top, gate.value)
                for row, _ in comment_rows:
                    message = await self._read(row)
                    if not message.message_id or await self._marker(row) is not None:
                        continue
                    await self._handle_old(row, message, state)
                    state.seen.add(message.message_id)

            elif has_unmarked:
                for row, _ in comment_rows:
                    message = await self._read(row)
                    message_id = message.message_id
                    if not message_id:
                        continue

                    if await self._marker(row) is not None:
                        state.seen.add(message_id)
                        continue

                    if message_id in state.seen:
                        cached = cache.get(message_id)
                        if cached is not None:
                            await self._restore(row, cached)
                        else:
                            await self._mark(row, MARKER_SKIPPED_DUP)
                        continue
                    state.seen.add(message_id)

                    if gate.is_old(message.timestamp):
                        await self._handle_old(row, message, state)
                        continue

                    cached = cache.get(message_id)
                    if cached is not None:
                        await self._restore(row, cached)
                        state.skipped += 1
                        continue

                    await self._process_new(row, message, state)
                    await pause(self._timings.after_row)

            if await self._advance_list():
                stagnant = 0
            else:
                stagnant += 1
                if stagnant >= STAGNANT_SCROLL_LIMIT:
                    break

        session.full_scan_complete = True

    async def _visible_scan(self, state: ScanState) -> None:
        gate = self._session.gate
        cache = self._session.cache

        upper = 0
        for row, message in await self._snapshot():
            if not message.is_comment or await self._marker(row) is not None:
                continue
            ts = message.timestamp
            if ts > 0 and (gate.value <= 0 or ts > gate.value):
                upper = max(upper, ts)

        processed: set[str] = set()
        for _ in range(VISIBLE_SCAN_MAX_PASSES):
            found_work = False

            for row in await self._page.list_rows():
                message = await self._read(row)
                message_id = message.message_id
                if await self._marker(row) is not None:
                    continue
                if not message.is_comment or not message_id or message_id in processed:
                    continue

                ts = message.timestamp
                if gate.value > 0 and ts <= 0:
                    await self._mark(row, MARKER_SKIPPED_NO_TS)
                    state.skipped += 1
                    continue

                if gate.is_old(ts):
                    replay_possible = cache.get(message_id) is None and self._replay_allowed(state)
                    if replay_possible:
                        processed.add(message_id)
                    if await self._handle_old(row, message, state):
                        found_work = True
                        await pause(self._timings.after_visible_row)
                        break
                    continue

                if upper > 0 and ts > upper:
                    # Arrived after this scan started; handled by the follow-up scan.
                    self.request(MODE_VISIBLE)
                    continue

                cached = cache.get(message_id)
                if cached is not None:
                    await self._restore(row, cached)
                    state.skipped += 1
                    continue

                processed.add(message_id)
                found_work = True
                await self._process_new(row, message, state)
                # Hiding/completing re-renders the list; start over from a fresh read.
                await pause(self._timings.after_visible_row)
                break

            if not found_work:
                break

    def _finish(self, state: ScanState) -> None:
        session = self._session
        session.gate.advance(state.highest_processed)

        if state.scanned > 0:
            stats = session.stats
            stats.scanned = state.scanned
            stats.flagged = state.flagged
            stats.hidden = state.hidden
            stats.completed = state.completed
            stats.skipped = state.skipped
            stats.stamp()
            LOGGER.info(
                "Scan complete (%s): processed=%s skipped=%s flagged=%s hidden=%s completed=%s gate=%s",
                state.mode,
                state.scanned,
                state.skipped,
                state.flagged,
                state.hidden,
                state.completed,
                session.gate.value,
            )
            if self._on_stats is not None:
                self._on_stats(stats)
            self._counters.send_counters(stats)
        elif state.skipped:
            LOGGER.info("Scan: all %s rows skipped (already processed)", state.skipped)

    # --- used by the change detector and session commands ---

    async def restore_visible_badges(self, force: bool = False) -> None:
        """Re-apply cached outcomes to rendered rows that lost or never had their marker."""
        session = self._session
        now = session.clock()
        last = session.last_badge_restore_at
        if not force and last is not None and now - last < BADGE_RESTORE_THROTTLE:
            return
        session.last_badge_restore_at = now

        for row, message in await self._snapshot():
            if not message.is_comment or not message.message_id:
                continue
            cached = session.cache.get(message.message_id)

            if await self._marker(row) is not None:
                if cached is not None and cached.action not in QUIET_ACTIONS and not await self._page.has_badge(row):
                    LOGGER.info("RESTORE_BADGE_MISSING: %s action=%s", message.message_id, cached.action)
                    await self._restore(row, cached)
                continue

            if cached is None:
                # Inside the replay window old rows stay unmarked so a scan can replay them.
                if session.gate.is_old(message.timestamp) and not session.in_replay_window():
                    await self._mark(row, MARKER_SKIPPED_OLD)
                continue

            await self._restore(row, cached)

    async def has_genuinely_new_items(self) -> bool:
        for row, message in await self._snapshot():
            if await self._marker(row) is not None:
                continue
            if not message.is_comment or not message.message_id:
                continue
            if message.message_id in self._session.cache:
                continue
            if self._session.gate.is_old(message.timestamp):
                continue
            return True
        return False

    async def has_unmarked_rows(self) -> bool:
        for row, message in await self._snapshot():
            if message.is_comment and await self._marker(row) is None:
                return True
        return False

    async def clear_markers(self) -> None:
        """Strip every marker and decoration from the rendered rows."""
        for row in await self._page.list_rows():
            await self._page.remove_attribute(row, PROCESSED_ATTR)
            await self._page.clear_decorations(row)

    async def rescan(self) -> Optional[ScanState]:
        LOGGER.info("Manual rescan")
        await self.clear_markers()
        self._session.rescan()
        return await self.scan(MODE_FULL)

    async def full_reset(self) -> Optional[ScanState]:
        LOGGER.info("Full reset")
        self._session.full_reset()
        await self.clear_markers()
        return await self.scan(MODE_FULL)
