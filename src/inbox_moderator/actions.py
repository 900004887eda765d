"""Hide / mark-complete automation through the host's own controls."""

from __future__ import annotations

import logging
from typing import Any

from .constants import HIDE_ATTEMPTS
from .matching import find_complete_control, find_confirmation, find_more_actions, match_hide_item
from .models import Control
from .page import HostPage
from .polling import Timings, pause, wait_until

LOGGER = logging.getLogger(__name__)


class ActionExecutor:
    """Clicks through the host UI to hide or complete a row. Never raises for UI misses."""

    def __init__(self, page: HostPage, timings: Timings | None = None, attempts: int = HIDE_ATTEMPTS) -> None:
        self._page = page
        self._timings = timings or Timings()
        self._attempts = attempts

    async def _menu_items(self, timeout: float) -> list[Control]:
        items: list[Control] = []

        async def _rendered() -> bool:
            nonlocal items
            items = [c for c in await self._page.visible_menu_items() if c.visible]
            return bool(items)

        await wait_until(_rendered, timeout, self._timings.menu_poll)
        return items

    async def _confirm_if_prompted(self) -> None:
        confirm = find_confirmation(await self._page.confirmation_controls())
        if confirm is None:
            return
        await self._page.click(confirm)
        LOGGER.info("Confirmed hide dialog")
        await pause(self._timings.after_confirm)

    async def hide(self, row: Any, message_id: str | None = None) -> bool:
        """Single hide attempt: open the row menu, pick the hide entry, confirm."""
        t = self._timings
        await self._page.scroll_into_view(row)

        more = find_more_actions(await self._page.row_controls(row))
        if more is None:
            LOGGER.warning("No more-actions button for %s", message_id)
            return False

        await self._page.click(more)
        await pause(t.menu_open)

        item = match_hide_item(await self._menu_items(t.menu_wait))
        if item is None:
            # Menus render asynchronously; re-open once before giving up.
            await self._page.click(more)
            item = match_hide_item(await self._menu_items(t.menu_reopen_wait))

        if item is None:
            await self._page.dismiss_menu()
            await pause(t.after_dismiss)
            LOGGER.warning("Hide entry not found in menu for %s", message_id)
            return False

        await self._page.click(item)
        LOGGER.info("HIDE clicked for %s -> %s", message_id, item.label or item.text)
        await pause(t.after_hide_click)
        await self._confirm_if_prompted()
        return True

    async def hide_with_retry(self, row: Any, message_id: str | None = None) -> bool:
        """Retry :meth:`hide` with growing jittered backoff; False once attempts run out."""
        backoff = self._timings.hide_retry
        for attempt in range(self._attempts):
            try:
                if await self.hide(row, message_id):
                    return True
            except Exception:  # noqa: BLE001
                LOGGER.exception("Hide attempt %s raised for %s", attempt + 1, message_id)
            await pause(backoff)
            backoff = backoff.grow(self._timings.hide_retry_step)
            try:
                await self._page.scroll_into_view(row)
            except Exception:  # noqa: BLE001
                LOGGER.debug("Could not scroll %s back into view", message_id)
        LOGGER.warning("Hide failed after %s attempts for %s", self._attempts, message_id)
        return False

    async def complete(self, row: Any, message_id: str | None = None) -> bool:
        """Click "mark complete" once, unless it is disabled or already on."""
        button = find_complete_control(await self._page.row_controls(row))
        if button is None:
            LOGGER.info("Complete button not found for %s", message_id)
            return False
        if button.disabled:
            LOGGER.info("Complete disabled for %s", message_id)
            return False
        if button.active:
            # Clicking an active toggle would un-mark the item.
            LOGGER.info("Already completed, skipping %s", message_id)
            return False

        await self._page.click(button)
        LOGGER.info("COMPLETE clicked for %s", message_id)
        await pause(self._timings.after_complete)
        return True
