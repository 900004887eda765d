"""Bounded waits and jittered delays used by UI automation.

Every suspension point in the scan flow goes through :func:`pause` or
:func:`wait_until`, so the whole engine can be run with zero delays in tests.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, fields, replace
from typing import Awaitable, Callable


@dataclass(frozen=True)
class Delay:
    """A base delay in seconds plus up to ``jitter`` seconds of random spread."""

    base: float
    jitter: float = 0.0

    def sample(self) -> float:
        if self.jitter <= 0:
            return self.base
        return self.base + random.random() * self.jitter

    def grow(self, step: float) -> Delay:
        return replace(self, base=self.base + step)


@dataclass(frozen=True)
class Timings:
    """All UI-automation delays and wait bounds in one place."""

    menu_open: Delay = Delay(0.8)
    menu_wait: float = 1.4
    menu_reopen_wait: float = 1.6
    menu_poll: Delay = Delay(0.1, 0.05)
    after_hide_click: Delay = Delay(0.7, 0.3)
    after_confirm: Delay = Delay(0.4, 0.2)
    after_dismiss: Delay = Delay(0.2, 0.1)
    after_complete: Delay = Delay(0.4, 0.2)
    hide_retry: Delay = Delay(0.5, 0.3)
    hide_retry_step: float = 0.3
    between_actions: Delay = Delay(0.3, 0.2)
    after_row: Delay = Delay(0.28, 0.14)
    after_visible_row: Delay = Delay(0.4, 0.2)
    scroll_top_settle: Delay = Delay(0.5)
    scroll_settle: Delay = Delay(0.65, 0.25)
    empty_pass_settle: Delay = Delay(0.45)
    signature_wait: float = 2.2
    signature_poll: Delay = Delay(0.12, 0.08)
    banner_click_settle: Delay = Delay(0.7, 0.3)
    banner_signature_wait: float = 3.5
    top_timestamps_wait: float = 2.5
    top_timestamps_poll: Delay = Delay(0.12, 0.06)
    banner_final_settle: Delay = Delay(0.3)
    row_wait: Delay = Delay(1.0, 0.5)

    @classmethod
    def immediate(cls) -> Timings:
        """Zero every delay and wait bound (used by tests and dry simulations)."""
        values = {}
        for f in fields(cls):
            default = f.default
            values[f.name] = Delay(0.0) if isinstance(default, Delay) else 0.0
        return cls(**values)


async def pause(delay: Delay) -> None:
    await asyncio.sleep(delay.sample())


async def wait_until(
    predicate: Callable[[], Awaitable[bool]],
    timeout: float,
    interval: Delay,
) -> bool:
    """Poll ``predicate`` until it returns True or ``timeout`` seconds pass.

    The predicate is always evaluated at least once. Returns the last result.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        if await predicate():
            return True
        if loop.time() >= deadline:
            return False
        await pause(interval)
