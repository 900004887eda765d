"""Tests for hide / complete automation."""

import asyncio

from inbox_moderator.actions import ActionExecutor
from inbox_moderator.polling import Timings

from fakes import FakePage, Item


def _setup(**page_kwargs):
    page = FakePage([Item("A", "spam here", timestamp=100), Item("B", "hello", timestamp=90)], **page_kwargs)
    executor = ActionExecutor(page, Timings.immediate())
    row = asyncio.run(page.list_rows())[0]
    return page, executor, row


def test_hide_with_confirmation_dialog():
    page, executor, row = _setup()

    assert asyncio.run(executor.hide(row, "A")) is True
    assert page.hide_clicks == ["A"]
    assert [item.guid for item in page.visible_items()] == ["B"]


def test_hide_without_confirmation_dialog():
    page, executor, row = _setup(confirm_dialog=False)

    assert asyncio.run(executor.hide(row, "A")) is True
    assert page.items[0].hidden


def test_hide_reopens_menu_once():
    """A menu that renders empty the first time is reopened before giving up."""
    page, executor, row = _setup()
    page.broken_menus = 1

    assert asyncio.run(executor.hide(row, "A")) is True
    assert page.more_clicks["A"] == 2


def test_hide_without_hide_entry_fails():
    page, executor, row = _setup(menu_labels=("Reply", "Like"))

    assert asyncio.run(executor.hide(row, "A")) is False
    assert page.hide_clicks == []


def test_hide_with_retry_recovers():
    page, executor, row = _setup()
    page.broken_menus = 2  # first attempt sees an empty menu twice

    assert asyncio.run(executor.hide_with_retry(row, "A")) is True
    assert page.more_clicks["A"] == 3
    assert page.hide_clicks == ["A"]


def test_hide_with_retry_gives_up():
    page, executor, row = _setup(menu_labels=("Reply",))

    assert asyncio.run(executor.hide_with_retry(row, "A")) is False
    assert page.more_clicks["A"] == 3 * 2


def test_hide_with_retry_survives_page_errors():
    page, executor, row = _setup()

    async def boom(row):
        raise RuntimeError("detached")

    page.row_controls = boom
    assert asyncio.run(executor.hide_with_retry(row, "A")) is False


def test_complete_clicks_once():
    page, executor, row = _setup()

    assert asyncio.run(executor.complete(row, "A")) is True
    assert page.items[0].completed
    assert page.complete_clicks == ["A"]


def test_complete_skips_already_completed():
    """Clicking an active toggle would un-complete the message."""
    page, executor, row = _setup()
    page.items[0].completed = True

    assert asyncio.run(executor.complete(row, "A")) is False
    assert page.items[0].completed
    assert page.complete_clicks == []


def test_complete_skips_disabled_button():
    page, executor, row = _setup()
    page.items[0].complete_disabled = True

    assert asyncio.run(executor.complete(row, "A")) is False
    assert not page.items[0].completed
    assert page.complete_clicks == []
