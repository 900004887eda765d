"""Keyword-first, AI-fallback moderation of a single inbox row."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional, Protocol

import httpx

from .actions import ActionExecutor
from .api_client import ModeratorAPIError
from .constants import (
    ACTION_CLEAN,
    ACTION_COMPLETED,
    ACTION_FLAGGED,
    ACTION_HIDDEN,
    ACTION_SENT,
    MARKER_AWAITING_AI,
    MARKER_DONE_CLEAN,
    MARKER_EMPTY,
    MARKER_ERROR,
    MARKER_PROCESSING,
    MARKER_SENT,
    MIN_TEXT_LENGTH,
    PROCESSED_ATTR,
    TEXT_PREVIEW_CHARS,
)
from .models import Badge, ClassifierResult, KeywordRule, MessageRow, ModerationConfig, RowOutcome
from .page import HostPage
from .polling import Timings, pause
from .session import Session

LOGGER = logging.getLogger(__name__)


class Classifier(Protocol):
    async def moderate(self, text: str, message_id: str, platform: str) -> ClassifierResult:
        ...


class EventSink(Protocol):
    def log_event(self, event: dict) -> None:
        ...


def match_keyword(text: str, rules: Iterable[KeywordRule]) -> Optional[KeywordRule]:
    """Return the first active rule, in configured order, whose keyword occurs in ``text``."""
    lowered = text.lower()
    for rule in rules:
        if not rule.is_active:
            continue
        if rule.keyword.lower() in lowered:
            return rule
    return None


def resolve_keyword_actions(rule: KeywordRule, config: ModerationConfig) -> tuple[bool, bool, bool]:
    """Return (badge, hide, complete) for a matched rule under the global switches."""
    badge = rule.wants_badge
    hide = rule.wants_hide or (badge and config.auto_hide_enabled)
    complete = rule.wants_complete or (badge and config.auto_complete_enabled)
    return badge, hide, complete


def keyword_marker(rule: KeywordRule) -> str:
    raw = (rule.action or "").lower().replace(" ", "")
    return "done-kw-" + raw.replace(",", "-")


class ModerationEngine:
    """Classifies one row and applies the resulting badge / hide / complete actions."""

    def __init__(
        self,
        page: HostPage,
        session: Session,
        executor: ActionExecutor,
        classifier: Classifier,
        events: EventSink,
        timings: Timings | None = None,
    ) -> None:
        self._page = page
        self._session = session
        self._executor = executor
        self._classifier = classifier
        self._events = events
        self._timings = timings or Timings()

    async def _mark(self, row: Any, marker: str) -> None:
        await self._page.set_attribute(row, PROCESSED_ATTR, marker)

    async def process_row(self, row: Any, message: MessageRow) -> RowOutcome:
        outcome = RowOutcome()
        message_id = message.message_id
        if not message_id:
            return outcome
        cache = self._session.cache

        if message.is_sent:
            await self._mark(row, MARKER_SENT)
            cache.record(message_id, ACTION_SENT)
            return outcome

        if len(message.text) < MIN_TEXT_LENGTH:
            await self._mark(row, MARKER_EMPTY)
            cache.record(message_id, ACTION_CLEAN)
            return outcome

        await self._mark(row, MARKER_PROCESSING)
        LOGGER.info(
            "Processing [%s/%s] %r %s",
            message.platform,
            message.message_type,
            message.text[:TEXT_PREVIEW_CHARS],
            message_id,
        )

        config = self._session.config or ModerationConfig()
        rule = match_keyword(message.text, config.keywords)
        if rule is not None:
            return await self._apply_keyword(row, message, rule, config)
        return await self._apply_classifier(row, message, config)

    async def _hide(self, row: Any, message_id: str, config: ModerationConfig) -> bool:
        if config.dry_run_mode:
            LOGGER.info("[DRY RUN] Would hide %s", message_id)
            return False
        hidden = await self._executor.hide_with_retry(row, message_id)
        await pause(self._timings.between_actions)
        return hidden

    async def _complete(self, row: Any, message_id: str, config: ModerationConfig) -> bool:
        if config.dry_run_mode:
            LOGGER.info("[DRY RUN] Would mark %s complete", message_id)
            return False
        return await self._executor.complete(row, message_id)

    async def _apply_keyword(
        self, row: Any, message: MessageRow, rule: KeywordRule, config: ModerationConfig
    ) -> RowOutcome:
        outcome = RowOutcome()
        message_id = message.message_id
        badge, will_hide, will_complete = resolve_keyword_actions(rule, config)
        LOGGER.info(
            "KW MATCH: %r -> badge:%s hide:%s complete:%s", rule.keyword, badge, will_hide, will_complete
        )

        if badge:
            await self._page.add_badge(row, Badge(rule.keyword, 1.0, is_keyword=True))
            outcome.flagged = True

        hide_failed = False
        if will_hide:
            outcome.hidden = await self._hide(row, message_id, config)
            hide_failed = not outcome.hidden and not config.dry_run_mode
        if will_complete:
            outcome.completed = await self._complete(row, message_id, config)

        if outcome.hidden:
            action = ACTION_HIDDEN
        elif outcome.completed:
            action = ACTION_COMPLETED
        else:
            action = ACTION_FLAGGED

        await self._mark(row, MARKER_ERROR if hide_failed else keyword_marker(rule))
        self._session.cache.record(message_id, action, category=rule.keyword, confidence=1.0, keyword=rule.keyword)

        if will_hide:
            outcome.flagged = True

        if badge or will_hide:
            self._events.log_event(
                {
                    "message_id": message_id,
                    "message_text": message.text,
                    "platform": message.platform,
                    "action_taken": ACTION_HIDDEN if outcome.hidden else ACTION_FLAGGED,
                    "source": "keyword",
                    "category": rule.keyword,
                    "confidence": 1.0,
                }
            )
        if outcome.completed:
            self._events.log_event(
                {
                    "message_id": message_id,
                    "message_text": message.text,
                    "platform": message.platform,
                    "action_taken": ACTION_COMPLETED,
                    "source": "keyword",
                }
            )
        return outcome

    async def _apply_classifier(self, row: Any, message: MessageRow, config: ModerationConfig) -> RowOutcome:
        outcome = RowOutcome()
        message_id = message.message_id
        await self._mark(row, MARKER_AWAITING_AI)

        try:
            result = await self._classifier.moderate(message.text, message_id, message.platform)
        except (httpx.HTTPError, ModeratorAPIError, ValueError) as exc:
            LOGGER.warning("Classifier error for %s: %s", message_id, exc)
            await self._mark(row, MARKER_ERROR)
            self._session.cache.record(message_id, ACTION_CLEAN)
            return outcome

        if not result.flagged:
            LOGGER.info("Clean: %s", message_id)
            await self._mark(row, MARKER_DONE_CLEAN)
            self._session.cache.record(message_id, ACTION_CLEAN)
            return outcome

        category = result.highest_category or "flagged"
        confidence = result.confidence or 0.5
        should_hide = config.auto_hide_enabled and result.action == "hide"
        should_complete = config.auto_complete_enabled and result.should_complete
        LOGGER.info(
            "AI FLAGGED: %s %d%% %s -> action:%s hide:%s complete:%s",
            category,
            round(confidence * 100),
            message_id,
            result.action,
            should_hide,
            should_complete,
        )

        await self._page.add_badge(row, Badge(category, confidence, is_keyword=False))
        outcome.flagged = True

        hide_failed = False
        if should_hide:
            outcome.hidden = await self._hide(row, message_id, config)
            hide_failed = not outcome.hidden and not config.dry_run_mode
        if should_complete:
            outcome.completed = await self._complete(row, message_id, config)

        action = ACTION_HIDDEN if outcome.hidden else ACTION_FLAGGED
        await self._mark(row, MARKER_ERROR if hide_failed else f"done-ai-{action}")
        self._session.cache.record(message_id, action, category=category, confidence=confidence)

        event = {
            "message_id": message_id,
            "platform": message.platform,
            "action_taken": action,
            "source": "ai",
            "category": category,
            "confidence": confidence,
        }
        if result.log_id:
            event["log_id"] = result.log_id
        self._events.log_event(event)
        if outcome.completed:
            self._events.log_event(
                {
                    "message_id": message_id,
                    "message_text": message.text,
                    "platform": message.platform,
                    "action_taken": ACTION_COMPLETED,
                    "source": "ai",
                }
            )
        return outcome
