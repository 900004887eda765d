"""Data models for Inbox Moderator."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .constants import ACTION_CLEAN, KW_AUTO_HIDE, KW_BADGE, KW_BOTH, KW_COMPLETE, PLATFORM_ALIASES


def normalize_platform(network: str | None) -> str:
    """Map a host network name onto a platform tag."""
    net = (network or "unknown").strip().lower() or "unknown"
    if net in PLATFORM_ALIASES:
        return PLATFORM_ALIASES[net]
    if "threads" in net:
        return "threads"
    if "twitter" in net or net == "x":
        return "twitter"
    return net


@dataclass
class MessageRow:
    """Read-only view of one rendered inbox row."""

    message_id: str | None
    text: str = ""
    platform: str = "unknown"
    timestamp: int = 0  # seconds, 0 when the host has not rendered it yet
    is_sent: bool = False  # outbound message written by the account itself
    message_type: str = "unknown"

    @classmethod
    def from_attributes(cls, attrs: dict[str, Any]) -> MessageRow:
        """Build a row from raw host attributes, tolerating missing or junk values."""
        try:
            timestamp = int(float(attrs.get("timestamp") or 0))
        except (TypeError, ValueError):
            timestamp = 0
        sent = attrs.get("sent")
        return cls(
            message_id=attrs.get("guid") or None,
            text=str(attrs.get("text") or "").strip(),
            platform=normalize_platform(attrs.get("network")),
            timestamp=max(timestamp, 0),
            is_sent=sent is True or str(sent).lower() == "true",
            message_type=str(attrs.get("type") or "unknown"),
        )

    @property
    def is_comment(self) -> bool:
        """Whether this row is a comment, reply or mention we moderate."""
        kind = self.message_type.lower()
        if "comment" in kind:
            return True
        if "threads_" in kind and ("reply" in kind or "mention" in kind):
            return True
        if self.platform in ("twitter", "threads"):
            return "mention" in kind or "reply" in kind
        return False


@dataclass
class ActionRecord:
    """Last known moderation outcome for one message."""

    message_id: str
    action: str = ACTION_CLEAN
    category: str | None = None
    confidence: float = 0.0
    keyword: str | None = None
    recorded_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class KeywordRule:
    """A configured keyword with the action set it triggers."""

    keyword: str
    action: str = KW_BADGE
    is_active: bool = True

    @property
    def actions(self) -> set[str]:
        parts = {a.strip() for a in (self.action or KW_BADGE).lower().split(",") if a.strip()}
        if KW_BOTH in parts:
            parts.update((KW_BADGE, KW_AUTO_HIDE))
        return parts

    @property
    def wants_badge(self) -> bool:
        return KW_BADGE in self.actions

    @property
    def wants_hide(self) -> bool:
        return KW_AUTO_HIDE in self.actions

    @property
    def wants_complete(self) -> bool:
        return KW_COMPLETE in self.actions


@dataclass(frozen=True)
class CategoryThreshold:
    key: str
    threshold: float


@dataclass
class ModerationConfig:
    """Snapshot of the remote moderation settings for one user."""

    keywords: list[KeywordRule] = field(default_factory=list)
    categories: list[CategoryThreshold] = field(default_factory=list)
    threshold: float = 0.7
    auto_hide_enabled: bool = False
    auto_complete_enabled: bool = False
    dry_run_mode: bool = False
    ai_model: str = ""
    user_id: str | None = None


@dataclass
class ClassifierResult:
    """Response of the remote AI classifier."""

    flagged: bool
    highest_category: str | None = None
    confidence: float = 0.0
    action: str = "none"  # "hide" | "badge" | "none"
    should_complete: bool = False
    log_id: str | None = None


@dataclass
class RowOutcome:
    flagged: bool = False
    hidden: bool = False
    completed: bool = False


@dataclass
class ScanStats:
    """Counters for the most recent scan that processed new rows."""

    scanned: int = 0
    flagged: int = 0
    hidden: int = 0
    completed: int = 0
    skipped: int = 0
    last_scan: str | None = None
    status: str = "initializing"

    def stamp(self) -> None:
        self.last_scan = datetime.now().isoformat()


@dataclass
class Control:
    """Snapshot of an interactive host control (button, menu item, dialog button)."""

    handle: Any
    label: str = ""  # explicit attribute or aria-label
    text: str = ""  # rendered text content
    visible: bool = True
    disabled: bool = False
    active: bool = False  # pressed / checked / already-on state


@dataclass(frozen=True)
class Badge:
    """Decoration appended to a moderated row."""

    label: str
    confidence: float
    is_keyword: bool = False

    @property
    def level(self) -> str:
        if self.confidence >= 0.7:
            return "high"
        if self.confidence >= 0.4:
            return "medium"
        return "low"

    @property
    def caption(self) -> str:
        prefix = "KW: " if self.is_keyword else ""
        return f"{prefix}{self.label} {round(self.confidence * 100)}%"
