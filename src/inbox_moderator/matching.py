"""Label matching for host controls.

Host labels differ per platform and change over time, so controls are located
with ordered tiers of increasingly loose rules over normalized label strings.
"""

from __future__ import annotations

import re
from typing import Optional, Sequence

from .constants import COMPLETE_LABELS, HIDE_CONFIRM_LABELS, HIDE_MENU_ITEMS, MORE_ACTIONS_LABELS
from .models import Control

_WS_RE = re.compile(r"\s+")

_KNOWN_HIDE_LABELS = frozenset(label.casefold() for label in HIDE_MENU_ITEMS)
_MORE_ACTIONS = frozenset(label.casefold() for label in MORE_ACTIONS_LABELS)
_COMPLETE = frozenset(label.casefold() for label in COMPLETE_LABELS)
_HIDE_CONFIRM = frozenset(label.casefold() for label in HIDE_CONFIRM_LABELS)


def normalize_label(label: str | None) -> str:
    """Collapse whitespace and casefold a control label."""
    return _WS_RE.sub(" ", label or "").strip().casefold()


def control_label(control: Control) -> str:
    return normalize_label(control.label or control.text)


def match_hide_label(labels: Sequence[str]) -> Optional[int]:
    """Return the index of the label that best names a "hide" menu entry.

    Tiers, first hit wins:
      1. exact match against the known per-platform hide labels
      2. label starts with "hide"
      3. label contains "hide" but not "unhide"
    """
    normalized = [normalize_label(label) for label in labels]

    for idx, label in enumerate(normalized):
        if label in _KNOWN_HIDE_LABELS:
            return idx

    for idx, label in enumerate(normalized):
        if label.startswith("hide"):
            return idx

    for idx, label in enumerate(normalized):
        if "hide" in label and "unhide" not in label:
            return idx

    return None


def match_hide_item(items: Sequence[Control]) -> Optional[Control]:
    idx = match_hide_label([control_label(item) for item in items])
    return items[idx] if idx is not None else None


def _looks_like_more(control: Control) -> bool:
    label = normalize_label(control.label or control.text)
    return "more" in label or "options" in label or label in ("...", "…")


def find_more_actions(controls: Sequence[Control]) -> Optional[Control]:
    """Locate a row's "more actions" button.

    An explicit label match wins when it is visible; otherwise fall back to any
    button whose label mentions "more"/"options", preferring visible ones.
    """
    explicit = [c for c in controls if normalize_label(c.label) in _MORE_ACTIONS]
    for control in explicit:
        if control.visible:
            return control

    fallback: Optional[Control] = None
    for control in controls:
        if not _looks_like_more(control):
            continue
        if control.visible:
            return control
        if fallback is None:
            fallback = control
    return fallback or (explicit[0] if explicit else None)


def find_complete_control(controls: Sequence[Control]) -> Optional[Control]:
    for control in controls:
        if normalize_label(control.label) in _COMPLETE:
            return control
    return None


def find_confirmation(controls: Sequence[Control]) -> Optional[Control]:
    """Pick the confirm button of a hide dialog, preferring the platform-specific one."""
    visible = [c for c in controls if c.visible]
    for control in visible:
        if control_label(control) in _HIDE_CONFIRM:
            return control
    return visible[0] if visible else None
