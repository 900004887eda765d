"""Constants for Inbox Moderator."""

from pathlib import Path

# --- Config paths ---
CONFIG_DIR = Path.home() / ".inbox-moderator"
TOKEN_PATH = CONFIG_DIR / "token.json"
CACHE_DB_PATH = CONFIG_DIR / "cache.db"

# --- Backend API ---
DEFAULT_API_URL = "http://localhost:3000"
API_URL_ENVVAR = "INBOX_MODERATOR_API_URL"
REQUEST_TIMEOUT = 15.0  # seconds
TOKEN_REFRESH_MARGIN = 120  # refresh tokens expiring within this many seconds
CONFIG_FETCH_ATTEMPTS = 4  # first try + 3 retries
GATE_FETCH_ATTEMPTS = 4
DEFAULT_USER_ID = "default"

# --- Row markers (attributes written onto host rows) ---
PROCESSED_ATTR = "data-moderator-processed"
GUID_ATTR = "data-moderator-guid"
BADGE_CLASS = "moderator-badge"

MARKER_SENT = "sent"
MARKER_EMPTY = "empty"
MARKER_ERROR = "error"
MARKER_PROCESSING = "processing"
MARKER_AWAITING_AI = "awaiting-ai"
MARKER_DONE_CLEAN = "done-clean"
MARKER_SKIPPED_OLD = "skipped-old"
MARKER_SKIPPED_DUP = "skipped-dup"
MARKER_SKIPPED_NO_TS = "skipped-no-ts"

# --- Action records ---
ACTION_CLEAN = "clean"
ACTION_SENT = "sent"
ACTION_FLAGGED = "flagged"
ACTION_HIDDEN = "hidden"
ACTION_COMPLETED = "completed"
ACTION_EMPTY = "empty"
ACTIONS = (ACTION_CLEAN, ACTION_SENT, ACTION_FLAGGED, ACTION_HIDDEN, ACTION_COMPLETED, ACTION_EMPTY)
# Outcomes that carry no badge when restored
QUIET_ACTIONS = (ACTION_CLEAN, ACTION_SENT, ACTION_EMPTY)

ACTION_CACHE_TTL_DAYS = 7

# --- Keyword action sets ---
KW_BADGE = "badge_only"
KW_AUTO_HIDE = "auto_hide"
KW_COMPLETE = "complete"
KW_BOTH = "both"

# --- Scan modes ---
MODE_FULL = "full"
MODE_VISIBLE = "visible"

# --- Scan bounds ---
FULL_SCAN_MAX_PASSES = 80
VISIBLE_SCAN_MAX_PASSES = 40
STAGNANT_SCROLL_LIMIT = 2
REPLAY_BUDGET = 8
REPLAY_WINDOW_SECONDS = 20.0  # after a "new messages" banner click
MIN_TEXT_LENGTH = 2
TOP_TIMESTAMP_ROWS = 6
HIDE_ATTEMPTS = 3
ROW_WAIT_ATTEMPTS = 30
BADGE_RESTORE_THROTTLE = 0.8  # seconds

# --- Change detection ---
POLL_INTERVAL = 6.0
CONFIG_REFRESH_INTERVAL = 10.0
MUTATION_DEBOUNCE = 1.2

# --- Platforms ---
PLATFORM_ALIASES = {
    "facebook": "facebook",
    "fb_instagram_account": "instagram",
    "twitter": "twitter",
    "youtube": "youtube",
    "tiktok": "tiktok",
    "threads": "threads",
    "linkedin": "linkedin",
}

# --- Host controls ---
MORE_ACTIONS_LABELS = ["More Actions", "More actions", "More options"]
COMPLETE_LABELS = ["Mark Complete", "Mark As Complete"]
HIDE_CONFIRM_LABELS = ["Hide Comment"]

HIDE_MENU_ITEMS = [
    "Hide on Facebook",
    "Hide on Instagram",
    "Hide on Twitter",
    "Hide on X",
    "Hide on X (Twitter)",
    "Hide on Twitter/X",
    "Hide Reply on X",
    "Hide Reply on Twitter",
    "Hide Message on X",
    "Hide Message on Twitter",
    "Hide on YouTube",
    "Hide on TikTok",
    "Hide on LinkedIn",
    "Hide on Threads",
    "Hide on FB",
    "Hide on IG",
    "Hide on Meta",
    "Hide comment on Facebook",
    "Hide comment on Instagram",
    "Hide reply on Facebook",
    "Hide reply on Instagram",
    "Hide Comment",
    "Hide Post",
    "Hide Reply",
    "Hide this reply",
    "Hide this comment",
    "Hide message",
    "Hide",
]

# --- Display ---
TEXT_PREVIEW_CHARS = 50
