"""Remote moderation config: parsing, change detection and cached fallback."""

from __future__ import annotations

import logging
from typing import Any

import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_incrementing

from inbox_moderator.api_client import AuthRequiredError, ModeratorAPIError, ModeratorClient, is_retryable_error
from inbox_moderator.cache import LocalStore
from inbox_moderator.constants import CONFIG_FETCH_ATTEMPTS, KW_BADGE
from inbox_moderator.models import CategoryThreshold, KeywordRule, ModerationConfig

LOGGER = logging.getLogger(__name__)


def to_bool(value: Any) -> bool:
    """Lenient boolean parsing for values stored as strings or numbers."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    if isinstance(value, (int, float)):
        return value == 1
    return bool(value)


def _to_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def parse_config(raw: dict, default_user: str | None = None) -> ModerationConfig:
    """Build a :class:`ModerationConfig` from the backend's JSON payload."""
    threshold = _to_float(raw.get("threshold", raw.get("confidence_threshold")), 0.7)

    keywords: list[KeywordRule] = []
    for entry in raw.get("keywords") or []:
        if not isinstance(entry, dict) or not str(entry.get("keyword") or "").strip():
            continue
        keywords.append(
            KeywordRule(
                keyword=str(entry["keyword"]),
                action=str(entry.get("action") or KW_BADGE),
                is_active=to_bool(entry.get("is_active", True)),
            )
        )

    categories: list[CategoryThreshold] = []
    for entry in raw.get("categories") or []:
        if isinstance(entry, dict) and entry.get("key"):
            categories.append(CategoryThreshold(str(entry["key"]), _to_float(entry.get("threshold"), threshold)))
    if not categories:
        for key in raw.get("enabled_categories") or []:
            categories.append(CategoryThreshold(str(key), threshold))

    return ModerationConfig(
        keywords=keywords,
        categories=categories,
        threshold=threshold,
        auto_hide_enabled=to_bool(raw.get("auto_hide_enabled")),
        auto_complete_enabled=to_bool(raw.get("auto_complete_enabled")),
        dry_run_mode=to_bool(raw.get("dry_run_mode")),
        ai_model=str(raw.get("ai_model") or ""),
        user_id=str(raw.get("user_id") or default_user or "") or None,
    )


def config_fingerprint(config: ModerationConfig) -> str:
    """Order-insensitive summary of the settings that change moderation decisions."""
    parts = [
        f"h:{config.auto_hide_enabled}",
        f"c:{config.auto_complete_enabled}",
        f"d:{config.dry_run_mode}",
        f"t:{config.threshold}",
        f"m:{config.ai_model}",
    ]
    cats = sorted(f"{c.key}={c.threshold}" for c in config.categories)
    parts.append("cats:" + ("|".join(cats) if cats else "none"))
    kws = sorted(f"{k.keyword}={k.action}{'' if k.is_active else ':off'}" for k in config.keywords)
    parts.append("kw:" + ("|".join(kws) if kws else "none"))
    return ";".join(parts)


@retry(
    retry=retry_if_exception(is_retryable_error),
    wait=wait_incrementing(start=1.0, increment=0.8),
    stop=stop_after_attempt(CONFIG_FETCH_ATTEMPTS),
    reraise=True,
)
async def _fetch_config(client: ModeratorClient) -> dict:
    return await client.fetch_config()


class ConfigLoader:
    """Fetch the config with retries, falling back to the last snapshot for the user."""

    def __init__(self, client: ModeratorClient, store: LocalStore, wait=None) -> None:  # noqa: ANN001
        self._client = client
        self._store = store
        self._fetch = _fetch_config.retry_with(wait=wait) if wait is not None else _fetch_config
        self.from_cache = False

    async def load(self) -> ModerationConfig | None:
        user_id = self._client.auth.user_id()
        try:
            raw = await self._fetch(self._client)
        except AuthRequiredError as exc:
            LOGGER.warning("Config unavailable: %s", exc)
            return None
        except (httpx.HTTPError, ModeratorAPIError, ValueError) as exc:
            cached = self._store.read_config(user_id)
            if cached is None:
                LOGGER.warning("Config fetch failed and no cached snapshot for %s: %s", user_id, exc)
                return None
            LOGGER.warning("Using cached config for %s (fetch failed: %s)", user_id, exc)
            self.from_cache = True
            return parse_config(cached, default_user=user_id)

        self.from_cache = False
        self._store.write_config(user_id, raw)
        return parse_config(raw, default_user=user_id)
