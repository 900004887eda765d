"""SQLite-backed local store for per-user action records and config snapshots."""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from dataclasses import asdict
from pathlib import Path
from typing import Iterable

from inbox_moderator.constants import ACTION_CACHE_TTL_DAYS, CACHE_DB_PATH, DEFAULT_USER_ID
from inbox_moderator.models import ActionRecord

LOGGER = logging.getLogger(__name__)

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS action_cache (
    user_id TEXT PRIMARY KEY,
    actions_json TEXT,
    updated_at REAL
);

CREATE TABLE IF NOT EXISTS config_cache (
    user_id TEXT PRIMARY KEY,
    config_json TEXT,
    updated_at REAL
);
"""


class LocalStore:
    """Persistent SQLite store: one JSON blob per user for actions and for config."""

    def __init__(self, db_path: Path | None = None) -> None:
        self.db_path = db_path or CACHE_DB_PATH
        self.db_path = Path(self.db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self.db_path))
        self._conn.row_factory = sqlite3.Row
        self._create_tables()

    def _create_tables(self) -> None:
        self._conn.executescript(_CREATE_TABLES_SQL)

    # --- public API ---

    def read_actions(self, user_id: str) -> str | None:
        row = self._conn.execute(
            "SELECT actions_json FROM action_cache WHERE user_id = ?", (user_id,)
        ).fetchone()
        return row["actions_json"] if row else None

    def write_actions(self, user_id: str, blob: str) -> None:
        with self._conn:
            self._conn.execute(
                "INSERT OR REPLACE INTO action_cache (user_id, actions_json, updated_at) VALUES (?, ?, ?)",
                (user_id, blob, time.time()),
            )

    def read_config(self, user_id: str) -> dict | None:
        row = self._conn.execute(
            "SELECT config_json FROM config_cache WHERE user_id = ?", (user_id,)
        ).fetchone()
        if row is None:
            return None
        try:
            data = json.loads(row["config_json"])
        except (TypeError, ValueError):
            return None
        return data if isinstance(data, dict) else None

    def write_config(self, user_id: str, config: dict) -> None:
        with self._conn:
            self._conn.execute(
                "INSERT OR REPLACE INTO config_cache (user_id, config_json, updated_at) VALUES (?, ?, ?)",
                (user_id, json.dumps(config), time.time()),
            )

    def clear(self) -> None:
        """Drop and recreate all tables."""
        self._conn.executescript(
            "DROP TABLE IF EXISTS action_cache;"
            "DROP TABLE IF EXISTS config_cache;"
        )
        self._create_tables()

    def get_info(self) -> dict:
        """Return store statistics."""
        file_size = self.db_path.stat().st_size if self.db_path.exists() else 0

        users = []
        for row in self._conn.execute(
            "SELECT user_id, actions_json, updated_at FROM action_cache ORDER BY updated_at DESC"
        ).fetchall():
            try:
                count = len(json.loads(row["actions_json"]))
            except (TypeError, ValueError):
                count = 0
            users.append({"user_id": row["user_id"], "action_count": count, "updated_at": row["updated_at"]})

        config_count = self._conn.execute("SELECT COUNT(*) AS c FROM config_cache").fetchone()["c"]

        return {
            "db_file_size": file_size,
            "users": users,
            "config_snapshots": config_count,
        }

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    # --- context manager ---

    def __enter__(self) -> LocalStore:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        self.close()


def _record_from_json(message_id: str, data: dict) -> ActionRecord:
    return ActionRecord(
        message_id=message_id,
        action=str(data.get("action") or "clean"),
        category=data.get("category"),
        confidence=float(data.get("confidence") or 0.0),
        keyword=data.get("keyword"),
        recorded_at=float(data.get("ts") or data.get("recorded_at") or 0.0),
    )


class ActionCache:
    """Per-user map of message id -> last outcome, written through to the store."""

    def __init__(self, store: LocalStore, ttl_days: int = ACTION_CACHE_TTL_DAYS) -> None:
        self._store = store
        self._ttl_seconds = ttl_days * 24 * 60 * 60
        self._records: dict[str, ActionRecord] = {}
        self.user_id = DEFAULT_USER_ID

    def load(self, user_id: str | None) -> dict[str, ActionRecord]:
        """Load the records of ``user_id``. A corrupt blob yields an empty cache."""
        self.user_id = user_id or DEFAULT_USER_ID
        self._records = {}

        blob = self._store.read_actions(self.user_id)
        if blob:
            try:
                raw = json.loads(blob)
                if not isinstance(raw, dict):
                    raise ValueError("action cache is not an object")
                self._records = {
                    message_id: _record_from_json(message_id, data) for message_id, data in raw.items()
                }
            except (TypeError, ValueError, AttributeError) as exc:
                LOGGER.warning("Discarding corrupt action cache for %s: %s", self.user_id, exc)
                self._records = {}

        cutoff = time.time() - self._ttl_seconds
        expired = [mid for mid, rec in self._records.items() if rec.recorded_at and rec.recorded_at < cutoff]
        for message_id in expired:
            del self._records[message_id]
        if expired:
            self._save()

        LOGGER.info("Loaded %s cached actions for user %s", len(self._records), self.user_id)
        return dict(self._records)

    def _save(self) -> None:
        payload = {}
        for message_id, rec in self._records.items():
            data = asdict(rec)
            del data["message_id"]
            data["ts"] = data.pop("recorded_at")
            payload[message_id] = data
        self._store.write_actions(self.user_id, json.dumps(payload))

    def get(self, message_id: str | None) -> ActionRecord | None:
        if not message_id:
            return None
        return self._records.get(message_id)

    def record(
        self,
        message_id: str,
        action: str,
        category: str | None = None,
        confidence: float = 0.0,
        keyword: str | None = None,
    ) -> ActionRecord:
        """Overwrite the outcome for ``message_id`` and persist immediately."""
        rec = ActionRecord(
            message_id=message_id,
            action=action,
            category=category,
            confidence=confidence,
            keyword=keyword,
            recorded_at=time.time(),
        )
        self._records[message_id] = rec
        self._save()
        return rec

    def clear(self) -> None:
        self._records = {}
        self._save()

    def prune_keywords(self, active_keywords: Iterable[str]) -> int:
        """Drop keyword outcomes whose keyword is no longer configured."""
        active = {k.lower() for k in active_keywords}
        stale = [
            mid for mid, rec in self._records.items() if rec.keyword and rec.keyword.lower() not in active
        ]
        for message_id in stale:
            del self._records[message_id]
        if stale:
            self._save()
            LOGGER.info("Cleaned %s stale keyword actions", len(stale))
        return len(stale)

    def records(self) -> list[ActionRecord]:
        return list(self._records.values())

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._records

    def __len__(self) -> int:
        return len(self._records)
