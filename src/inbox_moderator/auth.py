"""Session token storage for the moderation backend."""

from __future__ import annotations

import base64
import json
import time
from dataclasses import dataclass
from pathlib import Path

from inbox_moderator.constants import DEFAULT_USER_ID, TOKEN_PATH


@dataclass
class AuthState:
    access_token: str = ""
    refresh_token: str = ""


def _jwt_payload(token: str | None) -> dict:
    """Decode the payload segment of a JWT without verifying it."""
    if not token:
        return {}
    parts = token.split(".")
    if len(parts) != 3:
        return {}
    segment = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        payload = json.loads(base64.urlsafe_b64decode(segment.encode("ascii")))
    except (ValueError, UnicodeError):
        return {}
    return payload if isinstance(payload, dict) else {}


def uid_from_token(token: str | None) -> str:
    """Return the ``sub`` claim of ``token``, or the default user id."""
    sub = _jwt_payload(token).get("sub")
    return str(sub) if sub else DEFAULT_USER_ID


def token_expiry(token: str | None) -> float:
    """Return the ``exp`` claim in epoch seconds, 0 when unknown."""
    try:
        return float(_jwt_payload(token).get("exp") or 0)
    except (TypeError, ValueError):
        return 0.0


def expires_within(token: str | None, seconds: float) -> bool:
    exp = token_expiry(token)
    return bool(exp) and exp - time.time() < seconds


class AuthStore:
    """Reads and writes the access/refresh token pair on disk."""

    def __init__(self, path: Path | None = None) -> None:
        self.path = Path(path or TOKEN_PATH)

    def load(self) -> AuthState:
        if not self.path.exists():
            return AuthState()
        try:
            data = json.loads(self.path.read_text())
        except (OSError, ValueError):
            return AuthState()
        if not isinstance(data, dict):
            return AuthState()
        return AuthState(
            access_token=str(data.get("access_token") or ""),
            refresh_token=str(data.get("refresh_token") or ""),
        )

    def save(self, state: AuthState) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(
            json.dumps({"access_token": state.access_token, "refresh_token": state.refresh_token})
        )

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()

    def user_id(self) -> str:
        return uid_from_token(self.load().access_token)
