"""Async HTTP client for the moderation backend."""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from inbox_moderator.auth import AuthState, AuthStore, expires_within
from inbox_moderator.constants import DEFAULT_API_URL, REQUEST_TIMEOUT, TOKEN_REFRESH_MARGIN
from inbox_moderator.models import ClassifierResult

LOGGER = logging.getLogger(__name__)


class ModeratorAPIError(Exception):
    """The backend answered with something we cannot use."""


class AuthRequiredError(ModeratorAPIError):
    """No usable session: the user has to sign in again."""


def is_retryable_error(exc: BaseException) -> bool:
    """Transport failures and overloaded/broken servers are worth another try."""
    if isinstance(exc, httpx.TransportError):
        return True
    return isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code in (429, 500, 502, 503, 504)


def parse_classifier_result(data: Any) -> ClassifierResult:
    if not isinstance(data, dict):
        raise ModeratorAPIError(f"Unexpected classifier response: {data!r}")
    try:
        confidence = float(data.get("confidence") or data.get("highest_score") or 0.0)
    except (TypeError, ValueError):
        confidence = 0.0
    return ClassifierResult(
        flagged=bool(data.get("flagged")),
        highest_category=data.get("highest_category") or None,
        confidence=confidence,
        action=str(data.get("action") or "none"),
        should_complete=bool(data.get("should_complete")),
        log_id=data.get("log_id"),
    )


class ModeratorClient:
    """Bearer-authenticated calls to the backend, refreshing the session when needed."""

    def __init__(
        self,
        base_url: str = DEFAULT_API_URL,
        auth: AuthStore | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = REQUEST_TIMEOUT,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._auth = auth or AuthStore()
        self._http = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    @property
    def auth(self) -> AuthStore:
        return self._auth

    async def _refresh(self, state: AuthState) -> str:
        if not state.refresh_token:
            self._auth.clear()
            raise AuthRequiredError("Session expired. Please sign in again.")
        try:
            response = await self._http.post("/api/auth/refresh", json={"refresh_token": state.refresh_token})
        except httpx.TransportError as exc:
            raise AuthRequiredError(f"Unable to refresh session: {exc}") from exc

        try:
            data = response.json() if response.is_success else {}
        except ValueError:
            data = {}
        access_token = data.get("access_token") if isinstance(data, dict) else None
        if not access_token:
            self._auth.clear()
            raise AuthRequiredError("Session expired. Please sign in again.")

        self._auth.save(AuthState(access_token=access_token, refresh_token=data.get("refresh_token") or ""))
        LOGGER.info("Access token refreshed")
        return access_token

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        state = self._auth.load()
        if not state.access_token:
            raise AuthRequiredError("Not connected. Run 'inbox-moderator login' first.")

        token = state.access_token
        if expires_within(token, TOKEN_REFRESH_MARGIN):
            token = await self._refresh(state)

        extra_headers = kwargs.pop("headers", None) or {}

        def _headers(bearer: str) -> dict:
            return {**extra_headers, "Authorization": f"Bearer {bearer}"}

        response = await self._http.request(method, path, headers=_headers(token), **kwargs)
        if response.status_code == 401:
            token = await self._refresh(self._auth.load())
            response = await self._http.request(method, path, headers=_headers(token), **kwargs)
            if response.status_code == 401:
                self._auth.clear()
                raise AuthRequiredError("Session expired. Please sign in again.")

        response.raise_for_status()
        return response

    # --- endpoints ---

    async def fetch_config(self) -> dict:
        response = await self._request(
            "GET",
            "/api/config",
            params={"ts": int(time.time() * 1000)},
            headers={"Cache-Control": "no-store"},
        )
        data = response.json()
        if not isinstance(data, dict):
            raise ModeratorAPIError("Config response is not an object")
        return data

    async def moderate(self, text: str, message_id: str, platform: str) -> ClassifierResult:
        response = await self._request(
            "POST",
            "/api/moderate",
            json={"message_text": text, "message_id": message_id, "platform": platform or "unknown"},
        )
        result = parse_classifier_result(response.json())
        LOGGER.debug(
            "Moderate result: flagged=%s action=%s category=%s score=%s",
            result.flagged,
            result.action,
            result.highest_category,
            result.confidence,
        )
        return result

    async def send_log(self, event: dict) -> None:
        await self._request("POST", "/api/logs", json=event)

    async def send_counters(self, totals: dict) -> None:
        await self._request("POST", "/api/counters", json=totals)

    async def get_last_timestamp(self) -> Any:
        response = await self._request("GET", "/api/counters/last-timestamp")
        data = response.json()
        return data.get("last_checked_timestamp", 0) if isinstance(data, dict) else 0

    async def save_last_timestamp(self, timestamp: int) -> None:
        await self._request("POST", "/api/counters/last-timestamp", json={"last_checked_timestamp": timestamp})

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> ModeratorClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        await self.aclose()
