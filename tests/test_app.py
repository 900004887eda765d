"""End-to-end tests of the moderator runtime against a fake backend."""

import asyncio
import json
import time

import httpx
from tenacity import wait_none

from inbox_moderator.api_client import ModeratorClient
from inbox_moderator.app import Moderator
from inbox_moderator.auth import AuthState, AuthStore
from inbox_moderator.cache import ActionCache
from inbox_moderator.polling import Timings

from fakes import FakePage, make_token


class FakeBackend:
    def __init__(self, config):
        self.config = config
        self.gate = 0
        self.logs = []
        self.counters = []
        self.saved_timestamps = []

    def __call__(self, request):
        path = request.url.path
        body = json.loads(request.content) if request.content else {}
        if path == "/api/config":
            return httpx.Response(200, json=self.config)
        if path == "/api/moderate":
            flagged = "scam" in body["message_text"]
            return httpx.Response(
                200,
                json={
                    "flagged": flagged,
                    "highest_category": "spam" if flagged else None,
                    "confidence": 0.9 if flagged else 0.0,
                    "action": "hide" if flagged else "none",
                },
            )
        if path == "/api/logs":
            self.logs.append(body)
            return httpx.Response(200, json={"ok": True})
        if path == "/api/counters":
            self.counters.append(body)
            return httpx.Response(200, json={"ok": True})
        if path == "/api/counters/last-timestamp":
            if request.method == "POST":
                self.saved_timestamps.append(body["last_checked_timestamp"])
                return httpx.Response(200, json={"ok": True})
            return httpx.Response(200, json={"last_checked_timestamp": self.gate})
        return httpx.Response(404)


def _moderator(tmp_path, store, backend, items):
    auth = AuthStore(tmp_path / "token.json")
    auth.save(AuthState(access_token=make_token("u1", exp=int(time.time()) + 3600), refresh_token="r"))
    client = ModeratorClient("http://backend.test", auth=auth, transport=httpx.MockTransport(backend))
    page = FakePage(items)
    stats_seen = []
    moderator = Moderator(page, client, store, Timings.immediate(), on_stats=stats_seen.append, retry_wait=wait_none())
    return moderator, page, stats_seen


def test_start_runs_initial_full_scan(tmp_path, store, sample_items):
    backend = FakeBackend({"auto_hide_enabled": True, "keywords": [{"keyword": "kept", "action": "badge_only"}]})

    seeded = ActionCache(store)
    seeded.load("u1")
    seeded.record("gone", "flagged", keyword="removed keyword")
    seeded.record("kept-msg", "flagged", keyword="kept")

    moderator, page, stats_seen = _moderator(tmp_path, store, backend, sample_items)

    async def run():
        await moderator.start()
        await moderator.close()

    asyncio.run(run())

    session = moderator.session
    assert session.user_id == "u1"
    assert session.full_scan_complete
    assert sorted(page.hide_clicks) == ["A", "C"]
    assert stats_seen[0].hidden == 2
    assert backend.saved_timestamps == [300]
    assert backend.counters[0]["auto_hidden_total"] == 2
    assert backend.counters[0]["today_processed_increment"] == 3
    assert {log["message_id"] for log in backend.logs} == {"A", "C"}
    assert "gone" not in session.cache
    assert "kept-msg" in session.cache
    assert store.read_config("u1")["auto_hide_enabled"] is True


def test_start_without_retry_waits(tmp_path, store, sample_items):
    def offline(request):
        raise httpx.ConnectError("offline", request=request)

    moderator, page, _ = _moderator(tmp_path, store, offline, sample_items)

    async def run():
        await moderator.start()
        await moderator.close()

    asyncio.run(run())

    assert moderator.session.config is None
    assert moderator.session.stats.status == "no_config"
    assert page.hide_clicks == []


def test_user_switch_resets_session(tmp_path, store, sample_items):
    backend = FakeBackend({})
    moderator, page, _ = _moderator(tmp_path, store, backend, sample_items)

    async def run():
        await moderator.start()
        backend.config = {"user_id": "u2"}
        await moderator.refresh_config()
        await moderator.close()

    asyncio.run(run())

    session = moderator.session
    assert session.user_id == "u2"
    assert session.cache.user_id == "u2"
    assert len(session.cache) == 0
    assert not session.full_scan_complete
    assert not session.gate.loaded
    assert all("data-moderator-processed" not in node.attrs for node in page.nodes)
