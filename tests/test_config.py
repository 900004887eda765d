"""Tests for remote config parsing and the cached-snapshot fallback."""

import asyncio

import httpx
from tenacity import wait_none

from inbox_moderator.api_client import ModeratorClient
from inbox_moderator.auth import AuthState, AuthStore
from inbox_moderator.config import ConfigLoader, config_fingerprint, parse_config, to_bool

RAW_CONFIG = {
    "threshold": "0.6",
    "auto_hide_enabled": "true",
    "auto_complete_enabled": 0,
    "dry_run_mode": "no",
    "keywords": [
        {"keyword": "buy now", "action": "auto_hide", "is_active": True},
        {"keyword": "  ", "action": "badge_only"},
        {"keyword": "free money", "is_active": "false"},
    ],
    "enabled_categories": ["spam", "harassment"],
}


def test_to_bool():
    assert to_bool("TRUE") and to_bool("1") and to_bool("yes") and to_bool(1) and to_bool(True)
    assert not to_bool("false") and not to_bool(0) and not to_bool(None) and not to_bool("")


def test_parse_config():
    config = parse_config(RAW_CONFIG, default_user="u1")

    assert config.threshold == 0.6
    assert config.auto_hide_enabled
    assert not config.auto_complete_enabled
    assert not config.dry_run_mode
    assert [k.keyword for k in config.keywords] == ["buy now", "free money"]
    assert config.keywords[1].action == "badge_only"
    assert not config.keywords[1].is_active
    assert [c.key for c in config.categories] == ["spam", "harassment"]
    assert config.categories[0].threshold == 0.6
    assert config.user_id == "u1"


def test_parse_config_prefers_explicit_categories():
    config = parse_config({"categories": [{"key": "spam", "threshold": 0.9}], "enabled_categories": ["x"]})
    assert [(c.key, c.threshold) for c in config.categories] == [("spam", 0.9)]
    assert config.threshold == 0.7


def test_fingerprint_ignores_order():
    a = parse_config({"keywords": [{"keyword": "a"}, {"keyword": "b"}]})
    b = parse_config({"keywords": [{"keyword": "b"}, {"keyword": "a"}]})
    c = parse_config({"keywords": [{"keyword": "a"}], "auto_hide_enabled": True})
    assert config_fingerprint(a) == config_fingerprint(b)
    assert config_fingerprint(a) != config_fingerprint(c)


def _load(tmp_path, store, handler, token="token"):
    auth = AuthStore(tmp_path / "token.json")
    if token:
        auth.save(AuthState(access_token=token))
    client = ModeratorClient("http://backend.test", auth=auth, transport=httpx.MockTransport(handler))
    loader = ConfigLoader(client, store, wait=wait_none())

    async def run():
        async with client:
            return await loader.load()

    return loader, asyncio.run(run())


def test_success_caches_snapshot(tmp_path, store):
    loader, config = _load(tmp_path, store, lambda request: httpx.Response(200, json=RAW_CONFIG))

    assert config.auto_hide_enabled
    assert not loader.from_cache
    assert store.read_config("default") == RAW_CONFIG


def test_transient_failures_retry_then_use_snapshot(tmp_path, store):
    store.write_config("default", {"dry_run_mode": True})
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(503)

    loader, config = _load(tmp_path, store, handler)

    assert len(calls) == 4
    assert loader.from_cache
    assert config.dry_run_mode


def test_client_errors_are_not_retried(tmp_path, store):
    store.write_config("default", {"auto_hide_enabled": True})
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(400)

    _, config = _load(tmp_path, store, handler)

    assert len(calls) == 1
    assert config.auto_hide_enabled


def test_no_snapshot_returns_none(tmp_path, store):
    def handler(request):
        raise httpx.ConnectError("offline", request=request)

    _, config = _load(tmp_path, store, handler)
    assert config is None


def test_signed_out_returns_none(tmp_path, store):
    store.write_config("default", {"auto_hide_enabled": True})
    _, config = _load(tmp_path, store, lambda request: httpx.Response(200, json={}), token=None)
    assert config is None
