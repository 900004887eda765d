"""Shared fixtures for tests."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

import inbox_moderator.auth as auth_module
import inbox_moderator.cache as cache_module
from inbox_moderator.actions import ActionExecutor
from inbox_moderator.cache import ActionCache, LocalStore
from inbox_moderator.gate import TimestampGate
from inbox_moderator.models import KeywordRule, ModerationConfig
from inbox_moderator.moderation import ModerationEngine
from inbox_moderator.polling import Timings
from inbox_moderator.scanner import ScanOrchestrator
from inbox_moderator.session import Session

from fakes import FakeClassifier, FakePage, FakeReporter, Item


@pytest.fixture
def store(tmp_path) -> LocalStore:
    with LocalStore(db_path=tmp_path / "cache.db") as s:
        yield s


@pytest.fixture
def isolated_home(tmp_path, monkeypatch):
    """Point the token file and the cache database at a temporary directory."""
    monkeypatch.setattr(cache_module, "CACHE_DB_PATH", tmp_path / "cache.db")
    monkeypatch.setattr(auth_module, "TOKEN_PATH", tmp_path / "token.json")
    return tmp_path


@pytest.fixture
def hide_config() -> ModerationConfig:
    return ModerationConfig(
        keywords=[
            KeywordRule("free money", "badge_only"),
            KeywordRule("buy now", "auto_hide"),
            KeywordRule("retired phrase", "auto_hide", is_active=False),
        ],
        auto_hide_enabled=True,
        user_id="u1",
    )


@pytest.fixture
def sample_items() -> list[Item]:
    return [
        Item("A", "this is a scam offer", timestamp=300),
        Item("B", "thanks for the quick reply", timestamp=200),
        Item("C", "another scam link", timestamp=100),
    ]


@pytest.fixture
def make_moderation(store):
    """Build a page/session/engine/orchestrator stack around a :class:`FakePage`."""

    def _make(items, config=None, gate=0, classifier=None, window=None, user_id="u1"):
        page = FakePage(items, window=window)
        reporter = FakeReporter()

        async def fetch_gate():
            return gate

        session = Session(cache=ActionCache(store), gate=TimestampGate(fetch_gate, reporter.save_timestamp))
        session.user_id = user_id
        session.cache.load(user_id)
        session.apply_config(config or ModerationConfig(user_id=user_id))

        classifier = classifier or FakeClassifier()
        timings = Timings.immediate()
        executor = ActionExecutor(page, timings)
        engine = ModerationEngine(page, session, executor, classifier, reporter, timings)
        orchestrator = ScanOrchestrator(page, session, engine, reporter, timings)
        return SimpleNamespace(
            page=page,
            session=session,
            reporter=reporter,
            classifier=classifier,
            executor=executor,
            engine=engine,
            orchestrator=orchestrator,
        )

    return _make
