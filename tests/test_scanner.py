"""Tests for scan orchestration."""

import asyncio

from inbox_moderator.models import ModerationConfig

from fakes import FakeClassifier, Item


def _scan(h, mode=None):
    return asyncio.run(h.orchestrator.scan(mode))


def test_full_scan_processes_and_hides(make_moderation, sample_items):
    h = make_moderation(sample_items, config=ModerationConfig(auto_hide_enabled=True, user_id="u1"))
    state = _scan(h, "full")

    assert sorted(h.page.hide_clicks) == ["A", "C"]
    assert state.scanned == 3
    assert state.hidden == 2
    assert h.session.stats.hidden == 2
    assert h.session.stats.scanned == 3
    assert h.session.gate.value == 300
    assert h.reporter.timestamps == [300]
    assert h.reporter.counters == [{"scanned": 3, "flagged": 2, "hidden": 2, "completed": 0}]
    assert h.session.full_scan_complete
    assert h.session.cache.get("B").action == "clean"


def test_rows_at_or_below_gate_are_skipped(make_moderation):
    items = [Item("NEW", "fresh comment", timestamp=200), Item("OLD", "older comment", timestamp=100)]
    h = make_moderation(items, gate=150)
    _scan(h, "full")

    assert h.classifier.calls == ["NEW"]
    assert h.page.marker("OLD") == "skipped-old"
    assert h.session.gate.value == 200


def test_old_rows_restore_cached_outcome(make_moderation):
    items = [Item("OLD", "older scam", timestamp=100)]
    h = make_moderation(items, gate=150)
    h.session.cache.record("OLD", "hidden", category="spam", confidence=0.9)
    state = _scan(h, "full")

    assert h.classifier.calls == []
    assert h.page.marker("OLD") == "restored-hidden"
    assert h.page.badge("OLD").label == "spam"
    assert state.scanned == 0
    assert h.reporter.counters == []


def test_cached_new_rows_are_restored_not_reprocessed(make_moderation):
    h = make_moderation([Item("X", "a scam", timestamp=500)])
    h.session.cache.record("X", "clean")
    _scan(h, "full")

    assert h.classifier.calls == []
    assert h.page.marker("X") == "restored-clean"
    assert h.page.badge("X") is None


def test_marked_rows_are_never_reprocessed(make_moderation, sample_items):
    h = make_moderation(sample_items)
    _scan(h, "full")
    assert len(h.classifier.calls) == 3

    _scan(h, "visible")
    _scan(h, "full")
    assert len(h.classifier.calls) == 3


def test_full_scan_walks_a_virtualized_list(make_moderation):
    items = [Item(f"m{i}", f"comment number {i}", timestamp=1000 - i) for i in range(7)]
    h = make_moderation(items, window=3)
    state = _scan(h, "full")

    assert sorted(h.classifier.calls) == sorted(item.guid for item in items)
    assert state.scanned == 7
    assert h.session.gate.value == 1000


def test_missing_timestamp_is_processed_as_new_in_full_mode(make_moderation):
    h = make_moderation([Item("N", "no time yet", timestamp=0)])
    _scan(h, "full")

    assert h.classifier.calls == ["N"]
    assert h.session.gate.value > 0


def test_visible_scan_skips_missing_timestamp_once_gate_exists(make_moderation):
    h = make_moderation([Item("N", "no time yet", timestamp=0)], gate=150)
    _scan(h, "visible")

    assert h.classifier.calls == []
    assert h.page.marker("N") == "skipped-no-ts"


def test_visible_scan_processes_new_rows(make_moderation):
    items = [Item("N2", "second new", timestamp=220), Item("N1", "first new", timestamp=210)]
    h = make_moderation(items, gate=150)
    state = _scan(h, "visible")

    assert sorted(h.classifier.calls) == ["N1", "N2"]
    assert state.scanned == 2
    assert h.session.gate.value == 220


def test_recycled_row_drops_stale_marker_and_badge(make_moderation):
    """A node that starts showing another message loses the old marker and badge."""
    h = make_moderation([Item("A", "a scam", timestamp=100)])
    _scan(h, "full")
    node = h.page.nodes[0]
    assert node.badge is not None

    h.page.items = [Item("Z", "a brand new message", timestamp=200)]
    assert asyncio.run(h.orchestrator.has_genuinely_new_items())
    assert "data-moderator-processed" not in node.attrs
    assert node.badge is None
    assert node.attrs["data-moderator-guid"] == "Z"

    _scan(h, "visible")
    assert h.classifier.calls == ["A", "Z"]
    assert h.page.marker("Z") == "done-clean"


def test_genuinely_new_items_ignores_cached_and_old(make_moderation):
    items = [Item("C", "cached", timestamp=300), Item("O", "old", timestamp=100)]
    h = make_moderation(items, gate=150)
    asyncio.run(h.session.gate.ensure_loaded())
    h.session.cache.record("C", "clean")

    assert not asyncio.run(h.orchestrator.has_genuinely_new_items())

    h.page.prepend(Item("N", "new", timestamp=400))
    assert asyncio.run(h.orchestrator.has_genuinely_new_items())


class _ReentrantClassifier(FakeClassifier):
    """Requests more scans while the first scan is still in flight."""

    def __init__(self, orchestrator_ref, modes):
        super().__init__()
        self.orchestrator_ref = orchestrator_ref
        self.modes = modes
        self.pending_seen = []

    async def moderate(self, text, message_id, platform):
        orchestrator = self.orchestrator_ref[0]
        if not self.pending_seen:
            for mode in self.modes:
                assert await orchestrator.scan(mode) is None
            self.pending_seen.append(orchestrator.pending_mode)
        return await super().moderate(text, message_id, platform)


def _coalescing_run(make_moderation, modes):
    ref = []
    classifier = _ReentrantClassifier(ref, modes)
    h = make_moderation([Item("A", "hello there", timestamp=100)], classifier=classifier)
    ref.append(h.orchestrator)
    _scan(h, "full")
    return h, classifier


def test_full_request_supersedes_visible(make_moderation):
    h, classifier = _coalescing_run(make_moderation, ["visible", "full", "visible"])

    assert classifier.pending_seen == ["full"]
    assert h.orchestrator.pending_mode is None
    assert not h.orchestrator.scanning


def test_visible_requests_coalesce(make_moderation):
    h, classifier = _coalescing_run(make_moderation, ["visible", "visible"])

    assert classifier.pending_seen == ["visible"]
    assert h.orchestrator.pending_mode is None


def test_banner_click_allows_bounded_replay(make_moderation):
    """Old uncached rows shown right after a banner click are replayed without moving the gate."""
    items = [Item(f"o{i}", f"old comment {i}", timestamp=140 - i) for i in range(10)]
    h = make_moderation(items, gate=150)
    h.page.banner_visible = True
    state = _scan(h, "visible")

    assert h.page.banner_clicks == 1
    assert state.replayed == 8
    assert len(h.classifier.calls) == 8
    assert state.scanned == 0
    assert h.session.gate.value == 150
    assert h.reporter.counters == []


def test_scan_without_config_is_a_noop(make_moderation, sample_items):
    h = make_moderation(sample_items)
    h.session.config = None

    assert _scan(h, "full") is None
    assert h.classifier.calls == []


def test_scan_errors_do_not_escape(make_moderation, sample_items):
    h = make_moderation(sample_items)

    async def broken():
        raise RuntimeError("page gone")

    h.page.scroll_to_top = broken
    state = _scan(h, "full")

    assert state.scanned == 0
    assert not h.orchestrator.scanning


def test_rescan_clears_markers(make_moderation, sample_items):
    h = make_moderation(sample_items)
    _scan(h, "full")
    asyncio.run(h.orchestrator.rescan())

    # Every row is cached, so nothing is classified twice but all are re-marked.
    assert len(h.classifier.calls) == 3
    assert h.page.marker("A") == "restored-flagged"
    assert h.page.marker("B") == "restored-clean"


def test_full_reset_reprocesses(make_moderation, sample_items):
    h = make_moderation(sample_items)
    _scan(h, "full")
    asyncio.run(h.orchestrator.full_reset())

    assert len(h.classifier.calls) == 6


def test_duplicate_row_in_full_pass_is_restored_from_cache(make_moderation):
    h = make_moderation([Item("D", "see you soon", timestamp=100), Item("D", "see you soon", timestamp=100)])
    _scan(h, "full")

    first, second = h.page.nodes
    assert h.classifier.calls == ["D"]
    assert first.attrs["data-moderator-processed"] == "done-clean"
    assert second.attrs["data-moderator-processed"] == "restored-clean"


def test_duplicate_row_without_cache_is_skipped(make_moderation):
    h = make_moderation([Item("D", "see you soon", timestamp=100), Item("D", "see you soon", timestamp=100)])
    first = asyncio.run(h.page.list_rows())[0]
    first.attrs.update({"data-moderator-guid": "D", "data-moderator-processed": "error"})
    _scan(h, "full")

    second = h.page.nodes[1]
    assert h.classifier.calls == []
    assert second.attrs["data-moderator-processed"] == "skipped-dup"


class _ArrivalDuringScan(FakeClassifier):
    """Prepends a newer item while the first row is being classified."""

    def __init__(self, arrival):
        super().__init__()
        self.page = None
        self.arrival = arrival

    async def moderate(self, text, message_id, platform):
        if self.arrival is not None:
            self.page.prepend(self.arrival)
            self.arrival = None
        return await super().moderate(text, message_id, platform)


def test_visible_scan_defers_rows_newer_than_scan_start(make_moderation):
    classifier = _ArrivalDuringScan(Item("N", "late scam", timestamp=500))
    h = make_moderation([Item("A", "a fine comment", timestamp=200)], gate=150, classifier=classifier)
    classifier.page = h.page

    runs = []
    run_once = h.orchestrator._run

    async def recording_run(mode):
        state = await run_once(mode)
        runs.append((mode, list(classifier.calls)))
        return state

    h.orchestrator._run = recording_run
    _scan(h, "visible")

    assert runs == [("visible", ["A"]), ("visible", ["A", "N"])]
    assert h.page.marker("N") == "done-ai-flagged"
    assert h.session.gate.value == 500
