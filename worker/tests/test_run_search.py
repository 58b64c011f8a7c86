import json

import pytest

from fakes import FakeBrowser, FakeStore, SEARCH_URL, card, href, listing, make_settings, place
from leadharvest.core.config import ConfigError
from leadharvest.core.db import SESSIONS_TABLE
from leadharvest.core.extractor import PHONE_SELECTOR
from leadharvest.core.site_enricher import SiteEnricher
from leadharvest.jobs import run_search
from leadharvest.jobs.run_search import HarvestController
from leadharvest.models import BusinessRecord, RunResult, RunStatus


def make_controller(store, browser, tmp_path, **overrides):
    settings = make_settings(failed_payload_dir=str(tmp_path / "failed"), **overrides)
    return HarvestController(store, browser, settings=settings)


def identifiers(result):
    return [record.identifier for record in result.records]


def test_run_stops_exactly_at_target(tmp_path):
    cards, details = listing(12)
    store = FakeStore()
    browser = FakeBrowser(cards, details)
    percents = []

    result = make_controller(store, browser, tmp_path).run(
        "coffee", "Austin", 5, on_progress=lambda percent, records: percents.append(percent)
    )

    assert result.status is RunStatus.TARGET_MET
    assert result.complete
    assert identifiers(result) == [href(i) for i in range(5)]
    assert percents == [20, 40, 60, 80, 100]
    assert len(store.rows()) == 5
    assert store.session()["updated_index"] == 5
    assert store.session()["last_retrieved_count"] == 5
    # Detail pages beyond the target are never opened.
    assert href(5) not in browser.navigations


def test_progress_percentages_round_half_up(tmp_path):
    cards, details = listing(12)
    percents = []

    make_controller(FakeStore(), FakeBrowser(cards, details), tmp_path).run(
        "coffee", "Austin", 8, on_progress=lambda percent, records: percents.append(percent)
    )

    assert percents == [13, 25, 38, 50, 63, 75, 88, 100]


def test_sponsored_cards_are_never_extracted(tmp_path):
    cards, details = listing(6, sponsored={0, 3})
    browser = FakeBrowser(cards, details)

    result = make_controller(FakeStore(), browser, tmp_path).run("coffee", "Austin", 3)

    assert identifiers(result) == [href(1), href(2), href(4)]
    assert result.cursor == 5
    assert href(0) not in browser.navigations
    assert href(3) not in browser.navigations


def test_short_source_returns_partial_list_with_shortfall(tmp_path):
    cards, details = listing(3)
    store = FakeStore()

    result = make_controller(store, FakeBrowser(cards, details), tmp_path).run("coffee", "Austin", 5)

    assert result.status is RunStatus.SOURCE_EXHAUSTED
    assert identifiers(result) == [href(i) for i in range(3)]
    assert result.shortfall == 2
    assert not result.complete
    assert store.session()["last_retrieved_count"] == 3


def test_navigation_failure_skips_candidate_and_reopens_list(tmp_path):
    cards, details = listing(10)
    browser = FakeBrowser(cards, details)
    browser.failing_urls.add(href(4))

    result = make_controller(FakeStore(), browser, tmp_path).run("coffee", "Austin", 5)

    assert identifiers(result) == [href(0), href(1), href(2), href(3), href(5)]
    assert result.rejected == 1
    failed_at = browser.navigations.index(href(4))
    assert browser.navigations[failed_at + 1] == SEARCH_URL


def test_incomplete_places_are_rejected(tmp_path):
    cards, details = listing(6)
    details[href(1)] = dict(details[href(1)], **{PHONE_SELECTOR: ""})

    result = make_controller(FakeStore(), FakeBrowser(cards, details), tmp_path).run("coffee", "Austin", 3)

    assert identifiers(result) == [href(0), href(2), href(3)]
    assert result.rejected == 1


def test_known_urls_are_skipped_without_opening_them(tmp_path):
    cards, details = listing(5)
    store = FakeStore()
    store.add_result(0)
    browser = FakeBrowser(cards, details)

    result = make_controller(store, browser, tmp_path).run("coffee", "Austin", 2)

    assert identifiers(result) == [href(1), href(2)]
    assert result.duplicates_skipped == 1
    assert href(0) not in browser.navigations


def test_store_duplicate_counts_toward_target(tmp_path):
    cards, details = listing(6)
    store = FakeStore()
    # Row written by an earlier run of the same search; the known-url read fails,
    # so only the unique constraint catches it.
    store.add_result(1, session_id=1)
    store.fail_known_url_read = True

    result = make_controller(store, FakeBrowser(cards, details), tmp_path).run("coffee", "Austin", 3)

    assert result.status is RunStatus.TARGET_MET
    assert result.committed == 3
    assert result.store_duplicates == 1
    # The stored duplicate is brought back by reconciliation.
    assert identifiers(result) == [href(0), href(2), href(1)]
    assert result.topped_up == 1
    assert result.trimmed == 0


def test_run_without_session_is_not_topped_up_from_other_searches(tmp_path):
    cards, details = listing(2)
    store = FakeStore()
    store.add_result(50, session_id=99)
    # The session row cannot be created, so the run has no session id.
    store.insert_failures = ["connection refused"]

    result = make_controller(store, FakeBrowser(cards, details), tmp_path).run("coffee", "Austin", 3)

    assert result.status is RunStatus.SOURCE_EXHAUSTED
    assert identifiers(result) == [href(0), href(1)]
    assert result.topped_up == 0
    assert result.shortfall == 1


def test_long_tail_of_rejections_still_reaches_target(tmp_path):
    cards = [card(i) for i in range(120)]
    details = {href(i): place(f"Business {i}", phone="" if i < 80 else f"(512) 555-{i:04d}") for i in range(120)}
    browser = FakeBrowser(cards, details, per_scroll=4)

    result = make_controller(
        FakeStore(), browser, tmp_path, stall_scrolls=7, max_scroll_attempts=200
    ).run("coffee", "Austin", 5)

    assert result.status is RunStatus.TARGET_MET
    assert identifiers(result) == [href(i) for i in range(80, 85)]
    assert result.rejected == 80


def test_failed_inserts_are_saved_and_skipped(tmp_path):
    cards, details = listing(5)
    store = FakeStore()
    store.insert(SESSIONS_TABLE, {"search_term": "coffee", "location": "Austin", "last_retrieved_count": 0, "updated_index": 0})
    store.insert_failures = ["connection reset"] * 3

    result = make_controller(store, FakeBrowser(cards, details), tmp_path).run("coffee", "Austin", 2)

    assert identifiers(result) == [href(1), href(2)]
    assert result.failed == 1
    saved = list((tmp_path / "failed").glob("failed-*.json"))
    assert len(saved) == 1
    payload = json.loads(saved[0].read_text(encoding="utf-8"))
    assert payload["row"]["url"] == href(0)
    assert payload["error"] == "connection reset"


def test_unexpected_error_returns_partial_results(tmp_path):
    cards, details = listing(8)
    store = FakeStore()
    browser = FakeBrowser(cards, details)
    browser.crashing_urls.add(href(2))

    result = make_controller(store, browser, tmp_path).run("coffee", "Austin", 5)

    assert result.status is RunStatus.FAULT
    assert identifiers(result) == [href(0), href(1)]
    assert len(result.errors) == 1
    assert "RuntimeError" in result.errors[0]
    assert store.session()["updated_index"] == 2


def test_second_run_resumes_after_previous_cursor(tmp_path):
    cards, details = listing(10)
    store = FakeStore()

    first = make_controller(store, FakeBrowser(cards, details), tmp_path).run("coffee", "Austin", 3)
    second = make_controller(store, FakeBrowser(cards, details), tmp_path).run("coffee", "Austin", 3)

    assert identifiers(first) == [href(0), href(1), href(2)]
    assert identifiers(second) == [href(3), href(4), href(5)]
    assert len(store.rows(SESSIONS_TABLE)) == 1
    assert store.session()["updated_index"] == 6
    assert store.session()["last_retrieved_count"] == 6


def test_scroll_budget_exhaustion_is_reported(tmp_path):
    cards, details = listing(30)
    browser = FakeBrowser(cards, details, end_marker=False)

    result = make_controller(FakeStore(), browser, tmp_path, max_scroll_attempts=1).run("coffee", "Austin", 20)

    assert result.status is RunStatus.SCROLL_BUDGET_EXHAUSTED
    assert len(result.records) == 16
    assert result.shortfall == 4
    assert browser.scrolls == 1


def test_failing_progress_callback_does_not_stop_run(tmp_path):
    cards, details = listing(4)

    def explode(percent, records):
        raise ValueError("listener gone")

    result = make_controller(FakeStore(), FakeBrowser(cards, details), tmp_path).run(
        "coffee", "Austin", 2, on_progress=explode
    )

    assert result.complete


def test_progress_write_failures_do_not_stop_run(tmp_path):
    cards, details = listing(4)
    store = FakeStore()
    store.fail_updates = True

    result = make_controller(store, FakeBrowser(cards, details), tmp_path).run("coffee", "Austin", 2)

    assert result.complete
    assert store.session()["updated_index"] == 0


@pytest.mark.parametrize(
    "query, location, target",
    [("", "Austin", 3), ("coffee", "  ", 3), ("coffee", "Austin", 0)],
)
def test_run_rejects_invalid_input(tmp_path, query, location, target):
    controller = make_controller(FakeStore(), FakeBrowser([]), tmp_path)
    with pytest.raises(ValueError):
        controller.run(query, location, target)


def test_enrichment_is_wired_when_enabled(tmp_path):
    controller = make_controller(FakeStore(), FakeBrowser([]), tmp_path, enrich_websites=True)

    assert isinstance(controller._enricher, SiteEnricher)
    assert controller.extractor.contact_lookup == controller._enricher.enrich
    controller.close()
    assert controller._enricher is None


def test_run_harvest_releases_store_and_browser(monkeypatch, tmp_path):
    cards, details = listing(4)

    class ClosingStore(FakeStore):
        closed = False
        schema_created = False

        def ensure_schema(self):
            self.schema_created = True

        def close(self):
            self.closed = True

    class ClosingBrowser(FakeBrowser):
        closed = False

        def __enter__(self):
            return self

        def __exit__(self, exc_type, exc, tb):
            self.closed = True

    store = ClosingStore()
    browser = ClosingBrowser(cards, details)
    monkeypatch.setattr(run_search.PostgresStore, "from_settings", lambda settings: store)
    monkeypatch.setattr(run_search, "MapsBrowser", lambda settings, headless=None: browser)

    settings = make_settings(failed_payload_dir=str(tmp_path / "failed"))
    result = run_search.run_harvest("coffee", "Austin", 2, settings=settings, init_db=True)

    assert result.complete
    assert store.schema_created and store.closed
    assert browser.closed


def test_parser_defaults():
    args = run_search.build_parser().parse_args(["coffee", "Austin"])

    assert args.query == "coffee"
    assert args.location == "Austin"
    assert args.count == 10
    assert args.headful is False
    assert args.output is None


def _record(index):
    return BusinessRecord(identifier=href(index), name=f"Business {index}", address="Main", phone="+15125550100")


def test_main_returns_zero_and_writes_output(monkeypatch, tmp_path):
    result = RunResult(records=[_record(0), _record(1)], target=2, status=RunStatus.TARGET_MET)
    monkeypatch.setattr(run_search, "run_harvest", lambda *args, **kwargs: result)
    output = tmp_path / "out" / "results.json"

    code = run_search.main(["coffee", "Austin", "--count", "2", "--output", str(output)])

    assert code == 0
    payload = json.loads(output.read_text(encoding="utf-8"))
    assert payload["returned"] == 2
    assert payload["status"] == "target_met"
    assert payload["topped_up"] == 0
    assert payload["trimmed"] == 0
    assert payload["records"][0]["identifier"] == href(0)


def test_main_reports_shortfall(monkeypatch):
    result = RunResult(records=[_record(0)], target=3, status=RunStatus.SOURCE_EXHAUSTED)
    monkeypatch.setattr(run_search, "run_harvest", lambda *args, **kwargs: result)

    assert run_search.main(["coffee", "Austin", "--count", "3"]) == run_search.EXIT_SHORTFALL


def test_main_reports_config_error(monkeypatch):
    def fail(*args, **kwargs):
        raise ConfigError("DATABASE_URL is required for database connections")

    monkeypatch.setattr(run_search, "run_harvest", fail)

    assert run_search.main(["coffee", "Austin"]) == run_search.EXIT_CONFIG_ERROR
