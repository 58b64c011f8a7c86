"""CLI job that harvests Google Maps businesses for a query/location pair."""

from __future__ import annotations

import argparse
import json
import logging
from collections import deque
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Deque, List, Optional

from leadharvest.core.browser import MapsBrowser
from leadharvest.core.commit import CommitPipeline
from leadharvest.core.config import ConfigError, Settings, get_settings
from leadharvest.core.db import PostgresStore
from leadharvest.core.extractor import RecordExtractor
from leadharvest.core.ledger import DedupLedger
from leadharvest.core.progress import ProgressTracker
from leadharvest.core.reconcile import reconcile
from leadharvest.core.site_enricher import SiteEnricher
from leadharvest.core.source import CandidateSource, build_search_url
from leadharvest.models import (
    BusinessRecord,
    Candidate,
    CommitOutcome,
    LoopOutcome,
    ProgressState,
    Rejection,
    RunResult,
    RunStatus,
)

logger = logging.getLogger(__name__)

EXIT_CONFIG_ERROR = 2
EXIT_SHORTFALL = 3

ProgressCallback = Callable[[int, List[BusinessRecord]], None]


class Phase(Enum):
    LOADING = "loading"
    EXPANDING = "expanding"
    EXTRACTING = "extracting"
    DONE = "done"
    RECONCILING = "reconciling"


@dataclass
class _Run:
    state: ProgressState
    ledger: DedupLedger = field(default_factory=DedupLedger)
    source: Optional[CandidateSource] = None
    results: List[BusinessRecord] = field(default_factory=list)
    on_progress: Optional[ProgressCallback] = None
    duplicates_skipped: int = 0
    store_duplicates: int = 0
    rejected: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)


class HarvestController:
    """Drives one search until the requested number of records is stored.

    The store and browser are injected; nothing here holds process-wide state.
    """

    def __init__(
        self,
        store,
        browser,
        *,
        settings: Optional[Settings] = None,
        tracker: Optional[ProgressTracker] = None,
        extractor: Optional[RecordExtractor] = None,
        pipeline: Optional[CommitPipeline] = None,
        source_factory: Optional[Callable[[str], CandidateSource]] = None,
    ) -> None:
        self.store = store
        self.browser = browser
        self.settings = settings or get_settings()
        self._enricher: Optional[SiteEnricher] = None
        if extractor is None and self.settings.enrich_websites:
            self._enricher = SiteEnricher()

        self.tracker = tracker or ProgressTracker(store)
        self.extractor = extractor or RecordExtractor(
            browser,
            settings=self.settings,
            contact_lookup=self._enricher.enrich if self._enricher else None,
        )
        self.pipeline = pipeline or CommitPipeline(
            store,
            max_attempts=self.settings.insert_max_attempts,
            backoff_seconds=self.settings.insert_backoff_seconds,
            failed_dir=Path(self.settings.failed_payload_dir),
        )
        self.source_factory = source_factory or (
            lambda url: CandidateSource(self.browser, url, settings=self.settings)
        )
        self.phase: Optional[Phase] = None

    def _enter(self, phase: Phase) -> Phase:
        if phase is not self.phase:
            logger.debug("Phase %s -> %s", self.phase.value if self.phase else None, phase.value)
        self.phase = phase
        return phase

    def run(
        self,
        query: str,
        location: str,
        target: int,
        on_progress: Optional[ProgressCallback] = None,
    ) -> RunResult:
        """Harvest ``target`` records; always returns, flagging any shortfall."""
        if not query or not query.strip() or not location or not location.strip():
            raise ValueError("query and location must be provided")
        if target < 1:
            raise ValueError("target must be a positive integer")

        logger.info("Starting harvest for %r in %r, target=%d", query, location, target)
        run = _Run(state=ProgressState(query=query, location=location, target=target), on_progress=on_progress)
        start_cursor = 0
        try:
            self._enter(Phase.LOADING)
            run.state, run.ledger = self.tracker.load(query, location, target)
            start_cursor = run.state.cursor
            run.source = self.source_factory(build_search_url(query, location))
            outcome = self._extract_loop(run)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Harvest for %r in %r stopped by an unexpected error: %s", query, location, exc)
            run.errors.append(f"{type(exc).__name__}: {exc}")
            outcome = LoopOutcome(records=list(run.results), cursor=run.state.cursor, status=RunStatus.FAULT)

        self._enter(Phase.DONE)
        self.tracker.persist(run.state)

        self._enter(Phase.RECONCILING)
        reconciled = reconcile(outcome.records, target, self.store, session_id=run.state.session_id)

        result = RunResult(
            records=reconciled.records,
            target=target,
            status=outcome.status,
            cursor=outcome.cursor,
            committed=run.state.committed_this_run,
            duplicates_skipped=run.duplicates_skipped,
            store_duplicates=run.store_duplicates,
            rejected=run.rejected,
            failed=run.failed,
            topped_up=reconciled.topped_up,
            trimmed=reconciled.trimmed,
            errors=run.errors,
        )
        logger.info(
            "Harvest complete: %d/%d records (status=%s, stored=%d, cursor %d -> %d)",
            len(result.records),
            target,
            result.status.value,
            result.committed,
            start_cursor,
            result.cursor,
        )
        if result.shortfall:
            logger.warning("Short by %d records for %r in %r", result.shortfall, query, location)
        return result

    def _extract_loop(self, run: _Run) -> LoopOutcome:
        state = run.state
        buffer: Deque[Candidate] = deque()
        scanned_to = state.cursor
        phase = self._enter(Phase.EXPANDING)

        while not self.tracker.target_met(state):
            if phase is Phase.EXPANDING:
                needed = state.target - state.committed_this_run + self.settings.lookahead_buffer
                batch = run.source.next(state.cursor, needed)
                buffer.extend(batch.candidates)
                scanned_to = batch.scanned_to
                if not buffer:
                    self.tracker.advance(state, scanned_to)
                    self.tracker.persist(state)
                    if batch.exhausted or run.source.exhausted:
                        status = (
                            RunStatus.SCROLL_BUDGET_EXHAUSTED
                            if run.source.budget_exhausted
                            else RunStatus.SOURCE_EXHAUSTED
                        )
                        logger.info(
                            "No more candidates after position %d (%s)", state.cursor, status.value
                        )
                        return LoopOutcome(records=list(run.results), cursor=state.cursor, status=status)
                    continue
                logger.info(
                    "Buffered %d candidates from position %d, stored %d/%d",
                    len(buffer),
                    state.cursor,
                    state.committed_this_run,
                    state.target,
                )
                self.tracker.persist(state)
                phase = self._enter(Phase.EXTRACTING)

            while buffer and not self.tracker.target_met(state):
                self._process(run, buffer.popleft())

            if not buffer:
                self.tracker.advance(state, scanned_to)
                phase = self._enter(Phase.EXPANDING)

        return LoopOutcome(records=list(run.results), cursor=state.cursor, status=RunStatus.TARGET_MET)

    def _process(self, run: _Run, candidate: Candidate) -> None:
        state = run.state
        next_position = candidate.position + 1

        if run.ledger.is_known(candidate.identifier):
            run.duplicates_skipped += 1
            logger.debug("Already known, skipping %s", candidate.identifier)
            self.tracker.advance(state, next_position)
            return

        run.ledger.mark_seen(candidate.identifier)
        extracted = self.extractor.extract(candidate)

        if extracted is Rejection.INCOMPLETE_DATA:
            run.rejected += 1
        elif extracted is Rejection.NAVIGATION_FAILURE:
            run.rejected += 1
            if not run.source.recover(next_position):
                logger.error("Recovery to position %d failed; continuing with the next candidate", next_position)
        else:
            outcome = self.pipeline.commit(extracted, state.session_id)
            if outcome is CommitOutcome.FAILED:
                run.failed += 1
                logger.error("Failed to store %s after retries", extracted.name)
            else:
                if outcome is CommitOutcome.COMMITTED:
                    run.results.append(extracted)
                else:
                    run.store_duplicates += 1
                percent = self.tracker.record_commit(state)
                self.tracker.advance(state, next_position)
                self.tracker.persist(state)
                logger.info(
                    "Progress %d/%d (%d%%) - %s",
                    state.committed_this_run,
                    state.target,
                    percent,
                    extracted.name,
                )
                self._notify(run, percent)

        self.tracker.advance(state, next_position)

    def _notify(self, run: _Run, percent: int) -> None:
        if run.on_progress is None:
            return
        try:
            run.on_progress(percent, list(run.results))
        except Exception as exc:  # noqa: BLE001
            logger.warning("Progress callback raised: %s", exc)

    def close(self) -> None:
        if self._enricher is not None:
            self._enricher.close()
            self._enricher = None


def run_harvest(
    query: str,
    location: str,
    count: int,
    *,
    settings: Optional[Settings] = None,
    headless: Optional[bool] = None,
    init_db: bool = False,
    on_progress: Optional[ProgressCallback] = None,
) -> RunResult:
    """Build the store and browser, run one harvest and release both."""
    settings = settings or get_settings()
    store = PostgresStore.from_settings(settings)
    try:
        if init_db:
            store.ensure_schema()
        with MapsBrowser(settings, headless=headless) as browser:
            controller = HarvestController(store, browser, settings=settings)
            try:
                return controller.run(query, location, count, on_progress=on_progress)
            finally:
                controller.close()
    finally:
        store.close()


def write_results(path: Path, result: RunResult) -> None:
    payload = {
        "target": result.target,
        "returned": len(result.records),
        "shortfall": result.shortfall,
        "status": result.status.value,
        "topped_up": result.topped_up,
        "trimmed": result.trimmed,
        "records": [asdict(record) for record in result.records],
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as fh:
        json.dump(payload, fh, ensure_ascii=False, indent=2)
    logger.info("Wrote %d records to %s", len(result.records), path)


def _log_progress(percent: int, records: List[BusinessRecord]) -> None:
    logger.info("Progress: %d%% (%d businesses collected)", percent, len(records))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Harvest Google Maps businesses into the results store")
    parser.add_argument("query", help="Business type to search, e.g. 'restaurants'")
    parser.add_argument("location", help="Where to search, e.g. 'New York'")
    parser.add_argument("--count", dest="count", type=int, default=10, help="Number of results to return")
    parser.add_argument("--headful", action="store_true", help="Show the browser window")
    parser.add_argument("--init-db", dest="init_db", action="store_true", help="Create tables before running")
    parser.add_argument("--output", type=Path, help="Write the returned records to this JSON file")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )
    if args.count < 1:
        parser.error("--count must be positive")

    try:
        result = run_harvest(
            args.query,
            args.location,
            args.count,
            headless=False if args.headful else None,
            init_db=args.init_db,
            on_progress=_log_progress,
        )
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        return EXIT_CONFIG_ERROR

    if args.output:
        write_results(args.output, result)

    if not result.complete:
        logger.warning(
            "Only found %d/%d results; the search may not have enough businesses",
            len(result.records),
            result.target,
        )
        return EXIT_SHORTFALL
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
