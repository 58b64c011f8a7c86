"""Resumable per-search progress: cursor, committed count and target."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from leadharvest.core.db import RESULTS_TABLE, SESSIONS_TABLE
from leadharvest.core.ledger import DedupLedger
from leadharvest.models import ProgressState

logger = logging.getLogger(__name__)


def progress_percent(committed: int, target: int) -> int:
    """Percentage of ``target`` reached, rounded half up and capped at 100."""
    if target <= 0:
        return 100
    return min(100, (200 * max(0, committed) + target) // (2 * target))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProgressTracker:
    """Loads and persists the search_sessions row for one (query, location)."""

    def __init__(
        self,
        store,
        *,
        sessions_table: str = SESSIONS_TABLE,
        results_table: str = RESULTS_TABLE,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.sessions_table = sessions_table
        self.results_table = results_table
        self.clock = clock

    def load(self, query: str, location: str, target: int) -> Tuple[ProgressState, DedupLedger]:
        if target < 1:
            raise ValueError("target must be a positive integer")

        state = ProgressState(query=query, location=location, target=target)
        try:
            session = self._load_or_create_session(query, location)
        except Exception as exc:  # noqa: BLE001
            logger.error("Could not read search progress for %r in %r: %s", query, location, exc)
            session = None

        if session:
            state.session_id = session.get("id")
            state.cursor = int(session.get("updated_index") or 0)
            state.committed_count = int(session.get("last_retrieved_count") or 0)
            state.updated_at = session.get("updated_at")

        try:
            ledger = DedupLedger.from_store(self.store, self.results_table)
        except Exception as exc:  # noqa: BLE001
            logger.error("Could not load known identifiers; relying on store uniqueness: %s", exc)
            ledger = DedupLedger()

        logger.info(
            "Progress for %r in %r: %d stored previously, resuming at position %d (session=%s)",
            query,
            location,
            state.committed_count,
            state.cursor,
            state.session_id,
        )
        return state, ledger

    def _load_or_create_session(self, query: str, location: str) -> Optional[Dict[str, Any]]:
        key = {"search_term": query, "location": location}
        rows = self.store.select(self.sessions_table, filters=key, limit=1)
        if rows:
            return rows[0]

        created = self.store.insert(
            self.sessions_table,
            {**key, "last_retrieved_count": 0, "updated_index": 0},
        )
        if created.success and created.row:
            return created.row
        if created.is_duplicate:
            # Another run created the row between our select and insert.
            rows = self.store.select(self.sessions_table, filters=key, limit=1)
            return rows[0] if rows else None
        logger.warning("Could not create search session: %s", created.error)
        return None

    def record_commit(self, state: ProgressState) -> int:
        state.committed_this_run += 1
        state.committed_count += 1
        return self.percent(state)

    def advance(self, state: ProgressState, position: int) -> None:
        """Move the cursor forward to ``position``; it never moves back."""
        if position > state.cursor:
            state.cursor = position

    def percent(self, state: ProgressState) -> int:
        return progress_percent(state.committed_this_run, state.target)

    def target_met(self, state: ProgressState) -> bool:
        return state.committed_this_run >= state.target

    def persist(self, state: ProgressState) -> bool:
        """Best-effort write of cursor and committed count; failures are only logged."""
        if state.session_id is None:
            return False
        state.updated_at = self.clock()
        try:
            return self.store.update(
                self.sessions_table,
                {"id": state.session_id},
                {
                    "last_retrieved_count": state.committed_count,
                    "updated_index": state.cursor,
                    "updated_at": state.updated_at,
                },
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to persist progress for session %s: %s", state.session_id, exc)
            return False
