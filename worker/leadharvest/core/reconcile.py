"""Post-run correction of the result list against the durable store."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from leadharvest.core.db import RESULTS_TABLE
from leadharvest.etl.transform import from_result_row
from leadharvest.models import BusinessRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconcileResult:
    records: List[BusinessRecord]
    topped_up: int = 0
    trimmed: int = 0


def reconcile(
    records: Sequence[BusinessRecord],
    target: int,
    store,
    *,
    table: str = RESULTS_TABLE,
    session_id: Optional[int] = None,
) -> ReconcileResult:
    """Return exactly ``target`` records when the store can supply them.

    Extra records are trimmed in discovery order. Missing ones are filled from
    the most recently stored rows of the same search session, skipping any
    identifier already in the list. A short list is returned as-is when the
    store has nothing more to offer or the run has no session to read from.
    """
    current = list(records)
    if len(current) == target:
        return ReconcileResult(records=current)

    if len(current) > target:
        logger.warning("Trimming results from %d to the requested %d", len(current), target)
        return ReconcileResult(records=current[:target], trimmed=len(current) - target)

    if session_id is None:
        logger.warning("No search session to top up from; returning %d/%d results", len(current), target)
        return ReconcileResult(records=current)

    try:
        rows = store.select(
            table,
            filters={"search_session_id": session_id},
            order_by="created_at",
            descending=True,
            limit=target,
        )
    except Exception as exc:  # noqa: BLE001
        logger.error("Could not read stored results to top up: %s", exc)
        return ReconcileResult(records=current)

    present = {record.identifier for record in current}
    added = 0
    for row in rows:
        if len(current) >= target:
            break
        stored = from_result_row(row)
        if not stored.identifier or stored.identifier in present or not stored.is_complete:
            continue
        current.append(stored)
        present.add(stored.identifier)
        added += 1

    if added:
        logger.info("Added %d stored results to reach %d/%d", added, len(current), target)
    if len(current) < target:
        logger.warning("Only %d/%d results available after reconciliation", len(current), target)
    return ReconcileResult(records=current, topped_up=added)
