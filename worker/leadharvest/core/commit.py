"""Durable insertion of extracted records."""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from leadharvest.core.db import RESULTS_TABLE, StoreError
from leadharvest.core.retry import Outcome, exponential_backoff, run_with_retry
from leadharvest.etl.transform import to_result_row
from leadharvest.models import BusinessRecord, CommitOutcome

logger = logging.getLogger(__name__)

_OUTCOMES = {
    Outcome.SUCCESS: CommitOutcome.COMMITTED,
    Outcome.DUPLICATE: CommitOutcome.DUPLICATE,
    Outcome.FAILURE: CommitOutcome.FAILED,
}


def save_failed_row(failed_dir: Path, row: Dict[str, Any], error: Optional[str]) -> Optional[Path]:
    """Write a row that could not be stored to disk for a later replay."""
    try:
        failed_dir.mkdir(parents=True, exist_ok=True)
        fname = failed_dir.joinpath(f"failed-{int(time.time() * 1000)}.json")
        with fname.open("w", encoding="utf-8") as fh:
            json.dump({"row": row, "error": error}, fh, ensure_ascii=False, indent=2, default=str)
    except OSError as exc:
        logger.error("Failed to save failed row to disk: %s", exc)
        return None
    logger.info("Saved failed row to %s", fname)
    return fname


class CommitPipeline:
    """Insert one record with bounded retries; a unique-key clash counts as stored."""

    def __init__(
        self,
        store,
        *,
        table: str = RESULTS_TABLE,
        max_attempts: int = 3,
        backoff_seconds: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
        failed_dir: Optional[Path] = None,
    ) -> None:
        self.store = store
        self.table = table
        self.max_attempts = max_attempts
        self.backoff = exponential_backoff(backoff_seconds)
        self.sleep = sleep
        self.failed_dir = failed_dir

    def commit(self, record: BusinessRecord, session_id: Optional[int] = None) -> CommitOutcome:
        row = to_result_row(record, session_id)

        def _insert() -> Outcome:
            result = self.store.insert(self.table, row)
            if result.is_duplicate:
                return Outcome.DUPLICATE
            if result.success:
                return Outcome.SUCCESS
            raise StoreError(result.error or "insert failed")

        retried = run_with_retry(
            _insert,
            max_attempts=self.max_attempts,
            backoff=self.backoff,
            sleep=self.sleep,
            label=f"Insert of {record.name!r}",
        )
        outcome = _OUTCOMES[retried.outcome]
        if outcome is CommitOutcome.COMMITTED:
            logger.info("Stored %s", record.name)
        elif outcome is CommitOutcome.DUPLICATE:
            logger.info("Duplicate entry skipped: %s", record.name)
        elif self.failed_dir is not None:
            save_failed_row(self.failed_dir, row, str(retried.error) if retried.error else None)
        return outcome
