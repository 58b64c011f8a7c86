"""In-run and cross-run bookkeeping of place URLs already handled."""

import logging
from typing import FrozenSet, Iterable, Set

logger = logging.getLogger(__name__)


class DedupLedger:
    """Membership test over the durable snapshot plus everything seen this run."""

    def __init__(self, durably_known: Iterable[str] = ()) -> None:
        self._durably_known: FrozenSet[str] = frozenset(filter(None, durably_known))
        self._seen_this_run: Set[str] = set()

    @classmethod
    def from_store(cls, store, table: str, column: str = "url") -> "DedupLedger":
        """Read the identifier column once; later lookups never hit the store."""
        rows = store.select(table, columns=(column,))
        ledger = cls(row.get(column) for row in rows)
        logger.info("Loaded %d known identifiers from %s", len(ledger._durably_known), table)
        return ledger

    def is_known(self, identifier: str) -> bool:
        return identifier in self._durably_known or identifier in self._seen_this_run

    def mark_seen(self, identifier: str) -> None:
        self._seen_this_run.add(identifier)

    @property
    def durable_count(self) -> int:
        return len(self._durably_known)

    @property
    def seen_count(self) -> int:
        return len(self._seen_this_run)
