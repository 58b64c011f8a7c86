"""Core data models shared by the Google Maps harvesting pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


@dataclass(frozen=True, slots=True)
class Candidate:
    """A place URL discovered in the results feed, with its card position."""

    identifier: str
    position: int


@dataclass(frozen=True, slots=True)
class BusinessRecord:
    """Validated snapshot of a business detail page."""

    identifier: str
    name: str
    address: str
    phone: str
    category: str = ""
    rating: Optional[float] = None
    reviews: Optional[int] = None
    website: str = ""
    email: str = ""
    instagram: str = ""
    linkedin: str = ""
    facebook: str = ""

    @property
    def is_complete(self) -> bool:
        return bool(self.name and self.address and self.phone)


class Rejection(Enum):
    INCOMPLETE_DATA = "incomplete_data"
    NAVIGATION_FAILURE = "navigation_failure"


class CommitOutcome(Enum):
    COMMITTED = "committed"
    DUPLICATE = "duplicate"
    FAILED = "failed"


class RunStatus(Enum):
    TARGET_MET = "target_met"
    SOURCE_EXHAUSTED = "source_exhausted"
    SCROLL_BUDGET_EXHAUSTED = "scroll_budget_exhausted"
    FAULT = "fault"


@dataclass
class ProgressState:
    """Resumable progress for one (query, location) search."""

    query: str
    location: str
    target: int
    committed_count: int = 0
    cursor: int = 0
    committed_this_run: int = 0
    session_id: Optional[int] = None
    updated_at: Optional[datetime] = None


@dataclass
class LoopOutcome:
    records: List[BusinessRecord]
    cursor: int
    status: RunStatus


@dataclass
class RunResult:
    """What a harvest run hands back to its caller."""

    records: List[BusinessRecord]
    target: int
    status: RunStatus
    cursor: int = 0
    committed: int = 0
    duplicates_skipped: int = 0
    store_duplicates: int = 0
    rejected: int = 0
    failed: int = 0
    # Records added from the store or cut from the end during reconciliation.
    topped_up: int = 0
    trimmed: int = 0
    errors: List[str] = field(default_factory=list, repr=False)

    @property
    def shortfall(self) -> int:
        return max(0, self.target - len(self.records))

    @property
    def complete(self) -> bool:
        return self.shortfall == 0
