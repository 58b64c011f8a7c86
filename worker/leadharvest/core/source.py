"""Lazily expanding feed of place URLs read from the Google Maps results list."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple
from urllib.parse import quote

from leadharvest.core.browser import NavigationError
from leadharvest.core.config import Settings, get_settings
from leadharvest.models import Candidate

logger = logging.getLogger(__name__)

MAPS_SEARCH_URL = "https://www.google.com/maps/search/{query}+{location}"
FEED_SELECTOR = 'div[role="feed"]'
CARD_SELECTOR = "a.hfpxzc"
END_OF_LIST_TEXT = "You've reached the end of the list."
SPONSORED_MARKER = "Sponsored"
RESTORE_PAUSE_MS = 300


def build_search_url(query: str, location: str) -> str:
    query = (query or "").strip()
    location = (location or "").strip()
    if not query or not location:
        raise ValueError("query and location are required to build a search URL")
    return MAPS_SEARCH_URL.format(query=quote(query), location=quote(location))


def is_sponsored(texts: Iterable[Optional[str]]) -> bool:
    """True when any text around a card carries the sponsored label."""
    return any(SPONSORED_MARKER in (text or "") for text in texts)


@dataclass(frozen=True)
class CandidateBatch:
    candidates: List[Candidate]
    exhausted: bool
    scanned_to: int


class CandidateSource:
    """Ordered candidates backed by the scrollable results feed.

    Entries are kept as ``(identifier, sponsored)`` pairs indexed by card
    position. The list only grows; positions below the caller's cursor are
    never yielded again.
    """

    def __init__(self, browser, search_url: str, *, settings: Optional[Settings] = None) -> None:
        self.browser = browser
        self.search_url = search_url
        self.settings = settings or get_settings()
        self._entries: List[Tuple[str, bool]] = []
        # Cards rendered on the current page; drops below len(_entries) after a reload.
        self._visible = 0
        self._scroll_attempts = 0
        self._exhausted = False
        self.budget_exhausted = False

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    @property
    def scroll_attempts(self) -> int:
        return self._scroll_attempts

    @property
    def loaded(self) -> int:
        return len(self._entries)

    def next(self, cursor: int, count: int) -> CandidateBatch:
        """Return up to ``count`` non-sponsored candidates at or after ``cursor``."""
        required = cursor + count
        if len(self._entries) < required:
            self._expand(required)

        candidates: List[Candidate] = []
        position = cursor
        while position < len(self._entries) and len(candidates) < count:
            identifier, sponsored = self._entries[position]
            if sponsored:
                logger.debug("Skipping sponsored card at position %d", position)
            elif identifier:
                candidates.append(Candidate(identifier=identifier, position=position))
            position += 1

        exhausted = self._exhausted and position >= len(self._entries)
        return CandidateBatch(candidates=candidates, exhausted=exhausted, scanned_to=position)

    def recover(self, position: int) -> bool:
        """Reload the results list and scroll back near ``position``."""
        return self._restore(position)

    def _expand(self, required: int) -> None:
        if self._exhausted:
            return
        if not self._ensure_list():
            self._exhausted = True
            return

        stalled = 0
        recovered = False
        while len(self._entries) < required:
            if self._scroll_attempts >= self.settings.max_scroll_attempts:
                logger.info(
                    "Scroll budget exhausted after %d attempts with %d cards loaded",
                    self._scroll_attempts,
                    len(self._entries),
                )
                self.budget_exhausted = True
                self._exhausted = True
                return

            try:
                scrolled = self.browser.scroll(FEED_SELECTOR, self.settings.scroll_delta)
                self._scroll_attempts += 1
                if not scrolled:
                    logger.warning("Results feed is no longer on the page; stopping expansion")
                    self._exhausted = True
                    return
                self.browser.pause(self.settings.scroll_pause_ms)
                visible_before = self._visible
                grew = self._refresh() or self._visible > visible_before
                at_end = self.browser.page_contains(END_OF_LIST_TEXT)
            except NavigationError as exc:
                logger.warning("Feed expansion failed: %s", exc)
                if recovered or not self._restore(len(self._entries)):
                    self._exhausted = True
                    return
                recovered = True
                continue

            if at_end:
                logger.info("Reached the end of the results list with %d cards", len(self._entries))
                self._exhausted = True
                return

            stalled = 0 if grew else stalled + 1
            if stalled >= self.settings.stall_scrolls:
                logger.info("No new cards after %d scrolls; treating the feed as exhausted", stalled)
                self._exhausted = True
                return

    def _ensure_list(self) -> bool:
        if self.browser.current_url == self.search_url:
            return True
        return self._restore(len(self._entries))

    def _restore(self, position: int) -> bool:
        try:
            self.browser.navigate(self.search_url)
            self.browser.wait_for(FEED_SELECTOR)
            self._refresh()
            idle = 0
            while self._visible < position and idle < self.settings.stall_scrolls:
                if not self.browser.scroll(FEED_SELECTOR, self.settings.scroll_delta):
                    break
                self.browser.pause(RESTORE_PAUSE_MS)
                visible_before = self._visible
                self._refresh()
                idle = 0 if self._visible > visible_before else idle + 1
            if self._visible < position:
                logger.warning(
                    "Results list reopened with %d cards, short of position %d", self._visible, position
                )
        except NavigationError as exc:
            logger.warning("Could not open results list near position %d: %s", position, exc)
            return False
        return True

    def _refresh(self) -> bool:
        """Append cards beyond the known entries; True when any were added."""
        elements = self.browser.list_elements(CARD_SELECTOR)
        self._visible = len(elements)
        added = 0
        for element in elements[len(self._entries):]:
            position = len(self._entries)
            try:
                identifier = self.browser.get_attribute(element, "href")
                sponsored = is_sponsored(self.browser.ancestor_texts(element))
            except NavigationError as exc:
                logger.debug("Unreadable card at position %d: %s", position, exc)
                identifier, sponsored = "", False
            self._entries.append((identifier, sponsored))
            added += 1
        if added:
            logger.debug("Feed grew by %d cards to %d", added, len(self._entries))
        return added > 0
