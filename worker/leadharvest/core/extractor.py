"""Turn one place URL into a validated business record."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Callable, Dict, Optional, Union

from leadharvest.core.browser import NavigationError
from leadharvest.core.config import Settings, get_settings
from leadharvest.etl.transform import (
    clean_address,
    clean_phone,
    format_phone_number,
    parse_rating,
    parse_reviews,
)
from leadharvest.models import BusinessRecord, Candidate, Rejection

logger = logging.getLogger(__name__)

DETAIL_SELECTOR = '[role="main"]'
NAME_SELECTOR = "h1.DUwDvf"
CATEGORY_SELECTOR = "button.DkEaL"
RATING_SELECTOR = 'div.F7nice span[aria-hidden="true"]'
REVIEWS_SELECTOR = 'div.F7nice span[aria-label*="review"]'
ADDRESS_SELECTOR = 'button[data-tooltip="Copy address"]'
PHONE_SELECTOR = 'button[data-tooltip="Copy phone number"]'
WEBSITE_SELECTORS = ('a[data-tooltip="Open website"]', 'a[data-tooltip="Open menu link"]')
SETTLE_MS = 500

ContactLookup = Callable[[str], Dict[str, str]]


class RecordExtractor:
    """Reads a place detail page field by field.

    A missing optional field yields an empty value. Missing name, address or
    phone rejects the candidate as incomplete; any page fault rejects it as a
    navigation failure so the controller can recover the list view.
    """

    def __init__(
        self,
        browser,
        *,
        settings: Optional[Settings] = None,
        contact_lookup: Optional[ContactLookup] = None,
    ) -> None:
        self.browser = browser
        self.settings = settings or get_settings()
        self.contact_lookup = contact_lookup

    def extract(self, candidate: Candidate) -> Union[BusinessRecord, Rejection]:
        try:
            record = self._read_detail_page(candidate)
        except NavigationError as exc:
            logger.warning("Navigation failed for position %d (%s): %s", candidate.position, candidate.identifier, exc)
            return Rejection.NAVIGATION_FAILURE

        if not record.is_complete:
            logger.info(
                "Incomplete details at position %d (name=%r address=%r phone=%r); skipping",
                candidate.position,
                record.name,
                record.address,
                record.phone,
            )
            return Rejection.INCOMPLETE_DATA

        if record.website and self.contact_lookup is not None:
            record = self._with_contact_info(record)
        return record

    def _read_detail_page(self, candidate: Candidate) -> BusinessRecord:
        self.browser.navigate(candidate.identifier, self.settings.nav_timeout_ms)
        self.browser.wait_for(DETAIL_SELECTOR, self.settings.detail_timeout_ms)
        self.browser.pause(SETTLE_MS)

        website = ""
        for selector in WEBSITE_SELECTORS:
            website = self.browser.read_attribute(selector, "href")
            if website:
                break

        phone = format_phone_number(
            clean_phone(self.browser.read_text(PHONE_SELECTOR)),
            default_country_code=self.settings.default_country_code,
            trunk_prefix=self.settings.domestic_trunk_prefix,
        )
        return BusinessRecord(
            identifier=candidate.identifier,
            name=self.browser.read_text(NAME_SELECTOR),
            address=clean_address(self.browser.read_text(ADDRESS_SELECTOR)),
            phone=phone,
            category=self.browser.read_text(CATEGORY_SELECTOR),
            rating=parse_rating(self.browser.read_text(RATING_SELECTOR)),
            reviews=parse_reviews(self.browser.read_text(REVIEWS_SELECTOR)),
            website=website,
        )

    def _with_contact_info(self, record: BusinessRecord) -> BusinessRecord:
        try:
            info = self.contact_lookup(record.website)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Contact enrichment failed for %s: %s", record.website, exc)
            return record
        return replace(
            record,
            email=info.get("email", ""),
            instagram=info.get("instagram", ""),
            linkedin=info.get("linkedin", ""),
            facebook=info.get("facebook", ""),
        )
