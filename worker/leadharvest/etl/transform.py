"""Utilities for cleaning scraped place fields and mapping them to database rows."""

import logging
import re
from typing import Any, Dict, Optional

from leadharvest.models import BusinessRecord

logger = logging.getLogger(__name__)

_QUOTES = re.compile("[\"'\u201c\u201d\u2018\u2019]")
_ZERO_WIDTH = re.compile("[\u200b\u200c\u200d\ufeff\u200e\u200f]")
# Google Maps renders its row icons as private-use glyphs.
_PRIVATE_USE = re.compile("[\ue000-\uf8ff]")
_NON_DIGIT = re.compile(r"\D")


def _strip_glyphs(value: str) -> str:
    value = _ZERO_WIDTH.sub("", value)
    value = _PRIVATE_USE.sub("", value)
    return value.replace("NO GLYPH", "")


def clean_address(raw: Optional[str]) -> str:
    if not raw:
        return ""
    value = _strip_glyphs(_QUOTES.sub("", raw))
    value = re.sub(r",\s*$", "", value.strip())
    value = re.sub(r"^\s*,\s*", "", value)
    return value.strip()


def clean_phone(raw: Optional[str]) -> str:
    if not raw:
        return ""
    value = re.sub(r"[()]", "", raw)
    return _strip_glyphs(value).strip()


def format_phone_number(
    raw: Optional[str],
    *,
    default_country_code: str = "1",
    trunk_prefix: str = "1",
) -> str:
    """Normalise a displayed phone number to ``+<country code><digits>``.

    The digit count decides how the number is read. Ten digits are a domestic
    number without country code. Eleven digits either already carry the
    country code or start with the domestic trunk prefix, which is replaced by
    it. Longer numbers are taken as international and seven digits as local.
    """
    if not raw or not raw.strip():
        return ""

    stripped = raw.strip()
    digits = _NON_DIGIT.sub("", stripped)
    if not digits:
        return ""

    if len(digits) == 10:
        return f"+{default_country_code}{digits}"
    if len(digits) == 11 and digits.startswith(default_country_code):
        return f"+{digits}"
    if len(digits) == 11 and trunk_prefix and digits.startswith(trunk_prefix):
        return f"+{default_country_code}{digits[len(trunk_prefix):]}"
    if len(digits) >= 11:
        return f"+{digits}"
    if len(digits) == 7:
        return f"+{default_country_code}{digits}"
    logger.debug("Unusual phone length (%d digits) for %r", len(digits), stripped)
    return stripped if stripped.startswith("+") else f"+{digits}"


def parse_rating(raw: Optional[str]) -> Optional[float]:
    if not raw:
        return None
    value = _QUOTES.sub("", raw).strip().replace(",", ".")
    match = re.search(r"\d+(?:\.\d+)?", value)
    if not match:
        return None
    try:
        return float(match.group(0))
    except ValueError:
        return None


def parse_reviews(raw: Optional[str]) -> Optional[int]:
    if not raw:
        return None
    digits = _NON_DIGIT.sub("", raw)
    if not digits:
        return None
    return int(digits)


def to_result_row(record: BusinessRecord, session_id: Optional[int] = None) -> Dict[str, Any]:
    """Map a record onto the business_results columns."""
    row: Dict[str, Any] = {
        "business_name": record.name,
        "company_type": record.category,
        "rating": record.rating,
        "reviews": record.reviews,
        "address": record.address,
        "phone_number": record.phone,
        "website": record.website,
        "url": record.identifier,
        "email": record.email,
        "instagram": record.instagram,
        "linkedin": record.linkedin,
        "facebook": record.facebook,
    }
    if session_id is not None:
        row["search_session_id"] = session_id
    return row


def from_result_row(row: Dict[str, Any]) -> BusinessRecord:
    """Rebuild a record from a stored business_results row."""
    rating = row.get("rating")
    reviews = row.get("reviews")
    return BusinessRecord(
        identifier=row.get("url") or "",
        name=row.get("business_name") or "",
        address=row.get("address") or "",
        phone=row.get("phone_number") or "",
        category=row.get("company_type") or "",
        rating=float(rating) if rating is not None else None,
        reviews=int(reviews) if reviews is not None else None,
        website=row.get("website") or "",
        email=row.get("email") or "",
        instagram=row.get("instagram") or "",
        linkedin=row.get("linkedin") or "",
        facebook=row.get("facebook") or "",
    )
