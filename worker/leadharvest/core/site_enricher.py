"""Website enrichment utilities for extracting public contact data."""

from __future__ import annotations

import logging
import random
import re
import time
from typing import Dict, List, Optional, Tuple
from urllib import robotparser
from urllib.parse import urljoin, urlparse, urlunparse

import requests
from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

USER_AGENT = "LeadHarvestBot/1.0 (+https://leadharvest.app/contact)"
REQUEST_TIMEOUT = 20
REQUEST_DELAY_RANGE = (1.0, 2.0)
CONTACT_KEYWORDS = ("contact",)
SOCIAL_PLATFORMS = ("instagram", "linkedin", "facebook")

EMAIL_REGEX = re.compile(r"\b[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}\b", re.IGNORECASE)
INSTAGRAM_PROFILE = re.compile(r"instagram\.com/[a-z0-9._]{3,30}", re.IGNORECASE)
INSTAGRAM_HANDLE = re.compile(r"(?<![\w@])@([a-z0-9._]{3,30})", re.IGNORECASE)
LINKEDIN_TEXT = re.compile(r"linkedin\.com/[a-z0-9._-]+", re.IGNORECASE)
FACEBOOK_TEXT = re.compile(r"facebook\.com/[a-z0-9._-]+", re.IGNORECASE)
FACEBOOK_BARE = re.compile(r"^(https?://)?[^/]*facebook\.com(/[a-z0-9._-]{0,2})?/?$", re.IGNORECASE)
FACEBOOK_EXCLUDED = (
    "developers.facebook.com",
    "facebook.com/developers",
    "facebook.com/docs",
    "facebook.com/help",
    "facebook.com/support",
    "facebook.com/business",
    "facebook.com/legal",
    "facebook.com/policy",
    "facebook.com/terms",
    "facebook.com/privacy",
    "facebook.com/wix",
)


def empty_contact_info() -> Dict[str, str]:
    return {"email": "", "instagram": "", "linkedin": "", "facebook": ""}


def sanitize_website(raw_url: str) -> Optional[str]:
    """Normalise raw website strings into absolute https URLs."""

    if not raw_url:
        return None

    url = raw_url.strip()
    if not url:
        return None

    parsed = urlparse(url, scheme="https")
    if not parsed.netloc:
        parsed = urlparse(f"https://{url}")

    if not parsed.netloc:
        return None

    normalized_path = parsed.path or "/"
    if not normalized_path.startswith("/"):
        normalized_path = f"/{normalized_path}"

    normalized = parsed._replace(path=normalized_path, fragment="")
    return urlunparse(normalized)


def fetch_url(session: requests.Session, url: str, *, timeout: int = REQUEST_TIMEOUT) -> Optional[Tuple[str, BeautifulSoup]]:
    """Fetch a URL and return the final URL + soup when it is HTML content."""

    try:
        response = session.get(url, timeout=timeout, allow_redirects=True)
        content_type = response.headers.get("Content-Type", "").lower()
        if "text/html" not in content_type:
            logger.debug("Skipping non-HTML content at %s (content-type=%s)", url, content_type)
            return None
        return response.url, BeautifulSoup(response.text, "html.parser")
    except requests.RequestException as exc:  # noqa: BLE001
        logger.warning("Failed to fetch %s: %s", url, exc)
        return None


def _looks_like_phone(local_part: str) -> bool:
    if re.fullmatch(r"[0-9\-()\s]+", local_part) or re.fullmatch(r"[0-9.]+", local_part):
        return True
    if re.match(r"[0-9\-()\s]{3,}[a-zA-Z]", local_part):
        return True
    if re.search(r"[0-9]{3,4}[-()\s]?[0-9]{3,4}", local_part):
        return True
    numbers = sum(ch.isdigit() for ch in local_part)
    letters = sum(ch.isalpha() for ch in local_part)
    return numbers > letters and numbers > 3


def extract_emails(text: str) -> List[str]:
    """Return unique emails in a text blob, dropping phone-number false positives."""

    found: List[str] = []
    for match in EMAIL_REGEX.finditer(text or ""):
        email = match.group(0).lower()
        local_part = email.split("@", 1)[0]
        if len(local_part) < 2 or _looks_like_phone(local_part):
            continue
        if email not in found:
            found.append(email)
    return found


def extract_mailto_emails(soup: BeautifulSoup) -> List[str]:
    emails: List[str] = []
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if not href.lower().startswith("mailto:"):
            continue
        email = href.split(":", 1)[1].split("?")[0].strip().lower()
        if email and EMAIL_REGEX.fullmatch(email) and email not in emails:
            emails.append(email)
    return emails


def is_valid_instagram(url: str) -> bool:
    lowered = url.lower()
    if not INSTAGRAM_PROFILE.search(lowered):
        return False
    return "wix" not in lowered.split("instagram.com/", 1)[1]


def is_valid_facebook(url: str) -> bool:
    lowered = url.lower()
    if any(excluded in lowered for excluded in FACEBOOK_EXCLUDED):
        return False
    return not FACEBOOK_BARE.match(lowered)


def _with_scheme(url: str) -> str:
    if not url:
        return ""
    return url if url.lower().startswith("http") else f"https://{url}"


def extract_social_links(soup: BeautifulSoup, base_url: str) -> Dict[str, str]:
    """First usable Instagram, LinkedIn and Facebook link on the page.

    Anchors win over URLs mentioned in the page text.
    """

    socials = {platform: "" for platform in SOCIAL_PLATFORMS}
    for anchor in soup.find_all("a", href=True):
        href = urljoin(base_url, anchor["href"].strip())
        lowered = href.lower()
        if not socials["instagram"] and "instagram.com" in lowered and is_valid_instagram(href):
            socials["instagram"] = href
        if not socials["linkedin"] and "linkedin.com" in lowered:
            socials["linkedin"] = href
        if not socials["facebook"] and "facebook.com" in lowered and is_valid_facebook(href):
            socials["facebook"] = href

    text = soup.get_text(" ", strip=True)
    if not socials["instagram"]:
        for match in INSTAGRAM_PROFILE.finditer(text):
            if is_valid_instagram(match.group(0)):
                socials["instagram"] = match.group(0)
                break
    if not socials["instagram"]:
        for match in INSTAGRAM_HANDLE.finditer(text):
            handle = match.group(1)
            if not any(suffix in handle.lower() for suffix in (".com", ".org", ".net")):
                socials["instagram"] = f"https://instagram.com/{handle}"
                break
    if not socials["linkedin"]:
        match = LINKEDIN_TEXT.search(text)
        if match:
            socials["linkedin"] = match.group(0)
    if not socials["facebook"]:
        match = FACEBOOK_TEXT.search(text)
        if match and is_valid_facebook(match.group(0)):
            socials["facebook"] = match.group(0)

    return {platform: _with_scheme(link) for platform, link in socials.items()}


def find_contact_page(soup: BeautifulSoup, base_url: str) -> Optional[str]:
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if href.lower().startswith(("mailto:", "tel:", "javascript:")):
            continue
        text = anchor.get_text(" ", strip=True).lower()
        if any(keyword in text or keyword in href.lower() for keyword in CONTACT_KEYWORDS):
            return urljoin(base_url, href)
    return None


class SiteEnricher:
    """Read a business homepage, then its contact page, for email and social links."""

    def __init__(self, *, session: Optional[requests.Session] = None, respect_robots: bool = True) -> None:
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", USER_AGENT)
        self.session.headers.setdefault("Accept", "text/html,application/xhtml+xml")
        self.session.headers.setdefault("Accept-Language", "en-US,en;q=0.9")
        self.respect_robots = respect_robots

    @staticmethod
    def _load_robot_rules(parsed_url) -> Optional[robotparser.RobotFileParser]:
        robots_url = urlunparse((parsed_url.scheme, parsed_url.netloc, "/robots.txt", "", "", ""))
        parser_obj = robotparser.RobotFileParser()
        parser_obj.set_url(robots_url)
        try:
            parser_obj.read()
            return parser_obj
        except Exception as exc:  # noqa: BLE001
            logger.debug("Unable to read robots.txt from %s: %s", robots_url, exc)
            return None

    def _scan(self, url: str) -> Optional[Tuple[str, BeautifulSoup, Dict[str, str]]]:
        fetched = fetch_url(self.session, url)
        if not fetched:
            return None
        final_url, soup = fetched
        text = soup.get_text(" ", strip=True)
        emails = extract_mailto_emails(soup)
        emails.extend(email for email in extract_emails(text) if email not in emails)
        info = {"email": ", ".join(emails)}
        info.update(extract_social_links(soup, final_url))
        return final_url, soup, info

    def enrich(self, website: str) -> Dict[str, str]:
        root_url = sanitize_website(website)
        if not root_url:
            return empty_contact_info()

        robots = self._load_robot_rules(urlparse(root_url)) if self.respect_robots else None
        if robots and not robots.can_fetch(USER_AGENT, urlparse(root_url).path or "/"):
            logger.info("Robots.txt disallows %s; skipping enrichment", root_url)
            return empty_contact_info()

        scanned = self._scan(root_url)
        if not scanned:
            return empty_contact_info()
        final_url, soup, result = scanned
        logger.debug(
            "Homepage %s: email=%s instagram=%s linkedin=%s facebook=%s",
            final_url,
            bool(result["email"]),
            bool(result["instagram"]),
            bool(result["linkedin"]),
            bool(result["facebook"]),
        )

        if result["email"]:
            return result

        contact_url = find_contact_page(soup, final_url)
        if not contact_url or contact_url.rstrip("/") == final_url.rstrip("/"):
            return result
        if robots and not robots.can_fetch(USER_AGENT, urlparse(contact_url).path or "/"):
            return result

        time.sleep(random.uniform(*REQUEST_DELAY_RANGE))
        contact = self._scan(contact_url)
        if contact and any(contact[2].values()):
            logger.debug("Using contact details from %s", contact_url)
            return {key: contact[2].get(key) or value for key, value in result.items()}
        return result

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "SiteEnricher":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: D401
        self.close()
