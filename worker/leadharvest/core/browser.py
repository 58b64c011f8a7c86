"""Playwright wrapper exposing the page operations the harvester relies on."""

from __future__ import annotations

import logging
from typing import Any, List, Optional

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

from leadharvest.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
VIEWPORT = {"width": 1366, "height": 768}


class NavigationError(RuntimeError):
    """Raised when the page cannot reach or render the requested view."""


class NavigationTimeout(NavigationError):
    """A navigation or wait exceeded its timeout."""


class ElementNotFound(NavigationError):
    """A selector never appeared within its timeout."""


class MapsBrowser:
    """Single-page Playwright session.

    Every call that can block takes an explicit timeout, and Playwright faults
    are re-raised as :class:`NavigationError` subclasses so callers can treat
    them as recoverable.
    """

    def __init__(self, settings: Optional[Settings] = None, *, headless: Optional[bool] = None) -> None:
        self.settings = settings or get_settings()
        self._headless = self.settings.headless if headless is None else headless
        self._playwright = None
        self._browser = None
        self._context = None
        self._page = None
        self.current_url: Optional[str] = None

    def start(self) -> "MapsBrowser":
        if self._playwright is None:
            self._playwright = sync_playwright().start()
            self._browser = self._playwright.chromium.launch(
                headless=self._headless,
                args=["--no-sandbox", "--disable-dev-shm-usage"],
            )
            self._context = self._browser.new_context(
                user_agent=USER_AGENT,
                viewport=VIEWPORT,
                locale="en-US",
            )
            self._page = self._context.new_page()
            logger.info("Browser started (headless=%s)", self._headless)
        return self

    @property
    def page(self):
        if self._page is None:
            self.start()
        return self._page

    def navigate(self, url: str, timeout_ms: Optional[int] = None) -> None:
        timeout = timeout_ms or self.settings.nav_timeout_ms
        self.current_url = url
        try:
            self.page.goto(url, wait_until="domcontentloaded", timeout=timeout)
        except PlaywrightTimeoutError as exc:
            raise NavigationTimeout(f"timed out after {timeout}ms loading {url}") from exc
        except PlaywrightError as exc:
            raise NavigationError(f"failed to load {url}: {exc}") from exc

    def wait_for(self, selector: str, timeout_ms: Optional[int] = None) -> None:
        timeout = timeout_ms or self.settings.selector_timeout_ms
        try:
            self.page.wait_for_selector(selector, timeout=timeout)
        except PlaywrightTimeoutError as exc:
            raise ElementNotFound(f"{selector} did not appear within {timeout}ms") from exc
        except PlaywrightError as exc:
            raise NavigationError(f"waiting for {selector} failed: {exc}") from exc

    def read_text(self, selector: str) -> str:
        try:
            element = self.page.query_selector(selector)
            if element is None:
                return ""
            return (element.text_content() or "").strip()
        except PlaywrightError as exc:
            raise NavigationError(f"reading {selector} failed: {exc}") from exc

    def read_attribute(self, selector: str, name: str) -> str:
        try:
            element = self.page.query_selector(selector)
            if element is None:
                return ""
            return (element.get_attribute(name) or "").strip()
        except PlaywrightError as exc:
            raise NavigationError(f"reading {selector}@{name} failed: {exc}") from exc

    def list_elements(self, selector: str) -> List[Any]:
        try:
            return self.page.query_selector_all(selector)
        except PlaywrightError as exc:
            raise NavigationError(f"listing {selector} failed: {exc}") from exc

    def get_attribute(self, element: Any, name: str) -> str:
        try:
            return (element.get_attribute(name) or "").strip()
        except PlaywrightError as exc:
            raise NavigationError(f"reading attribute {name} failed: {exc}") from exc

    def ancestor_texts(self, element: Any, depth: int = 3) -> List[str]:
        """Inner text of the element, its ancestors and the nearest heading/span."""
        try:
            return element.evaluate(
                """(node, depth) => {
                    const texts = [];
                    let el = node;
                    for (let i = 0; i < depth && el; i++) {
                        texts.push(el.innerText || "");
                        el = el.parentElement;
                    }
                    if (node.parentElement) {
                        const label = node.parentElement.querySelector("span, h1");
                        if (label) texts.push(label.innerText || "");
                    }
                    return texts;
                }""",
                depth,
            )
        except PlaywrightError as exc:
            raise NavigationError(f"reading card context failed: {exc}") from exc

    def scroll(self, selector: str, delta: int) -> bool:
        """Scroll a container by ``delta`` pixels; False when it is not on the page."""
        try:
            container = self.page.query_selector(selector)
            if container is None:
                return False
            container.evaluate("(node, delta) => node.scrollBy(0, delta)", delta)
            return True
        except PlaywrightError as exc:
            raise NavigationError(f"scrolling {selector} failed: {exc}") from exc

    def page_contains(self, text: str) -> bool:
        try:
            body = self.page.evaluate("() => document.body ? document.body.innerText : ''")
        except PlaywrightError as exc:
            raise NavigationError(f"reading page text failed: {exc}") from exc
        return text in (body or "")

    def pause(self, ms: int) -> None:
        if ms <= 0:
            return
        try:
            self.page.wait_for_timeout(ms)
        except PlaywrightError as exc:
            raise NavigationError(f"pausing {ms}ms failed: {exc}") from exc

    def close(self) -> None:
        if self._context is not None:
            self._context.close()
            self._context = None
            self._page = None
        if self._browser is not None:
            self._browser.close()
            self._browser = None
        if self._playwright is not None:
            self._playwright.stop()
            self._playwright = None

    def __enter__(self) -> "MapsBrowser":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: D401
        self.close()
