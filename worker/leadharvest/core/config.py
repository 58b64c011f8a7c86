"""Application configuration helpers."""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_TRUTHY = {"1", "true", "yes"}


class ConfigError(RuntimeError):
    """Raised when mandatory configuration is missing."""


@dataclass(frozen=True)
class Settings:
    database_url: str
    headless: bool = True
    nav_timeout_ms: int = 30000
    selector_timeout_ms: int = 20000
    detail_timeout_ms: int = 10000
    max_scroll_attempts: int = 50
    stall_scrolls: int = 7
    scroll_delta: int = 2000
    scroll_pause_ms: int = 1500
    lookahead_buffer: int = 5
    insert_max_attempts: int = 3
    insert_backoff_seconds: float = 2.0
    default_country_code: str = "1"
    domestic_trunk_prefix: str = "1"
    enrich_websites: bool = False
    failed_payload_dir: str = "data/failed"
    worker_port: int = 9000


def _get_int(name: str, default: int, *, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("%s=%r is not an integer; using %s", name, raw, default)
        return default
    return max(minimum, value)


def _get_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in _TRUTHY


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    database_url = os.getenv("DATABASE_URL", "")
    try:
        backoff = float(os.getenv("INSERT_BACKOFF_SECONDS", "2.0"))
    except ValueError:
        logger.warning("INSERT_BACKOFF_SECONDS is not numeric; using 2.0")
        backoff = 2.0

    if not database_url:
        logger.warning("DATABASE_URL is not set; database operations will fail.")

    return Settings(
        database_url=database_url,
        headless=_get_bool("HEADLESS", True),
        nav_timeout_ms=_get_int("NAV_TIMEOUT_MS", 30000, minimum=1000),
        selector_timeout_ms=_get_int("SELECTOR_TIMEOUT_MS", 20000, minimum=1000),
        detail_timeout_ms=_get_int("DETAIL_TIMEOUT_MS", 10000, minimum=1000),
        max_scroll_attempts=_get_int("MAX_SCROLL_ATTEMPTS", 50),
        stall_scrolls=_get_int("STALL_SCROLLS", 7, minimum=1),
        scroll_delta=_get_int("SCROLL_DELTA", 2000, minimum=1),
        scroll_pause_ms=_get_int("SCROLL_PAUSE_MS", 1500),
        lookahead_buffer=_get_int("LOOKAHEAD_BUFFER", 5),
        insert_max_attempts=_get_int("INSERT_MAX_ATTEMPTS", 3, minimum=1),
        insert_backoff_seconds=max(0.0, backoff),
        default_country_code=os.getenv("DEFAULT_COUNTRY_CODE", "1").strip().lstrip("+") or "1",
        domestic_trunk_prefix=os.getenv("DOMESTIC_TRUNK_PREFIX", "1").strip() or "1",
        enrich_websites=_get_bool("ENRICH_WEBSITES", False),
        failed_payload_dir=os.getenv("FAILED_PAYLOAD_DIR", "data/failed"),
        worker_port=_get_int("WORKER_PORT", 9000, minimum=1),
    )
