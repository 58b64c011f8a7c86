"""Re-insert rows that were saved to disk after their inserts kept failing."""

import json
import logging
import sys
from pathlib import Path

WORKER_ROOT = Path(__file__).resolve().parents[1]
if str(WORKER_ROOT) not in sys.path:
    sys.path.insert(0, str(WORKER_ROOT))

from leadharvest.core.config import ConfigError, get_settings  # noqa: E402
from leadharvest.core.db import RESULTS_TABLE, PostgresStore  # noqa: E402

logger = logging.getLogger("replay_failed")


def replay(store, folder: Path, *, table: str = RESULTS_TABLE) -> int:
    """Insert every saved row; files are removed once the row is stored or already present."""
    if not folder.is_dir():
        logger.info("No failed folder: %s", folder)
        return 0

    replayed = 0
    for path in sorted(folder.glob("*.json")):
        try:
            with path.open("r", encoding="utf-8") as fh:
                payload = json.load(fh)
        except (OSError, ValueError) as exc:
            logger.warning("Failed to read %s: %s", path.name, exc)
            continue

        row = payload.get("row") if isinstance(payload, dict) else None
        if not row:
            logger.warning("No row in %s; leaving it in place", path.name)
            continue

        result = store.insert(table, row)
        if result.success or result.is_duplicate:
            logger.info("Replayed %s (duplicate=%s)", path.name, result.is_duplicate)
            path.unlink()
            replayed += 1
        else:
            logger.warning("Failed to replay %s: %s", path.name, result.error)
    return replayed


def main() -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )
    settings = get_settings()
    try:
        store = PostgresStore.from_settings(settings, maxconn=1)
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        return 2
    try:
        count = replay(store, Path(settings.failed_payload_dir))
    finally:
        store.close()
    logger.info("Replayed %d rows", count)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
