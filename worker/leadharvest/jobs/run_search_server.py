"""HTTP entrypoint that triggers Google Maps harvest jobs (Cloud Run friendly)."""

from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict

from flask import Flask, jsonify, request

from leadharvest.core.config import get_settings
from leadharvest.core.site_enricher import SiteEnricher
from leadharvest.jobs.run_search import run_harvest

# ---------- Logging ----------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

# ---------- App & executor ----------
app = Flask(__name__)
# One browser per job; keep concurrent harvests low.
_executor = ThreadPoolExecutor(max_workers=2)

# ---------- Routes ----------


@app.get("/")
def root() -> Any:
    return "ok", 200


@app.get("/healthz")
def healthcheck() -> Any:
    """Lightweight health endpoint; reads settings only and never touches the database."""
    settings = get_settings()
    return (
        jsonify(
            {
                "status": "ok",
                "worker_port_config": settings.worker_port,
                "database_configured": bool(settings.database_url),
                "revision": os.getenv("K_REVISION", "unknown"),
            }
        ),
        200,
    )


@app.post("/scrape")
def enqueue_scrape() -> Any:
    """
    Enqueue a harvest job.
    Required JSON fields: query, location
    Optional: count (positive int, default 10)
    """
    payload: Dict[str, Any] = request.get_json(silent=True) or {}

    required = ("query", "location")
    missing = [f for f in required if not str(payload.get(f) or "").strip()]
    if missing:
        return jsonify({"error": f"missing fields: {', '.join(missing)}"}), 400

    count_raw = payload.get("count", 10)
    try:
        count = int(count_raw)
    except (TypeError, ValueError):
        return jsonify({"error": "count must be numeric"}), 400
    if count <= 0:
        return jsonify({"error": "count must be positive"}), 400

    job_args = dict(
        query=str(payload["query"]).strip(),
        location=str(payload["location"]).strip(),
        count=count,
    )

    logger.info("Queueing harvest job: %s", job_args)
    _executor.submit(_run_job_safe, job_args)

    return jsonify({"data": {"status": "queued", **job_args}}), 202


@app.post("/enrich")
def enrich_website() -> Any:
    """Crawl a website's homepage (and contact page) for email and social links."""
    payload: Dict[str, Any] = request.get_json(silent=True) or {}
    website = str(payload.get("website") or "").strip()
    if not website:
        return jsonify({"error": "website is required"}), 400

    try:
        with SiteEnricher() as enricher:
            enrichment = enricher.enrich(website)
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400
    except Exception as exc:  # noqa: BLE001
        logger.exception("Enrichment failed for %s: %s", website, exc)
        return jsonify({"error": "enrichment failed"}), 500

    return jsonify({"data": {"website": website, **enrichment}}), 200


# ---------- Internals ----------


def _run_job_safe(job_args: Dict[str, Any]) -> None:
    try:
        result = run_harvest(**job_args)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Harvest job failed: %s", exc)
        return
    logger.info(
        "Harvest job finished: %d/%d records (status=%s)",
        len(result.records),
        result.target,
        result.status.value,
    )


def main() -> None:
    """Bind on the PORT injected by the platform, falling back to WORKER_PORT."""
    env_port = os.getenv("PORT")
    logger.info("[BOOT] ENV PORT=%s", env_port)

    port = int(env_port or get_settings().worker_port)
    logger.info("[BOOT] Binding on 0.0.0.0:%d", port)
    app.run(host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
