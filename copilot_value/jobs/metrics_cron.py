"""
Metrics Cron Job: polls GitHub for every installation of the app.

Runs in-process on the ``metricsCronExpression`` schedule, or standalone
from the command line (``copilot-value-metrics``) for external schedulers.

Typical cron schedule: 0 * * * * (hourly)
"""

import argparse
import asyncio
import logging
import os
import sys
import traceback
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import httpx

from ..core.config import get_settings
from ..core.database import close_db, init_db
from ..core.logging import LOG_FORMAT
from ..core.mongo import close_mongo, connect_mongo
from ..integrations.github.app import GitHubApp, github_app

logger = logging.getLogger(__name__)


# =============================================================================
# ALERTING
# =============================================================================


@dataclass
class Alert:
    """A job failure worth a human's attention."""

    title: str
    message: str
    severity: str = "error"
    details: dict[str, Any] = field(default_factory=dict)
    raised_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def level(self) -> int:
        return logging.CRITICAL if self.severity == "critical" else logging.ERROR

    def summary(self) -> str:
        text = f"[METRICS ALERT] {self.title}: {self.message}"
        return f"{text} | {self.details}" if self.details else text

    def payload(self) -> dict[str, Any]:
        return {
            "source": "copilot-value-metrics",
            "title": self.title,
            "message": self.message,
            "severity": self.severity,
            "raisedAt": self.raised_at.isoformat(),
            "details": self.details,
        }


async def send_alert(
    title: str,
    message: str,
    severity: str = "error",
    details: dict | None = None,
) -> None:
    """Log the alert and post it to ``ALERT_WEBHOOK_URL`` when that is set."""
    alert = Alert(title, message, severity, details or {})
    logger.log(alert.level, alert.summary())

    webhook_url = os.getenv("ALERT_WEBHOOK_URL")
    if not webhook_url:
        return
    try:
        await _send_webhook_alert(webhook_url, alert)
    except httpx.HTTPError as e:
        logger.error(f"Alert webhook {webhook_url} unreachable: {e}")


async def _send_webhook_alert(webhook_url: str, alert: Alert) -> None:
    async with httpx.AsyncClient(timeout=10) as client:
        response = await client.post(webhook_url, json=alert.payload())
        response.raise_for_status()


def _tally(results: dict[str, Any], query_results: list[dict[str, Any]]) -> None:
    for query_result in query_results:
        results["seats"] += query_result.get("seats") or 0
        results["metrics_days"] += query_result.get("metrics") or 0
        results["teams_synced"] += 1 if query_result.get("teams") else 0
        results["errors"].extend(query_result.get("errors") or [])


async def run_metrics_job(app: GitHubApp | None = None) -> dict[str, Any]:
    """
    Query seats, metrics and teams for every installation once.

    A failing query is kept in ``errors`` and reported as a warning; a crash
    of the run itself raises a critical alert and propagates.
    """
    app = app or github_app
    started = datetime.now(timezone.utc)
    results: dict[str, Any] = {
        "started_at": started.isoformat(),
        "completed_at": None,
        "installations": len(app.installations),
        "seats": 0,
        "metrics_days": 0,
        "teams_synced": 0,
        "errors": [],
    }
    logger.info(f"Metrics job started for {results['installations']} installations")

    try:
        _tally(results, await app.run_queries())
    except Exception as e:
        results["errors"].append(f"Metrics job crashed: {e}")
        logger.exception("Metrics job crashed")
        await send_alert(
            title="Metrics job crashed",
            message=f"Polling stopped after {results['installations']} installations were scheduled.",
            severity="critical",
            details={"error": str(e), "traceback": traceback.format_exc()[-500:]},
        )
        raise

    finished = datetime.now(timezone.utc)
    results["completed_at"] = finished.isoformat()
    results["duration_seconds"] = (finished - started).total_seconds()
    logger.info(
        f"Metrics job finished in {results['duration_seconds']:.2f}s: "
        f"{results['seats']} seats, {results['metrics_days']} metric days, "
        f"{results['teams_synced']} team syncs"
    )

    if results["errors"]:
        await send_alert(
            title="Metrics queries failed",
            message=f"{len(results['errors'])} queries failed during the metrics job.",
            severity="warning",
            details={"errors": results["errors"][:5]},
        )
    return results


async def _run_standalone() -> dict[str, Any]:
    """Connect the stores and the app, run the job once and disconnect."""
    await init_db()
    await connect_mongo()
    try:
        await github_app.connect(start_queries=False)
        return await run_metrics_job(github_app)
    finally:
        await github_app.disconnect()
        await close_mongo()
        await close_db()


# =============================================================================
# CLI ENTRY POINT
# =============================================================================


def main():
    """Run one metrics pass from the command line (``copilot-value-metrics``)."""
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Poll GitHub Copilot seats, metrics and teams")
    parser.add_argument("--log-level", default=settings.log_level, help="Logging level")
    args = parser.parse_args()

    if not settings.github_app_configured:
        sys.exit("GITHUB_APP_ID and GITHUB_APP_PRIVATE_KEY are required")
    if not settings.mongodb_uri:
        sys.exit("MONGODB_URI is required")

    logging.basicConfig(level=args.log_level.upper(), format=LOG_FORMAT)

    try:
        results = asyncio.run(_run_standalone())
    except Exception as e:
        sys.exit(f"Metrics job failed: {e}")
    print(f"Metrics job finished: {results}")


if __name__ == "__main__":
    main()
