"""APScheduler-based periodic rescans of the configured organisations."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone

from apscheduler.events import EVENT_JOB_ERROR
from apscheduler.schedulers.blocking import BlockingScheduler

from overseer.ingestion.config import IngestionConfig
from overseer.ingestion.errors import ConfigError, IngestionError
from overseer.ingestion.graph.base import create_graph_service
from overseer.ingestion.providers.github_org import GitHubClient
from overseer.ingestion.scanner import ScanRequest, run_scan

logger = logging.getLogger("overseer.scheduler")

BACKOFF_BASE_S = 30


def scan_organization(org: str, config: IngestionConfig) -> bool:
    """Scan one organisation, retrying retryable failures with backoff.

    Returns True when a scan eventually succeeded.
    """
    max_retries = config.scheduler.max_retries

    for attempt in range(max_retries + 1):
        service = create_graph_service(config)
        try:
            service.connect()
            response = run_scan(
                ScanRequest(organization=org),
                GitHubClient(config.github),
                service,
                config.scan,
                web_url=config.github.web_url,
            )
        except IngestionError as exc:
            response = {"success": False, "errors": [exc.to_dict()]}
        finally:
            service.close()

        if response["success"]:
            logger.info(
                "Scheduled scan of %s succeeded", org,
                extra={"organization": org, "records": response["summary"]["total_repos"]},
            )
            return True

        retryable = any(e.get("retryable") for e in response["errors"])
        if retryable and attempt < max_retries:
            delay = BACKOFF_BASE_S * (2 ** attempt)
            logger.warning(
                "Scan of %s failed (attempt %d/%d), retrying in %ds: %s",
                org, attempt + 1, max_retries, delay, response["errors"][0]["message"],
                extra={"organization": org},
            )
            time.sleep(delay)
            continue

        logger.error(
            "Scan of %s failed: %s", org, response["errors"][0]["message"],
            extra={"organization": org},
        )
        return False
    return False


def _on_job_error(event) -> None:
    logger.error("Job %s raised an exception: %s", event.job_id, event.exception)


def build_scheduler(config: IngestionConfig) -> BlockingScheduler:
    orgs = config.scheduler.organizations
    if not orgs:
        raise ConfigError("SCAN_ORGANIZATIONS must name at least one organization")

    scheduler = BlockingScheduler()
    scheduler.add_listener(_on_job_error, EVENT_JOB_ERROR)
    for org in orgs:
        scheduler.add_job(
            scan_organization,
            "interval",
            minutes=config.scheduler.interval_min,
            args=[org, config],
            id=f"scan:{org}",
            max_instances=1,
            misfire_grace_time=config.scheduler.misfire_grace_time,
            next_run_time=datetime.now(timezone.utc),
        )
    return scheduler


def start_scheduler(config: IngestionConfig) -> None:
    """Block, rescanning each organisation on its interval."""
    scheduler = build_scheduler(config)
    logger.info("Starting scheduler with jobs: %s", [j.id for j in scheduler.get_jobs()])
    scheduler.start()
