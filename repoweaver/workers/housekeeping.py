from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from typing import Any

logger = logging.getLogger(__name__)

COMPLETED_JOB_RETENTION = timedelta(days=30)
FAILED_JOB_RETENTION = timedelta(days=90)
PROCESSED_EVENT_RETENTION = timedelta(days=30)
FAILED_EVENT_RETENTION = timedelta(days=90)


@dataclass(slots=True)
class HousekeepingReport:
    jobs_purged: int
    events_purged: int
    stale_running: list[str]


def is_stale_running(job: dict[str, Any], *, now: datetime, stale_after_seconds: int) -> bool:
    started_at = job.get("started_at")
    if job.get("status") != "running" or started_at is None:
        return False
    if isinstance(started_at, str):
        started_at = datetime.fromisoformat(started_at.replace("Z", "+00:00"))
    return started_at <= now - timedelta(seconds=stale_after_seconds)


async def run_housekeeping(repository: Any, *, now: datetime, stale_after_seconds: int) -> HousekeepingReport:
    """Purge old terminal rows and report jobs stuck in running; stuck jobs are never requeued."""
    jobs_purged = await repository.purge_finished_jobs(
        completed_before=now - COMPLETED_JOB_RETENTION,
        failed_before=now - FAILED_JOB_RETENTION,
    )
    events_purged = await repository.purge_webhook_events(
        processed_before=now - PROCESSED_EVENT_RETENTION,
        failed_before=now - FAILED_EVENT_RETENTION,
    )
    candidates = await repository.list_stale_running_jobs(
        started_before=now - timedelta(seconds=stale_after_seconds),
    )
    stale = [job["id"] for job in candidates if is_stale_running(job, now=now, stale_after_seconds=stale_after_seconds)]

    if jobs_purged or events_purged:
        logger.info("housekeeping purged jobs=%s webhook_events=%s", jobs_purged, events_purged)
    for job_id in stale:
        logger.warning(
            "job stuck in running job_id=%s stale_after_seconds=%s; leaving for manual recovery",
            job_id,
            stale_after_seconds,
        )
    return HousekeepingReport(jobs_purged=jobs_purged, events_purged=events_purged, stale_running=stale)
