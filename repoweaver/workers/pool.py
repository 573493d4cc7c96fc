from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
import logging
from typing import Any

from opentelemetry import trace

from repoweaver.core.errors import ConfigurationError
from repoweaver.core.telemetry import annotate_job_span
from repoweaver.services.repository import RepositoryConflictError, RepositoryNotFoundError

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

JobExecutor = Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkerPool:
    """Claims due jobs up to ``concurrency`` and runs each in its own task."""

    def __init__(
        self,
        repository: Any,
        execute: JobExecutor,
        *,
        concurrency: int,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repository = repository
        self._execute = execute
        self._concurrency = max(1, concurrency)
        self._clock = clock
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def active(self) -> int:
        return len(self._tasks)

    @property
    def free_slots(self) -> int:
        return max(0, self._concurrency - len(self._tasks))

    async def run_once(self) -> int:
        """Claim as many due jobs as there are free slots; returns how many started."""
        slots = self.free_slots
        if slots == 0:
            return 0

        started = 0
        due = await self._repository.list_due_jobs(now=self._clock(), limit=slots)
        for job in due:
            try:
                claimed = await self._repository.claim_job(job["id"], now=self._clock())
            except (RepositoryConflictError, RepositoryNotFoundError):
                logger.info("job claim lost job_id=%s", job["id"])
                continue
            task = asyncio.create_task(self._run_job(claimed), name=f"job-{claimed['id']}")
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            started += 1
        return started

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _run_job(self, job: dict[str, Any]) -> None:
        with tracer.start_as_current_span("worker.process_job") as span:
            annotate_job_span(span, job)
            try:
                result = await self._execute(job)
            except ConfigurationError as exc:
                logger.error("job configuration error job_id=%s type=%s error=%s", job["id"], job["type"], exc)
                await self._record_failure(job, exc, retryable=False)
                return
            except Exception as exc:
                logger.exception("job execution failed job_id=%s type=%s", job["id"], job["type"])
                await self._record_failure(job, exc, retryable=True)
                return

            try:
                await self._repository.complete_job(job["id"], result=result, now=self._clock())
            except Exception:
                logger.exception("job completion could not be recorded job_id=%s", job["id"])
                return
            logger.info("job completed job_id=%s type=%s", job["id"], job["type"])

    async def _record_failure(self, job: dict[str, Any], exc: Exception, *, retryable: bool) -> None:
        message = f"{type(exc).__name__}: {exc}"
        try:
            updated = await self._repository.fail_job(
                job["id"],
                error_message=message,
                now=self._clock(),
                retryable=retryable,
            )
        except Exception:
            logger.exception("job failure could not be recorded job_id=%s", job["id"])
            return
        if updated["status"] == "pending":
            logger.warning(
                "job scheduled for retry job_id=%s attempts=%s/%s scheduled_at=%s",
                job["id"],
                updated["attempts"],
                updated["max_attempts"],
                updated["scheduled_at"],
            )
        else:
            logger.error("job failed permanently job_id=%s attempts=%s", job["id"], updated["attempts"])
