from __future__ import annotations

import os
import uuid
from datetime import datetime, timezone
from typing import Any

import pytest

os.environ.setdefault("RW_OTEL_ENABLED", "false")

from repoweaver.services.repository import (  # noqa: E402
    PostgresRepository,
    RepositoryConflictError,
    RepositoryNotFoundError,
    RepositoryUnavailableError,
)

T0 = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)


class InMemoryRepository:
    """Queue/config store with the same single-row transition rules as the Postgres one."""

    def __init__(self, *, max_attempts: int = 3, retry_base_seconds: int = 30, retry_max_seconds: int = 3600) -> None:
        self._transitions = PostgresRepository(
            database_url=None,
            min_pool_size=1,
            max_pool_size=1,
            job_max_attempts=max_attempts,
            job_retry_base_seconds=retry_base_seconds,
            job_retry_max_seconds=retry_max_seconds,
        )
        self.max_attempts = max_attempts
        self.jobs: dict[str, dict[str, Any]] = {}
        self.configs: dict[str, dict[str, Any]] = {}
        self.webhook_events: dict[str, dict[str, Any]] = {}
        self.pr_records: list[dict[str, Any]] = []
        self.installations: dict[int, dict[str, Any]] = {}
        self.claim_hook: Any = None
        self.unavailable = False

    def add_config(
        self,
        repo_full_name: str,
        config: dict[str, Any],
        *,
        auto_update: bool = True,
        installation_id: int | None = 7,
        github_repo_id: int | None = 99,
    ) -> dict[str, Any]:
        row = {
            "id": str(uuid.uuid4()),
            "installation_id": installation_id,
            "github_repo_id": github_repo_id,
            "repo_full_name": repo_full_name,
            "config": config,
            "auto_update": auto_update,
        }
        self.configs[row["id"]] = row
        return row

    async def create_job(
        self,
        *,
        job_type: str,
        repo_id: str,
        payload: dict[str, Any],
        scheduled_at: datetime,
        max_attempts: int | None = None,
    ) -> dict[str, Any]:
        job = {
            "id": str(uuid.uuid4()),
            "type": job_type,
            "repo_id": repo_id,
            "payload": dict(payload),
            "status": "pending",
            "attempts": 0,
            "max_attempts": max_attempts or self.max_attempts,
            "scheduled_at": scheduled_at,
            "started_at": None,
            "completed_at": None,
            "error_message": None,
            "result": None,
            "created_at": scheduled_at,
        }
        self.jobs[job["id"]] = job
        return dict(job)

    async def list_due_jobs(self, *, now: datetime, limit: int) -> list[dict[str, Any]]:
        due = [job for job in self.jobs.values() if job["status"] == "pending" and job["scheduled_at"] <= now]
        due.sort(key=lambda job: job["scheduled_at"])
        return [dict(job) for job in due[:limit]]

    async def claim_job(self, job_id: str, *, now: datetime) -> dict[str, Any]:
        job = self.jobs.get(job_id)
        if job is None:
            raise RepositoryNotFoundError("job not found")
        if job["status"] != "pending" or job["scheduled_at"] > now:
            raise RepositoryConflictError("job is not claimable")
        job["status"] = "running"
        job["started_at"] = now
        job["completed_at"] = None
        return dict(job)

    async def complete_job(self, job_id: str, *, result: dict[str, Any], now: datetime) -> dict[str, Any]:
        job = self.jobs[job_id]
        if job["status"] != "running":
            raise RepositoryConflictError("job is not running")
        job.update(status="completed", completed_at=now, result=result, error_message=None)
        return dict(job)

    async def fail_job(
        self,
        job_id: str,
        *,
        error_message: str,
        now: datetime,
        retryable: bool = True,
        result: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        job = self.jobs[job_id]
        if job["status"] != "running":
            raise RepositoryConflictError("job is not running")
        transition = self._transitions.plan_failure(
            attempts=job["attempts"],
            max_attempts=job["max_attempts"],
            now=now,
            retryable=retryable,
        )
        job["status"] = transition.status
        job["attempts"] = transition.attempts
        if transition.scheduled_at is not None:
            job["scheduled_at"] = transition.scheduled_at
        job["completed_at"] = transition.completed_at
        job["error_message"] = error_message
        return dict(job)

    async def get_job(self, job_id: str) -> dict[str, Any]:
        if job_id not in self.jobs:
            raise RepositoryNotFoundError("job not found")
        return dict(self.jobs[job_id])

    async def list_jobs_for_repository(self, repo_id: str, *, limit: int = 20) -> list[dict[str, Any]]:
        rows = [dict(job) for job in self.jobs.values() if job["repo_id"] == repo_id]
        return rows[:limit]

    async def find_recent_pending_job(
        self,
        *,
        repo_id: str,
        job_type: str,
        scheduled_since: datetime,
    ) -> dict[str, Any] | None:
        matches = [
            job
            for job in self.jobs.values()
            if job["repo_id"] == repo_id
            and job["type"] == job_type
            and job["status"] == "pending"
            and job["scheduled_at"] >= scheduled_since
        ]
        if not matches:
            return None
        return dict(max(matches, key=lambda job: job["scheduled_at"]))

    async def reschedule_job(
        self,
        job_id: str,
        *,
        scheduled_at: datetime,
        payload: dict[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        if self.claim_hook is not None:
            self.claim_hook(job_id)
        job = self.jobs.get(job_id)
        if job is None or job["status"] != "pending":
            return None
        job["scheduled_at"] = scheduled_at
        if payload is not None:
            job["payload"] = dict(payload)
        return dict(job)

    async def purge_finished_jobs(self, *, completed_before: datetime, failed_before: datetime) -> int:
        doomed = [
            job_id
            for job_id, job in self.jobs.items()
            if (job["status"] == "completed" and job["completed_at"] < completed_before)
            or (job["status"] == "failed" and job["completed_at"] < failed_before)
        ]
        for job_id in doomed:
            del self.jobs[job_id]
        return len(doomed)

    async def purge_webhook_events(self, *, processed_before: datetime, failed_before: datetime) -> int:
        doomed = [
            event_id
            for event_id, event in self.webhook_events.items()
            if (event["status"] == "processed" and event["created_at"] < processed_before)
            or (event["status"] == "failed" and event["created_at"] < failed_before)
        ]
        for event_id in doomed:
            del self.webhook_events[event_id]
        return len(doomed)

    async def list_stale_running_jobs(self, *, started_before: datetime, limit: int = 50) -> list[dict[str, Any]]:
        rows = [
            dict(job)
            for job in self.jobs.values()
            if job["status"] == "running" and job["started_at"] < started_before
        ]
        return rows[:limit]

    async def get_repository_config(self, config_id: str) -> dict[str, Any]:
        if config_id not in self.configs:
            raise RepositoryNotFoundError("repository config not found")
        return dict(self.configs[config_id])

    async def get_repository_config_by_name(self, repo_full_name: str) -> dict[str, Any]:
        for row in self.configs.values():
            if row["repo_full_name"].lower() == repo_full_name.lower():
                return dict(row)
        raise RepositoryNotFoundError("repository config not found")

    async def list_repository_configs(self) -> list[dict[str, Any]]:
        return [dict(row) for row in self.configs.values()]

    async def upsert_installation(self, *, github_installation_id: int, **fields: Any) -> None:
        self.installations[github_installation_id] = {**fields, "suspended_at": None}

    async def delete_installation(self, github_installation_id: int) -> int:
        return 1 if self.installations.pop(github_installation_id, None) is not None else 0

    async def set_installation_suspended(self, github_installation_id: int, *, suspended_at: datetime | None) -> int:
        if github_installation_id not in self.installations:
            return 0
        self.installations[github_installation_id]["suspended_at"] = suspended_at
        return 1

    async def record_webhook_event(self, *, event_type: str, delivery_id: str | None, payload: dict[str, Any]) -> str:
        event_id = str(uuid.uuid4())
        self.webhook_events[event_id] = {
            "event_type": event_type,
            "delivery_id": delivery_id,
            "payload": payload,
            "status": "pending",
            "job_id": None,
            "error_message": None,
            "created_at": datetime.now(timezone.utc),
        }
        return event_id

    async def mark_webhook_event(
        self,
        event_id: str,
        *,
        status: str,
        processed_at: datetime,
        job_id: str | None = None,
        error_message: str | None = None,
    ) -> None:
        self.webhook_events[event_id].update(
            status=status,
            processed_at=processed_at,
            job_id=job_id,
            error_message=error_message,
        )

    async def create_pr_record(
        self,
        *,
        repo_id: str,
        job_id: str | None,
        pr_number: int,
        pr_url: str,
        templates_applied: list[str],
    ) -> dict[str, Any]:
        record = {
            "id": str(uuid.uuid4()),
            "repo_id": repo_id,
            "job_id": job_id,
            "pr_number": pr_number,
            "pr_url": pr_url,
            "templates_applied": list(templates_applied),
            "created_at": datetime.now(timezone.utc),
        }
        self.pr_records.append(record)
        return dict(record)

    async def list_pr_records(self, repo_id: str, *, limit: int = 20) -> list[dict[str, Any]]:
        return [dict(record) for record in self.pr_records if record["repo_id"] == repo_id][:limit]

    async def ping(self) -> None:
        if self.unavailable:
            raise RepositoryUnavailableError("database unavailable")

    async def close(self) -> None:
        return None


@pytest.fixture
def memory_repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def t0() -> datetime:
    return T0


