from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Any

import asyncpg  # type: ignore[import-untyped]
from asyncpg import exceptions as pg_exc

from repoweaver.core.config import get_settings


class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""


class RepositoryNotFoundError(RepositoryError):
    """Raised when the requested entity does not exist."""


class RepositoryConflictError(RepositoryError):
    """Raised when an operation violates state transition rules."""


JOB_TYPES = {"apply_templates", "preview_templates"}
WEBHOOK_EVENT_STATUSES = {"pending", "processed", "failed"}

_JOB_COLUMNS = """
  id::text as id,
  type::text as type,
  repo_id::text as repo_id,
  payload,
  status::text as status,
  attempts,
  max_attempts,
  scheduled_at,
  started_at,
  completed_at,
  error_message,
  result_json,
  created_at
"""

_CONFIG_COLUMNS = """
  id::text as id,
  installation_id,
  github_repo_id,
  repo_full_name,
  config,
  auto_update
"""


@dataclass(slots=True)
class FailureTransition:
    status: str
    attempts: int
    scheduled_at: datetime | None
    completed_at: datetime | None
    retry_delay_seconds: int | None


class PostgresRepository:
    def __init__(
        self,
        database_url: str | None,
        min_pool_size: int,
        max_pool_size: int,
        job_max_attempts: int,
        job_retry_base_seconds: int,
        job_retry_max_seconds: int,
    ) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.job_max_attempts = max(1, job_max_attempts)
        self.job_retry_base_seconds = max(0, job_retry_base_seconds)
        self.job_retry_max_seconds = max(0, job_retry_max_seconds)
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def ping(self) -> None:
        pool = await self._get_pool()
        try:
            await pool.fetchval("select 1")
        except (OSError, asyncpg.PostgresError) as exc:
            raise RepositoryUnavailableError("database unavailable") from exc

    # Jobs

    async def create_job(
        self,
        *,
        job_type: str,
        repo_id: str,
        payload: dict[str, Any],
        scheduled_at: datetime,
        max_attempts: int | None = None,
    ) -> dict[str, Any]:
        if job_type not in JOB_TYPES:
            raise RepositoryConflictError(f"unsupported job type: {job_type}")
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                f"""
                insert into jobs (type, repo_id, payload, scheduled_at, max_attempts)
                values ($1::job_type, $2::uuid, $3::jsonb, $4::timestamptz, $5)
                returning {_JOB_COLUMNS}
                """,
                job_type,
                repo_id,
                json.dumps(payload),
                scheduled_at,
                max_attempts or self.job_max_attempts,
            )
        except (pg_exc.ForeignKeyViolationError, pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("repository config not found") from exc
        return self._job_row_to_dict(row)

    async def list_due_jobs(self, *, now: datetime, limit: int) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            f"""
            select {_JOB_COLUMNS}
            from jobs
            where status = 'pending' and scheduled_at <= $1::timestamptz
            order by scheduled_at asc, created_at asc
            limit $2
            """,
            now,
            limit,
        )
        return [self._job_row_to_dict(row) for row in rows]

    async def claim_job(self, job_id: str, *, now: datetime) -> dict[str, Any]:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                row = await conn.fetchrow(
                    f"""
                    update jobs
                    set
                      status = 'running',
                      started_at = $2::timestamptz,
                      completed_at = null,
                      updated_at = now()
                    where id = $1::uuid and status = 'pending' and scheduled_at <= $2::timestamptz
                    returning {_JOB_COLUMNS}
                    """,
                    job_id,
                    now,
                )
                if not row:
                    exists = await conn.fetchval("select 1 from jobs where id = $1::uuid", job_id)
                    if not exists:
                        raise RepositoryNotFoundError("job not found")
                    raise RepositoryConflictError("job is not claimable")
                return self._job_row_to_dict(row)
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("job not found") from exc

    async def complete_job(self, job_id: str, *, result: dict[str, Any], now: datetime) -> dict[str, Any]:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            f"""
            update jobs
            set
              status = 'completed',
              completed_at = greatest($3::timestamptz, coalesce(started_at, $3::timestamptz)),
              result_json = $2::jsonb,
              error_message = null,
              updated_at = now()
            where id = $1::uuid and status = 'running'
            returning {_JOB_COLUMNS}
            """,
            job_id,
            json.dumps(result, default=str),
            now,
        )
        if not row:
            raise RepositoryConflictError("job is not running")
        return self._job_row_to_dict(row)

    async def fail_job(
        self,
        job_id: str,
        *,
        error_message: str,
        now: datetime,
        retryable: bool = True,
        result: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                current = await conn.fetchrow(
                    """
                    select status::text as status, attempts, max_attempts, started_at
                    from jobs
                    where id = $1::uuid
                    for update
                    """,
                    job_id,
                )
                if not current:
                    raise RepositoryNotFoundError("job not found")
                if current["status"] != "running":
                    raise RepositoryConflictError("job is not running")

                transition = self.plan_failure(
                    attempts=int(current["attempts"]),
                    max_attempts=int(current["max_attempts"]),
                    now=now,
                    retryable=retryable,
                )
                completed_at = transition.completed_at
                started_at = current["started_at"]
                if completed_at is not None and started_at is not None and completed_at < started_at:
                    completed_at = started_at

                row = await conn.fetchrow(
                    f"""
                    update jobs
                    set
                      status = $2::job_status,
                      attempts = $3,
                      scheduled_at = coalesce($4::timestamptz, scheduled_at),
                      completed_at = $5::timestamptz,
                      error_message = $6,
                      result_json = coalesce($7::jsonb, result_json),
                      updated_at = now()
                    where id = $1::uuid
                    returning {_JOB_COLUMNS}
                    """,
                    job_id,
                    transition.status,
                    transition.attempts,
                    transition.scheduled_at,
                    completed_at,
                    error_message,
                    json.dumps(result, default=str) if result is not None else None,
                )
                job = self._job_row_to_dict(row)
                job["retry_delay_seconds"] = transition.retry_delay_seconds
                return job

    def plan_failure(
        self,
        *,
        attempts: int,
        max_attempts: int,
        now: datetime,
        retryable: bool = True,
    ) -> FailureTransition:
        """Decide what a failed run turns into.

        A retryable failure with attempts left bumps ``attempts`` and moves the job
        back to pending after ``min(2**attempts * base, max)`` seconds, using the
        bumped count. Otherwise the job becomes terminally failed.
        """
        if retryable and attempts < max_attempts:
            next_attempts = attempts + 1
            delay = self._compute_retry_delay_seconds(attempt=next_attempts)
            return FailureTransition(
                status="pending",
                attempts=next_attempts,
                scheduled_at=now + timedelta(seconds=delay),
                completed_at=None,
                retry_delay_seconds=delay,
            )
        return FailureTransition(
            status="failed",
            attempts=attempts,
            scheduled_at=None,
            completed_at=now,
            retry_delay_seconds=None,
        )

    async def get_job(self, job_id: str) -> dict[str, Any]:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(f"select {_JOB_COLUMNS} from jobs where id = $1::uuid", job_id)
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("job not found") from exc
        if not row:
            raise RepositoryNotFoundError("job not found")
        return self._job_row_to_dict(row)

    async def list_jobs_for_repository(self, repo_id: str, *, limit: int = 20) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            f"""
            select {_JOB_COLUMNS}
            from jobs
            where repo_id = $1::uuid
            order by created_at desc
            limit $2
            """,
            repo_id,
            limit,
        )
        return [self._job_row_to_dict(row) for row in rows]

    async def find_recent_pending_job(
        self,
        *,
        repo_id: str,
        job_type: str,
        scheduled_since: datetime,
    ) -> dict[str, Any] | None:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            f"""
            select {_JOB_COLUMNS}
            from jobs
            where repo_id = $1::uuid
              and type = $2::job_type
              and status = 'pending'
              and scheduled_at >= $3::timestamptz
            order by scheduled_at desc
            limit 1
            """,
            repo_id,
            job_type,
            scheduled_since,
        )
        return self._job_row_to_dict(row) if row else None

    async def reschedule_job(
        self,
        job_id: str,
        *,
        scheduled_at: datetime,
        payload: dict[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        """Move a still-pending job; ``None`` means a worker claimed it first."""
        pool = await self._get_pool()
        row = await pool.fetchrow(
            f"""
            update jobs
            set
              scheduled_at = $2::timestamptz,
              payload = coalesce($3::jsonb, payload),
              updated_at = now()
            where id = $1::uuid and status = 'pending'
            returning {_JOB_COLUMNS}
            """,
            job_id,
            scheduled_at,
            json.dumps(payload) if payload is not None else None,
        )
        return self._job_row_to_dict(row) if row else None

    # Housekeeping

    async def purge_finished_jobs(self, *, completed_before: datetime, failed_before: datetime) -> int:
        pool = await self._get_pool()
        result = await pool.execute(
            """
            delete from jobs
            where (status = 'completed' and completed_at < $1::timestamptz)
               or (status = 'failed' and completed_at < $2::timestamptz)
            """,
            completed_before,
            failed_before,
        )
        return self._affected_rows(result)

    async def purge_webhook_events(self, *, processed_before: datetime, failed_before: datetime) -> int:
        pool = await self._get_pool()
        result = await pool.execute(
            """
            delete from webhook_events
            where (status = 'processed' and created_at < $1::timestamptz)
               or (status = 'failed' and created_at < $2::timestamptz)
            """,
            processed_before,
            failed_before,
        )
        return self._affected_rows(result)

    async def list_stale_running_jobs(self, *, started_before: datetime, limit: int = 50) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            f"""
            select {_JOB_COLUMNS}
            from jobs
            where status = 'running' and started_at < $1::timestamptz
            order by started_at asc
            limit $2
            """,
            started_before,
            limit,
        )
        return [self._job_row_to_dict(row) for row in rows]

    # Repository configs

    async def get_repository_config(self, config_id: str) -> dict[str, Any]:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                f"select {_CONFIG_COLUMNS} from repository_configs where id = $1::uuid",
                config_id,
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("repository config not found") from exc
        if not row:
            raise RepositoryNotFoundError("repository config not found")
        return self._config_row_to_dict(row)

    async def get_repository_config_by_name(self, repo_full_name: str) -> dict[str, Any]:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            f"select {_CONFIG_COLUMNS} from repository_configs where lower(repo_full_name) = lower($1)",
            repo_full_name,
        )
        if not row:
            raise RepositoryNotFoundError("repository config not found")
        return self._config_row_to_dict(row)

    async def list_repository_configs(self) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            f"""
            select {_CONFIG_COLUMNS}
            from repository_configs c
            where not exists (
              select 1 from installations i
              where i.github_installation_id = c.installation_id and i.suspended_at is not null
            )
            order by repo_full_name asc
            """
        )
        return [self._config_row_to_dict(row) for row in rows]

    async def upsert_repository_config(
        self,
        *,
        repo_full_name: str,
        config: dict[str, Any],
        installation_id: int | None = None,
        github_repo_id: int | None = None,
        auto_update: bool = True,
    ) -> dict[str, Any]:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                f"""
                insert into repository_configs (installation_id, github_repo_id, repo_full_name, config, auto_update)
                values ($1, $2, $3, $4::jsonb, $5)
                on conflict (repo_full_name) do update
                set
                  installation_id = coalesce(excluded.installation_id, repository_configs.installation_id),
                  github_repo_id = coalesce(excluded.github_repo_id, repository_configs.github_repo_id),
                  config = excluded.config,
                  auto_update = excluded.auto_update,
                  updated_at = now()
                returning {_CONFIG_COLUMNS}
                """,
                installation_id,
                github_repo_id,
                repo_full_name,
                json.dumps(config),
                auto_update,
            )
        except pg_exc.ForeignKeyViolationError as exc:
            raise RepositoryNotFoundError("installation not found") from exc
        except pg_exc.UniqueViolationError as exc:
            raise RepositoryConflictError("github repository already configured under another name") from exc
        return self._config_row_to_dict(row)

    # Installations

    async def upsert_installation(
        self,
        *,
        github_installation_id: int,
        account_id: int | None,
        account_type: str | None,
        account_login: str | None,
    ) -> None:
        pool = await self._get_pool()
        await pool.execute(
            """
            insert into installations (github_installation_id, account_id, account_type, account_login)
            values ($1, $2, $3, $4)
            on conflict (github_installation_id) do update
            set
              account_id = excluded.account_id,
              account_type = excluded.account_type,
              account_login = excluded.account_login,
              suspended_at = null,
              updated_at = now()
            """,
            github_installation_id,
            account_id,
            account_type,
            account_login,
        )

    async def delete_installation(self, github_installation_id: int) -> int:
        pool = await self._get_pool()
        result = await pool.execute(
            "delete from installations where github_installation_id = $1",
            github_installation_id,
        )
        return self._affected_rows(result)

    async def set_installation_suspended(self, github_installation_id: int, *, suspended_at: datetime | None) -> int:
        pool = await self._get_pool()
        result = await pool.execute(
            """
            update installations
            set suspended_at = $2::timestamptz, updated_at = now()
            where github_installation_id = $1
            """,
            github_installation_id,
            suspended_at,
        )
        return self._affected_rows(result)

    # Webhook events

    async def record_webhook_event(
        self,
        *,
        event_type: str,
        delivery_id: str | None,
        payload: dict[str, Any],
    ) -> str:
        pool = await self._get_pool()
        return await pool.fetchval(
            """
            insert into webhook_events (event_type, delivery_id, payload)
            values ($1, $2, $3::jsonb)
            returning id::text
            """,
            event_type,
            delivery_id,
            json.dumps(payload),
        )

    async def mark_webhook_event(
        self,
        event_id: str,
        *,
        status: str,
        processed_at: datetime,
        job_id: str | None = None,
        error_message: str | None = None,
    ) -> None:
        if status not in WEBHOOK_EVENT_STATUSES:
            raise RepositoryConflictError(f"unsupported webhook event status: {status}")
        pool = await self._get_pool()
        await pool.execute(
            """
            update webhook_events
            set status = $2, job_id = $3::uuid, error_message = $4, processed_at = $5::timestamptz
            where id = $1::uuid
            """,
            event_id,
            status,
            job_id,
            error_message,
            processed_at,
        )

    # Pull request records

    async def create_pr_record(
        self,
        *,
        repo_id: str,
        job_id: str | None,
        pr_number: int,
        pr_url: str,
        templates_applied: list[str],
    ) -> dict[str, Any]:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            """
            insert into pr_records (repo_id, job_id, pr_number, pr_url, templates_applied)
            values ($1::uuid, $2::uuid, $3, $4, $5::text[])
            returning
              id::text as id,
              repo_id::text as repo_id,
              job_id::text as job_id,
              pr_number,
              pr_url,
              templates_applied,
              created_at
            """,
            repo_id,
            job_id,
            pr_number,
            pr_url,
            templates_applied,
        )
        return self._pr_record_row_to_dict(row)

    async def list_pr_records(self, repo_id: str, *, limit: int = 20) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select
              id::text as id,
              repo_id::text as repo_id,
              job_id::text as job_id,
              pr_number,
              pr_url,
              templates_applied,
              created_at
            from pr_records
            where repo_id = $1::uuid
            order by created_at desc
            limit $2
            """,
            repo_id,
            limit,
        )
        return [self._pr_record_row_to_dict(row) for row in rows]

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("RW_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc

    @classmethod
    def _job_row_to_dict(cls, row: asyncpg.Record) -> dict[str, Any]:
        result = row["result_json"]
        return {
            "id": row["id"],
            "type": row["type"],
            "repo_id": row["repo_id"],
            "payload": cls._coerce_json_dict(row["payload"]),
            "status": row["status"],
            "attempts": int(row["attempts"]),
            "max_attempts": int(row["max_attempts"]),
            "scheduled_at": row["scheduled_at"],
            "started_at": row["started_at"],
            "completed_at": row["completed_at"],
            "error_message": row["error_message"],
            "result": cls._coerce_json_dict(result) if result is not None else None,
            "created_at": row["created_at"],
        }

    @classmethod
    def _config_row_to_dict(cls, row: asyncpg.Record) -> dict[str, Any]:
        return {
            "id": row["id"],
            "installation_id": row["installation_id"],
            "github_repo_id": row["github_repo_id"],
            "repo_full_name": row["repo_full_name"],
            "config": cls._coerce_json_dict(row["config"]),
            "auto_update": bool(row["auto_update"]),
        }

    @staticmethod
    def _pr_record_row_to_dict(row: asyncpg.Record) -> dict[str, Any]:
        return {
            "id": row["id"],
            "repo_id": row["repo_id"],
            "job_id": row["job_id"],
            "pr_number": int(row["pr_number"]),
            "pr_url": row["pr_url"],
            "templates_applied": list(row["templates_applied"] or []),
            "created_at": row["created_at"],
        }

    def _compute_retry_delay_seconds(self, *, attempt: int) -> int:
        if self.job_retry_base_seconds <= 0:
            return 0
        delay = self.job_retry_base_seconds * (2 ** max(0, attempt))
        return min(delay, self.job_retry_max_seconds)

    @staticmethod
    def _affected_rows(status: str) -> int:
        try:
            return int(status.rsplit(" ", maxsplit=1)[-1])
        except (ValueError, AttributeError):
            return 0

    @staticmethod
    def _coerce_json_dict(value: Any) -> dict[str, Any]:
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError:
                return {}
        if isinstance(value, dict):
            return value
        return {}


@lru_cache
def get_repository() -> PostgresRepository:
    settings = get_settings()
    return PostgresRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
        job_max_attempts=settings.job_max_attempts,
        job_retry_base_seconds=settings.job_retry_base_seconds,
        job_retry_max_seconds=settings.job_retry_max_seconds,
    )
