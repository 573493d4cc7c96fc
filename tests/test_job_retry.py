import asyncio
from datetime import timedelta

import pytest

from repoweaver.services.repository import PostgresRepository, RepositoryConflictError, RepositoryUnavailableError


def _repository(base: int = 30, cap: int = 3600) -> PostgresRepository:
    return PostgresRepository(
        database_url=None,
        min_pool_size=1,
        max_pool_size=1,
        job_max_attempts=3,
        job_retry_base_seconds=base,
        job_retry_max_seconds=cap,
    )


def test_retryable_failure_with_attempts_left_goes_back_to_pending(t0) -> None:
    transition = _repository().plan_failure(attempts=2, max_attempts=3, now=t0)

    assert transition.status == "pending"
    assert transition.attempts == 3
    assert transition.retry_delay_seconds == 240
    assert transition.scheduled_at == t0 + timedelta(seconds=240)
    assert transition.completed_at is None


def test_exhausted_attempts_fail_terminally(t0) -> None:
    transition = _repository().plan_failure(attempts=3, max_attempts=3, now=t0)

    assert transition.status == "failed"
    assert transition.attempts == 3
    assert transition.completed_at == t0
    assert transition.scheduled_at is None


def test_non_retryable_failure_skips_remaining_attempts(t0) -> None:
    transition = _repository().plan_failure(attempts=0, max_attempts=3, now=t0, retryable=False)

    assert transition.status == "failed"
    assert transition.attempts == 0
    assert transition.completed_at == t0


def test_retry_delay_is_capped(t0) -> None:
    transition = _repository(base=600, cap=900).plan_failure(attempts=4, max_attempts=10, now=t0)

    assert transition.retry_delay_seconds == 900


def test_memory_queue_follows_the_same_transitions(memory_repository, t0) -> None:
    job = asyncio.run(
        memory_repository.create_job(job_type="apply_templates", repo_id="r1", payload={}, scheduled_at=t0)
    )
    asyncio.run(memory_repository.claim_job(job["id"], now=t0))
    failed = asyncio.run(memory_repository.fail_job(job["id"], error_message="boom", now=t0))

    assert failed["status"] == "pending"
    assert failed["attempts"] == 1
    assert failed["scheduled_at"] == t0 + timedelta(seconds=60)
    with pytest.raises(RepositoryConflictError):
        asyncio.run(memory_repository.claim_job(job["id"], now=t0))


def test_missing_database_url_is_reported() -> None:
    with pytest.raises(RepositoryUnavailableError, match="RW_DATABASE_URL"):
        asyncio.run(_repository().get_job("00000000-0000-0000-0000-000000000000"))
