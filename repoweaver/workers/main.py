from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Any

from opentelemetry import trace

from repoweaver.core.config import get_settings
from repoweaver.core.telemetry import configure_logging, setup_telemetry, shutdown_telemetry
from repoweaver.services.github import GitHubClient
from repoweaver.services.repository import get_repository
from repoweaver.workers.executor import execute_job
from repoweaver.workers.housekeeping import run_housekeeping
from repoweaver.workers.pool import WorkerPool, utcnow
from repoweaver.workers.templates import TemplateJobHandler

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


async def run_worker() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    telemetry_runtime = setup_telemetry(settings, component="worker")
    repository = get_repository()
    github = GitHubClient.from_settings(settings)
    handler = TemplateJobHandler(repository, github, fetch_mode=settings.template_fetch_mode)

    async def execute(job: dict[str, Any]) -> dict[str, Any]:
        return await execute_job(job, handler=handler)

    pool = WorkerPool(repository, execute, concurrency=settings.worker_concurrency)
    backoff = settings.worker_poll_interval_seconds
    last_housekeeping_at = 0.0
    logger.info(
        "worker started concurrency=%s poll_interval=%.1fs fetch_mode=%s",
        settings.worker_concurrency,
        settings.worker_poll_interval_seconds,
        settings.template_fetch_mode,
    )

    try:
        while True:
            try:
                with tracer.start_as_current_span("worker.poll_cycle"):
                    now = time.monotonic()
                    if now - last_housekeeping_at >= settings.worker_housekeeping_interval_seconds:
                        await run_housekeeping(
                            repository,
                            now=utcnow(),
                            stale_after_seconds=settings.worker_stale_running_after_seconds,
                        )
                        last_housekeeping_at = now

                    started = await pool.run_once()
                    if started:
                        logger.info("jobs started count=%s active=%s", started, pool.active)

                backoff = settings.worker_poll_interval_seconds
                await asyncio.sleep(settings.worker_poll_interval_seconds)
            except Exception as exc:
                jitter = random.uniform(0.0, 0.5)
                sleep_for = min(backoff * (2.0 + jitter), settings.worker_max_backoff_seconds)
                logger.exception("worker iteration failed: %s; retry in %.1fs", exc, sleep_for)
                await asyncio.sleep(sleep_for)
                backoff = sleep_for
    finally:
        await pool.drain()
        await github.close()
        await repository.close()
        shutdown_telemetry(telemetry_runtime)


def main() -> None:
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
