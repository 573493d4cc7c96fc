from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Literal, Protocol

from repoweaver.core.config import Settings
from repoweaver.core.errors import ConfigurationError
from repoweaver.core.github_urls import same_repository
from repoweaver.schemas.jobs import ApplyTemplatesPayload, JobTrigger, RepositoryRef, encode_job_payload
from repoweaver.schemas.weaver import load_weaver_config
from repoweaver.schemas.webhooks import PushEvent

logger = logging.getLogger(__name__)


class DebounceStore(Protocol):
    async def list_repository_configs(self) -> list[dict[str, Any]]: ...

    async def find_recent_pending_job(
        self, *, repo_id: str, job_type: str, scheduled_since: datetime
    ) -> dict[str, Any] | None: ...

    async def reschedule_job(
        self, job_id: str, *, scheduled_at: datetime, payload: dict[str, Any] | None = None
    ) -> dict[str, Any] | None: ...

    async def create_job(
        self,
        *,
        job_type: str,
        repo_id: str,
        payload: dict[str, Any],
        scheduled_at: datetime,
        max_attempts: int | None = None,
    ) -> dict[str, Any]: ...


@dataclass(slots=True)
class ScheduledJob:
    job_id: str
    repo_id: str
    repo_full_name: str
    action: Literal["created", "rescheduled"]
    scheduled_at: datetime


class WebhookDebouncer:
    """Coalesces bursts of template pushes into one delayed apply job per target."""

    def __init__(
        self,
        repository: DebounceStore,
        *,
        delay_seconds: int = 300,
        window_seconds: int = 300,
        max_attempts: int = 3,
    ) -> None:
        self._repository = repository
        self._delay = timedelta(seconds=max(0, delay_seconds))
        self._window = timedelta(seconds=max(0, window_seconds))
        self._max_attempts = max_attempts

    @classmethod
    def from_settings(cls, repository: DebounceStore, settings: Settings) -> WebhookDebouncer:
        return cls(
            repository,
            delay_seconds=settings.debounce_delay_seconds,
            window_seconds=settings.debounce_window_seconds,
            max_attempts=settings.job_max_attempts,
        )

    async def handle_push(self, event: PushEvent, now: datetime | None = None) -> list[ScheduledJob]:
        template_repo = event.repository.full_name
        if not event.is_default_branch:
            logger.info(
                "push ignored repo=%s ref=%s reason=not_default_branch default=%s",
                template_repo,
                event.ref,
                event.repository.effective_default_branch,
            )
            return []

        moment = now or datetime.now(timezone.utc)
        scheduled: list[ScheduledJob] = []
        for config_row in await self._repository.list_repository_configs():
            if not self._references_template(config_row, template_repo):
                continue
            scheduled.append(
                await self.schedule(config_row, now=moment, trigger="push", template_repo=template_repo)
            )

        logger.info("push handled template=%s targets=%s", template_repo, len(scheduled))
        return scheduled

    async def schedule(
        self,
        config_row: dict[str, Any],
        *,
        now: datetime,
        trigger: JobTrigger,
        template_repo: str | None = None,
    ) -> ScheduledJob:
        repo_id = config_row["id"]
        full_name = config_row["repo_full_name"]
        scheduled_at = now + self._delay
        payload = encode_job_payload(
            ApplyTemplatesPayload(
                repository=_repository_ref(config_row),
                installation_id=config_row.get("installation_id"),
                trigger=trigger,
                template_repo=template_repo,
            )
        )

        existing = await self._repository.find_recent_pending_job(
            repo_id=repo_id,
            job_type="apply_templates",
            scheduled_since=now - self._window,
        )
        if existing is not None:
            moved = await self._repository.reschedule_job(existing["id"], scheduled_at=scheduled_at, payload=payload)
            if moved is not None:
                logger.info(
                    "apply job debounced repo=%s job_id=%s scheduled_at=%s",
                    full_name,
                    moved["id"],
                    scheduled_at.isoformat(),
                )
                return ScheduledJob(
                    job_id=moved["id"],
                    repo_id=repo_id,
                    repo_full_name=full_name,
                    action="rescheduled",
                    scheduled_at=scheduled_at,
                )
            logger.info("pending job claimed before reschedule repo=%s job_id=%s", full_name, existing["id"])

        job = await self._repository.create_job(
            job_type="apply_templates",
            repo_id=repo_id,
            payload=payload,
            scheduled_at=scheduled_at,
            max_attempts=self._max_attempts,
        )
        logger.info(
            "apply job scheduled repo=%s job_id=%s scheduled_at=%s",
            full_name,
            job["id"],
            scheduled_at.isoformat(),
        )
        return ScheduledJob(
            job_id=job["id"],
            repo_id=repo_id,
            repo_full_name=full_name,
            action="created",
            scheduled_at=scheduled_at,
        )

    def _references_template(self, config_row: dict[str, Any], template_repo: str) -> bool:
        if not config_row.get("auto_update", True):
            return False
        try:
            config = load_weaver_config(config_row.get("config") or {})
        except ConfigurationError as exc:
            logger.warning("repository config unreadable repo=%s error=%s", config_row.get("repo_full_name"), exc)
            return False
        if not config.auto_update:
            return False
        return any(same_repository(template.url, template_repo) for template in config.templates)


def _repository_ref(config_row: dict[str, Any]) -> RepositoryRef:
    owner, _, name = str(config_row["repo_full_name"]).partition("/")
    return RepositoryRef(owner=owner, name=name, id=config_row.get("github_repo_id"))
