from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any

from pydantic import ValidationError

from repoweaver.schemas.webhooks import InstallationEvent, PushEvent, WebhookAck
from repoweaver.services.debounce import WebhookDebouncer

logger = logging.getLogger(__name__)


class WebhookPayloadError(ValueError):
    """Raised when a verified delivery does not match the expected event shape."""


class WebhookProcessor:
    def __init__(self, repository: Any, debouncer: WebhookDebouncer) -> None:
        self._repository = repository
        self._debouncer = debouncer

    async def process(
        self,
        event_type: str,
        payload: dict[str, Any],
        *,
        delivery_id: str | None = None,
        now: datetime | None = None,
    ) -> WebhookAck:
        moment = now or datetime.now(timezone.utc)
        event_id = await self._repository.record_webhook_event(
            event_type=event_type,
            delivery_id=delivery_id,
            payload=payload,
        )
        try:
            ack = await self._dispatch(event_type, payload, moment)
        except Exception as exc:
            await self._repository.mark_webhook_event(
                event_id,
                status="failed",
                processed_at=moment,
                error_message=str(exc),
            )
            raise

        await self._repository.mark_webhook_event(
            event_id,
            status="processed",
            processed_at=moment,
            job_id=ack.jobs[0] if ack.jobs else None,
        )
        return ack

    async def _dispatch(self, event_type: str, payload: dict[str, Any], now: datetime) -> WebhookAck:
        if event_type == "push":
            event = _parse(PushEvent, payload, event_type)
            scheduled = await self._debouncer.handle_push(event, now=now)
            return WebhookAck(status="processed", event=event_type, jobs=[item.job_id for item in scheduled])

        if event_type == "installation":
            event = _parse(InstallationEvent, payload, event_type)
            return await self._handle_installation(event, now)

        if event_type == "installation_repositories":
            logger.info(
                "installation repositories changed action=%s installation_id=%s",
                payload.get("action"),
                (payload.get("installation") or {}).get("id"),
            )
            return WebhookAck(status="processed", event=event_type)

        logger.info("webhook event ignored event=%s", event_type)
        return WebhookAck(status="ignored", event=event_type)

    async def _handle_installation(self, event: InstallationEvent, now: datetime) -> WebhookAck:
        installation = event.installation
        account = installation.account
        if event.action == "created":
            await self._repository.upsert_installation(
                github_installation_id=installation.id,
                account_id=account.id if account else None,
                account_type=account.type if account else None,
                account_login=account.login if account else None,
            )
        elif event.action == "deleted":
            await self._repository.delete_installation(installation.id)
        elif event.action == "suspend":
            await self._repository.set_installation_suspended(installation.id, suspended_at=now)
        elif event.action == "unsuspend":
            await self._repository.set_installation_suspended(installation.id, suspended_at=None)
        else:
            logger.info("installation action ignored action=%s installation_id=%s", event.action, installation.id)
            return WebhookAck(status="ignored", event="installation", detail=event.action)

        logger.info("installation updated action=%s installation_id=%s", event.action, installation.id)
        return WebhookAck(status="processed", event="installation", detail=event.action)


def _parse(model: Any, payload: dict[str, Any], event_type: str) -> Any:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise WebhookPayloadError(f"malformed {event_type} payload: {exc.error_count()} errors") from exc
