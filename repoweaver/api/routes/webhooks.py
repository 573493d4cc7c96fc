import json

from fastapi import APIRouter, Depends, Header, HTTPException, status

from repoweaver.core.config import Settings, get_settings
from repoweaver.core.security import require_webhook_signature
from repoweaver.schemas.webhooks import WebhookAck
from repoweaver.services.debounce import WebhookDebouncer
from repoweaver.services.repository import RepositoryUnavailableError, get_repository
from repoweaver.services.webhooks import WebhookPayloadError, WebhookProcessor

router = APIRouter()


@router.post("/github", response_model=WebhookAck, status_code=status.HTTP_202_ACCEPTED)
async def receive_github_webhook(
    body: bytes = Depends(require_webhook_signature),
    settings: Settings = Depends(get_settings),
    repository=Depends(get_repository),
    x_github_event: str | None = Header(default=None, alias="X-GitHub-Event"),
    x_github_delivery: str | None = Header(default=None, alias="X-GitHub-Delivery"),
) -> WebhookAck:
    if not x_github_event:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="missing X-GitHub-Event header")
    try:
        payload = json.loads(body)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="webhook body is not JSON") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="webhook body must be an object")

    processor = WebhookProcessor(repository, WebhookDebouncer.from_settings(repository, settings))
    try:
        return await processor.process(x_github_event, payload, delivery_id=x_github_delivery)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except WebhookPayloadError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
