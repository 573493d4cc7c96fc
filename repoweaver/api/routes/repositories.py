from datetime import datetime, timezone
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from repoweaver.core.config import Settings, get_settings
from repoweaver.core.errors import ConfigurationError
from repoweaver.core.security import require_api_key
from repoweaver.schemas.jobs import (
    ApplyTemplatesPayload,
    ApplyTemplatesRequest,
    JobOut,
    PreviewTemplatesPayload,
    PullRequestRecordOut,
    RepositoryRef,
    encode_job_payload,
)
from repoweaver.schemas.weaver import load_weaver_config
from repoweaver.services.repository import (
    RepositoryConflictError,
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    get_repository,
)

router = APIRouter(dependencies=[Depends(require_api_key)])
logger = logging.getLogger(__name__)


@router.post(
    "/{owner}/{repo}/apply-templates",
    response_model=JobOut,
    status_code=status.HTTP_202_ACCEPTED,
)
async def apply_templates(
    owner: str,
    repo: str,
    payload: ApplyTemplatesRequest | None = None,
    settings: Settings = Depends(get_settings),
    repository=Depends(get_repository),
) -> JobOut:
    request = payload or ApplyTemplatesRequest()
    try:
        config_row = await repository.get_repository_config_by_name(f"{owner}/{repo}")
        load_weaver_config(config_row["config"])

        ref = RepositoryRef(owner=owner, name=repo, id=config_row.get("github_repo_id"))
        job_payload = (
            PreviewTemplatesPayload(repository=ref, installation_id=config_row.get("installation_id"))
            if request.preview
            else ApplyTemplatesPayload(repository=ref, installation_id=config_row.get("installation_id"))
        )
        row = await repository.create_job(
            job_type=job_payload.type,
            repo_id=config_row["id"],
            payload=encode_job_payload(job_payload),
            scheduled_at=datetime.now(timezone.utc),
            max_attempts=settings.job_max_attempts,
        )
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except RepositoryConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except ConfigurationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc

    logger.info("manual template job queued repo=%s/%s job_id=%s preview=%s", owner, repo, row["id"], request.preview)
    return JobOut(**row)


@router.get("/{owner}/{repo}/jobs", response_model=list[JobOut])
async def list_repository_jobs(
    owner: str,
    repo: str,
    repository=Depends(get_repository),
    limit: int = Query(default=20, ge=1, le=100),
) -> list[JobOut]:
    try:
        config_row = await repository.get_repository_config_by_name(f"{owner}/{repo}")
        rows = await repository.list_jobs_for_repository(config_row["id"], limit=limit)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    return [JobOut(**row) for row in rows]


@router.get("/{owner}/{repo}/pull-requests", response_model=list[PullRequestRecordOut])
async def list_repository_pull_requests(
    owner: str,
    repo: str,
    repository=Depends(get_repository),
    limit: int = Query(default=20, ge=1, le=100),
) -> list[PullRequestRecordOut]:
    try:
        config_row = await repository.get_repository_config_by_name(f"{owner}/{repo}")
        rows = await repository.list_pr_records(config_row["id"], limit=limit)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    return [PullRequestRecordOut(**row) for row in rows]
