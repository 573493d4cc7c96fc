from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from repoweaver.core.errors import InvalidJobPayloadError

JobType = Literal["apply_templates", "preview_templates"]
JobStatus = Literal["pending", "running", "completed", "failed"]
JobTrigger = Literal["push", "manual"]


class RepositoryRef(BaseModel):
    owner: str
    name: str
    id: int | None = None

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


class _TemplateJobPayload(BaseModel):
    repository: RepositoryRef
    installation_id: int | None = None
    trigger: JobTrigger = "manual"
    template_repo: str | None = None


class ApplyTemplatesPayload(_TemplateJobPayload):
    type: Literal["apply_templates"] = "apply_templates"


class PreviewTemplatesPayload(_TemplateJobPayload):
    type: Literal["preview_templates"] = "preview_templates"


JobPayload = Annotated[Union[ApplyTemplatesPayload, PreviewTemplatesPayload], Field(discriminator="type")]
_PAYLOAD_ADAPTER: TypeAdapter[JobPayload] = TypeAdapter(JobPayload)


def decode_job_payload(job_type: str, payload: dict[str, Any]) -> ApplyTemplatesPayload | PreviewTemplatesPayload:
    try:
        return _PAYLOAD_ADAPTER.validate_python({**payload, "type": job_type})
    except ValidationError as exc:
        raise InvalidJobPayloadError(f"invalid {job_type} payload: {exc.errors(include_url=False)}") from exc


def encode_job_payload(payload: ApplyTemplatesPayload | PreviewTemplatesPayload) -> dict[str, Any]:
    return payload.model_dump(mode="json", exclude={"type"})


class JobOut(BaseModel):
    id: str
    type: JobType
    repo_id: str
    status: JobStatus
    attempts: int
    max_attempts: int
    scheduled_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error_message: str | None = None
    result: dict[str, Any] | None = None
    payload: dict[str, Any] = Field(default_factory=dict)


class ApplyTemplatesRequest(BaseModel):
    preview: bool = False


class PullRequestRecordOut(BaseModel):
    id: str
    repo_id: str
    job_id: str | None = None
    pr_number: int
    pr_url: str
    templates_applied: list[str] = Field(default_factory=list)
    created_at: datetime
