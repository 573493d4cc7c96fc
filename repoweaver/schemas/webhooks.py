from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class WebhookRepository(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int | None = None
    name: str
    full_name: str
    default_branch: str | None = None
    master_branch: str | None = None

    @property
    def effective_default_branch(self) -> str:
        return self.default_branch or self.master_branch or "main"


class WebhookAccount(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int | None = None
    login: str | None = None
    type: str | None = None


class WebhookInstallation(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    account: WebhookAccount | None = None


class PushEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    ref: str
    after: str | None = None
    repository: WebhookRepository
    installation: WebhookInstallation | None = None
    commits: list[dict[str, Any]] = Field(default_factory=list)

    @property
    def branch(self) -> str | None:
        prefix = "refs/heads/"
        if self.ref.startswith(prefix):
            return self.ref[len(prefix) :]
        return None

    @property
    def is_default_branch(self) -> bool:
        return self.branch == self.repository.effective_default_branch


class InstallationEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    action: str
    installation: WebhookInstallation


class WebhookAck(BaseModel):
    status: str
    event: str
    jobs: list[str] = Field(default_factory=list)
    detail: str | None = None
