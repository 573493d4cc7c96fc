from __future__ import annotations

from typing import Any

from repoweaver.core.errors import InvalidJobPayloadError
from repoweaver.schemas.jobs import decode_job_payload
from repoweaver.workers.templates import TemplateJobHandler


async def execute_job(job: dict[str, Any], *, handler: TemplateJobHandler) -> dict[str, Any]:
    job_type = job.get("type")
    if job_type not in {"apply_templates", "preview_templates"}:
        raise InvalidJobPayloadError(f"unsupported job type: {job_type}")
    payload = decode_job_payload(job_type, job.get("payload") or {})
    return await handler.run(job, payload)
