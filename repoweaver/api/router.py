from fastapi import APIRouter

from repoweaver.api.routes import health, jobs, repositories, webhooks

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
api_router.include_router(repositories.router, prefix="/repositories", tags=["repositories"])
api_router.include_router(jobs.router, prefix="/jobs", tags=["jobs"])
