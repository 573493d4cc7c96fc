from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI
from starlette.requests import Request

from repoweaver.api.router import api_router
from repoweaver.core.config import get_settings
from repoweaver.core.telemetry import configure_logging, setup_telemetry, shutdown_telemetry
from repoweaver.services.repository import get_repository

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(instance: FastAPI):
        try:
            yield
        finally:
            shutdown_telemetry(instance.state.telemetry)
            await get_repository().close()
            get_repository.cache_clear()

    instance = FastAPI(title=settings.app_name, lifespan=lifespan)
    instance.state.telemetry = setup_telemetry(settings, component="api", app=instance)

    @instance.middleware("http")
    async def request_logging_middleware(request: Request, call_next):
        started_at = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started_at) * 1000.0
        delivery = request.headers.get("X-GitHub-Delivery")
        if delivery:
            logger.info(
                "http request method=%s path=%s status=%s duration_ms=%.2f delivery=%s",
                request.method,
                request.url.path,
                response.status_code,
                elapsed_ms,
                delivery,
            )
        else:
            logger.info(
                "http request method=%s path=%s status=%s duration_ms=%.2f",
                request.method,
                request.url.path,
                response.status_code,
                elapsed_ms,
            )
        return response

    instance.include_router(api_router)
    return instance


app = create_app()
