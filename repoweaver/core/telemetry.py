from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
import logging
import os
from typing import Any

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.resources import DEPLOYMENT_ENVIRONMENT, SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased
from opentelemetry.trace import Span

from repoweaver.core.config import Settings

SERVICE_VERSION_VALUE = "0.1.0"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s trace_id=%(trace_id)s span_id=%(span_id)s %(message)s"
_ZERO_TRACE_ID = "0" * 32
_ZERO_SPAN_ID = "0" * 16

_base_record_factory = logging.getLogRecordFactory()
_correlation_installed = False
_httpx_instrumentor = HTTPXClientInstrumentor()


@dataclass(slots=True)
class TelemetryRuntime:
    component: str
    enabled: bool
    provider: TracerProvider | None
    instrumented_apps: list[FastAPI] = field(default_factory=list)


def configure_logging(level: str = "INFO") -> None:
    """Install trace correlation on every record and a basic handler if none exists."""
    _install_log_correlation()
    root = logging.getLogger()
    if root.handlers:
        return
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


def setup_telemetry(settings: Settings, *, component: str, app: FastAPI | None = None) -> TelemetryRuntime:
    """Build the tracer provider for ``component`` ("api" or "worker").

    Outgoing GitHub calls are traced through the httpx instrumentor; passing
    ``app`` also traces incoming requests.
    """
    if not settings.otel_enabled:
        return TelemetryRuntime(component=component, enabled=False, provider=None)

    if settings.otel_log_correlation:
        _install_log_correlation()

    service_name = f"{settings.otel_service_name}-{component}"
    provider = TracerProvider(
        resource=Resource.create(
            {
                SERVICE_NAME: service_name,
                SERVICE_VERSION: SERVICE_VERSION_VALUE,
                DEPLOYMENT_ENVIRONMENT: settings.environment,
            }
        ),
        sampler=TraceIdRatioBased(settings.otel_trace_sample_ratio),
    )
    exporter = _build_exporter(settings, service_name)
    if exporter is not None:
        provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    _httpx_instrumentor.instrument(tracer_provider=provider)

    runtime = TelemetryRuntime(component=component, enabled=True, provider=provider)
    if app is not None:
        FastAPIInstrumentor.instrument_app(app, tracer_provider=provider)
        runtime.instrumented_apps.append(app)
    return runtime


def shutdown_telemetry(runtime: TelemetryRuntime) -> None:
    if not runtime.enabled:
        return
    for app in runtime.instrumented_apps:
        FastAPIInstrumentor.uninstrument_app(app)
    runtime.instrumented_apps.clear()
    _httpx_instrumentor.uninstrument()
    if runtime.provider is not None:
        runtime.provider.force_flush()
        runtime.provider.shutdown()


def annotate_job_span(span: Span, job: Mapping[str, Any]) -> None:
    span.set_attribute("repoweaver.job.id", str(job["id"]))
    span.set_attribute("repoweaver.job.type", str(job["type"]))
    span.set_attribute("repoweaver.job.attempts", int(job.get("attempts") or 0))
    if job.get("repo_id"):
        span.set_attribute("repoweaver.repository.config_id", str(job["repo_id"]))


def _build_exporter(settings: Settings, service_name: str) -> OTLPSpanExporter | None:
    endpoint = (
        settings.otel_exporter_otlp_endpoint
        or os.getenv("OTEL_EXPORTER_OTLP_TRACES_ENDPOINT")
        or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    )
    if not endpoint:
        logging.getLogger(__name__).info("otel exporter disabled service=%s reason=no_endpoint", service_name)
        return None

    headers = _parse_headers(settings.otel_exporter_otlp_headers or os.getenv("OTEL_EXPORTER_OTLP_HEADERS"))
    return OTLPSpanExporter(endpoint=endpoint, headers=headers or None)


def _parse_headers(raw: str | None) -> dict[str, str]:
    if not raw:
        return {}
    pairs = (item.partition("=") for item in raw.split(","))
    return {key.strip(): value.strip() for key, sep, value in pairs if sep and key.strip()}


def _install_log_correlation() -> None:
    global _correlation_installed
    if _correlation_installed:
        return

    def record_factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
        record = _base_record_factory(*args, **kwargs)
        context = trace.get_current_span().get_span_context()
        record.trace_id = format(context.trace_id, "032x") if context.is_valid else _ZERO_TRACE_ID
        record.span_id = format(context.span_id, "016x") if context.is_valid else _ZERO_SPAN_ID
        return record

    logging.setLogRecordFactory(record_factory)
    _correlation_installed = True
