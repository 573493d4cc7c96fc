import logging

from opentelemetry.sdk.trace import TracerProvider

from repoweaver.core.config import Settings
from repoweaver.core.telemetry import (
    _parse_headers,
    annotate_job_span,
    configure_logging,
    setup_telemetry,
    shutdown_telemetry,
)


def test_parse_headers_skips_malformed_items() -> None:
    assert _parse_headers("authorization=Bearer abc, x-team = weaver,broken,=empty") == {
        "authorization": "Bearer abc",
        "x-team": "weaver",
    }
    assert _parse_headers(None) == {}


def test_disabled_telemetry_is_a_no_op() -> None:
    runtime = setup_telemetry(Settings(otel_enabled=False), component="worker")

    assert not runtime.enabled
    assert runtime.provider is None
    shutdown_telemetry(runtime)


def test_log_records_carry_trace_fields() -> None:
    configure_logging()

    record = logging.getLogger("repoweaver.test").makeRecord("repoweaver.test", logging.INFO, __file__, 1, "hi", (), None)

    assert record.trace_id == "0" * 32
    assert record.span_id == "0" * 16


def test_job_span_attributes() -> None:
    tracer = TracerProvider().get_tracer("repoweaver.test")

    with tracer.start_as_current_span("job") as span:
        annotate_job_span(span, {"id": "j-1", "type": "apply_templates", "attempts": 2, "repo_id": "r-1"})

    assert span.attributes["repoweaver.job.id"] == "j-1"
    assert span.attributes["repoweaver.job.attempts"] == 2
    assert span.attributes["repoweaver.repository.config_id"] == "r-1"
