"""
Unit tests for OpenTelemetry tracing helpers.

Spans are recorded with a local SDK provider and an in-memory exporter so
the global tracer provider is left untouched where possible.
"""
import pytest
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode

from multimodal.core import tracing
from multimodal.core.errors import ErrorCode, ProviderError
from multimodal.core.tracing import (
    get_trace_id_from_context,
    get_tracer,
    record_exception,
    set_span_attribute,
)


@pytest.fixture
def recorded():
    exporter = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    yield provider.get_tracer("test"), exporter
    provider.shutdown()


def test_trace_id_is_none_outside_a_span():
    assert get_trace_id_from_context() is None


def test_trace_id_matches_current_span(recorded):
    tracer, _ = recorded

    with tracer.start_as_current_span("outer") as span:
        trace_id = get_trace_id_from_context()

    assert trace_id == format(span.get_span_context().trace_id, "032x")
    assert len(trace_id) == 32


def test_set_span_attribute_and_record_exception(recorded):
    tracer, exporter = recorded
    error = ProviderError(ErrorCode.CHAT_API_ERROR, "boom", retryable=True)

    with tracer.start_as_current_span("chat.send_message"):
        set_span_attribute("chat.model", "gpt-3.5-turbo")
        record_exception(error)

    (span,) = exporter.get_finished_spans()
    assert span.attributes["chat.model"] == "gpt-3.5-turbo"
    assert span.status.status_code == StatusCode.ERROR
    assert span.events[0].name == "exception"


def test_get_tracer_works_without_configuration():
    with get_tracer().start_as_current_span("noop") as span:
        span.set_attribute("key", "value")


def test_configure_and_shutdown_tracing():
    tracing.configure_tracing(service_name="test_service", otlp_endpoint=None, sampling_rate=0.5)
    assert tracing._tracer_provider is not None

    tracing.shutdown_tracing()
    assert tracing._tracer_provider is None
