"""
Unit tests for OpenTelemetry distributed tracing.

Tests verify:
- The tracer auto-configures on first use
- Trace IDs are read from the active span
- Span helpers are safe with and without an active span
"""
from aicore.core.tracing import (
    StatusCode,
    get_trace_id_from_context,
    get_tracer,
    record_exception,
    set_span_attribute,
    set_span_status,
)


class TestTracingConfiguration:
    def test_get_tracer_auto_configures(self):
        tracer = get_tracer()
        assert tracer is not None
        assert get_tracer() is tracer


class TestSpans:
    def test_trace_id_from_active_span(self):
        with get_tracer().start_as_current_span("test.span"):
            trace_id = get_trace_id_from_context()

        assert trace_id is not None
        assert len(trace_id) == 32

    def test_no_trace_id_without_span(self):
        assert get_trace_id_from_context() is None

    def test_span_helpers(self):
        with get_tracer().start_as_current_span("test.helpers"):
            set_span_attribute("llm.provider", "p1")
            set_span_status(StatusCode.OK)
            record_exception(ValueError("boom"))

    def test_span_helpers_without_span(self):
        set_span_attribute("key", "value")
        set_span_status(StatusCode.ERROR, "failed")
        record_exception(RuntimeError("no span"))

