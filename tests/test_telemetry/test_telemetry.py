"""
Tests for the collector's self-tracing.

Covers:
- NoopSpan and NoopTracer
- CollectorTracer (disabled, console, json-file, error status)
- create_tracer factory
- Behaviour when OpenTelemetry is not installed
"""

import json
from unittest.mock import patch

import pytest

from telepipe.telemetry.otel import (
    OTEL_AVAILABLE,
    SERVICE_NAME,
    CollectorTracer,
    NoopSpan,
    NoopTracer,
    create_tracer,
)

needs_otel = pytest.mark.skipif(not OTEL_AVAILABLE, reason="OpenTelemetry not installed")


# -- Tests: NoopSpan --------------------------------------------------------


class TestNoopSpan:
    def test_methods_do_nothing(self):
        span = NoopSpan()
        span.set_attribute("key", "value")
        span.set_status("ok")
        span.add_event("flushed", {"items": 3})
        span.record_exception(RuntimeError("x"))
        span.end()

    def test_context_manager(self):
        with NoopSpan() as s:
            assert isinstance(s, NoopSpan)


# -- Tests: NoopTracer -------------------------------------------------------


class TestNoopTracer:
    def test_spans_are_noop(self):
        tracer = NoopTracer()
        assert not tracer.enabled
        with tracer.trace_consume("traces", "traces", 10) as span:
            assert isinstance(span, NoopSpan)
        with tracer.trace_export("otlp_http", "traces", 10) as span:
            assert isinstance(span, NoopSpan)
        tracer.shutdown()

    def test_exceptions_propagate(self):
        tracer = NoopTracer()
        with pytest.raises(ValueError):
            with tracer.trace_export("debug", "logs", 1):
                raise ValueError("boom")


# -- Tests: create_tracer ----------------------------------------------------


class TestCreateTracer:
    def test_disabled_returns_noop(self):
        assert isinstance(create_tracer(enabled=False), NoopTracer)

    def test_enabled_without_otel_returns_noop(self):
        with patch("telepipe.telemetry.otel.OTEL_AVAILABLE", False):
            assert isinstance(create_tracer(enabled=True), NoopTracer)

    @needs_otel
    def test_enabled_with_otel(self):
        tracer = create_tracer(enabled=True, exporter="console")
        assert isinstance(tracer, CollectorTracer)
        assert tracer.enabled
        tracer.shutdown()


# -- Tests: CollectorTracer --------------------------------------------------


class TestCollectorTracer:
    def test_disabled_behaves_like_noop(self):
        tracer = CollectorTracer(enabled=False)
        assert not tracer.enabled
        with tracer.trace_consume("traces", "traces", 1) as span:
            assert isinstance(span, NoopSpan)
        tracer.shutdown()

    def test_otel_not_available(self):
        with patch("telepipe.telemetry.otel.OTEL_AVAILABLE", False):
            tracer = CollectorTracer(enabled=True)
            assert not tracer.enabled

    @needs_otel
    def test_unknown_exporter_falls_back_to_console(self):
        tracer = CollectorTracer(enabled=True, exporter="zipkin")
        assert tracer.enabled
        assert tracer._tracer is not None
        tracer.shutdown()

    @needs_otel
    def test_json_file_spans(self, tmp_path):
        trace_file = tmp_path / "self" / "traces.json"
        tracer = CollectorTracer(enabled=True, exporter="json-file", trace_file=str(trace_file))
        with tracer.trace_consume("traces", "traces", 4):
            with tracer.trace_export("otlp_http", "traces", 4):
                pass
        tracer.shutdown()

        spans = [json.loads(line) for line in trace_file.read_text(encoding="utf-8").splitlines()]
        assert [s["name"] for s in spans] == ["telepipe.export", "telepipe.pipeline.consume"]
        export, consume = spans
        assert export["trace_id"] == consume["trace_id"]
        assert export["attributes"] == {
            "telepipe.component": "otlp_http",
            "telepipe.signal": "traces",
            "telepipe.items": 4,
        }
        assert consume["attributes"]["telepipe.pipeline"] == "traces"

    @needs_otel
    def test_error_status(self, tmp_path):
        trace_file = tmp_path / "traces.json"
        tracer = CollectorTracer(enabled=True, exporter="json-file", trace_file=str(trace_file))
        with pytest.raises(RuntimeError):
            with tracer.trace_export("debug", "logs", 1):
                raise RuntimeError("write failed")
        tracer.shutdown()

        [span] = [json.loads(line) for line in trace_file.read_text(encoding="utf-8").splitlines()]
        assert span["status"] == "ERROR"


class TestConstants:
    def test_service_name(self):
        assert SERVICE_NAME == "telepipe"
