"""
Tests for the tracing SDK: samplers, tracer parenting, span lifecycle, span
processors, and context propagation helpers.
"""

import threading

import pytest

from telepipe.components import ComponentID
from telepipe.exporters import MemoryExporter
from telepipe.exporters.memory import MemoryExporterSettings
from telepipe.model import Resource, SpanContext, SpanKind, StatusCode
from telepipe.propagation import create_propagator
from telepipe.sdk import (
    AlwaysOffSampler,
    AlwaysOnSampler,
    BatchSpanProcessor,
    ParentBasedSampler,
    SimpleSpanProcessor,
    TraceIdRatioSampler,
    Tracer,
    create_sampler,
    extract_context,
    get_current_span,
    inject_current,
    use_span,
)

TRACE_ID = "4bf92f3577b34da6a3ce929d0e0e4736"
SPAN_ID = "00f067aa0ba902b7"


def memory_exporter() -> MemoryExporter:
    return MemoryExporter(ComponentID("memory"), MemoryExporterSettings())


def make_tracer(sampler=None) -> tuple[Tracer, MemoryExporter]:
    exporter = memory_exporter()
    tracer = Tracer(
        resource=Resource(attributes={"service.name": "checkout"}),
        sampler=sampler,
        processor=SimpleSpanProcessor(exporter),
    )
    return tracer, exporter


class FailingConsumer:
    def consume(self, batch):
        raise RuntimeError("collector down")


class BlockingConsumer:
    def __init__(self):
        self.batches = []
        self.entered = threading.Event()
        self.release = threading.Event()

    def consume(self, batch):
        self.batches.append(batch)
        self.entered.set()
        self.release.wait(5.0)


# -- Tests: samplers ---------------------------------------------------------


class TestSamplers:
    def test_always(self):
        assert AlwaysOnSampler().should_sample(TRACE_ID, "x")
        assert not AlwaysOffSampler().should_sample(TRACE_ID, "x")

    def test_ratio_bounds(self):
        low = "f" * 16 + "0" * 15 + "1"
        high = "0" * 16 + "f" * 16
        half = TraceIdRatioSampler(0.5)
        assert half.should_sample(low, "x")
        assert not half.should_sample(high, "x")
        assert not TraceIdRatioSampler(0.0).should_sample(low, "x")
        assert TraceIdRatioSampler(1.0).should_sample(high, "x")

    def test_ratio_validated(self):
        with pytest.raises(ValueError):
            TraceIdRatioSampler(1.5)

    def test_parent_based(self):
        sampler = ParentBasedSampler(AlwaysOffSampler())
        sampled_parent = SpanContext(trace_id=TRACE_ID, span_id=SPAN_ID, trace_flags=1)
        unsampled_parent = SpanContext(trace_id=TRACE_ID, span_id=SPAN_ID, trace_flags=0)
        assert sampler.should_sample(TRACE_ID, "x", sampled_parent)
        assert not sampler.should_sample(TRACE_ID, "x", unsampled_parent)
        assert not sampler.should_sample(TRACE_ID, "x", None)

    @pytest.mark.parametrize(
        "name, arg, description",
        [
            ("always_on", None, "AlwaysOnSampler"),
            ("ALWAYS_OFF", None, "AlwaysOffSampler"),
            ("traceidratio", "0.25", "TraceIdRatioBased{0.25}"),
            ("parentbased_always_on", None, "ParentBased{root=AlwaysOnSampler}"),
            ("parentbased_always_off", None, "ParentBased{root=AlwaysOffSampler}"),
            ("parentbased_traceidratio", None, "ParentBased{root=TraceIdRatioBased{1.0}}"),
        ],
    )
    def test_create_sampler(self, name, arg, description):
        assert create_sampler(name, arg).description == description

    def test_create_sampler_errors(self):
        with pytest.raises(ValueError, match="unknown sampler"):
            create_sampler("jaeger_remote")
        with pytest.raises(ValueError, match="invalid sampler ratio"):
            create_sampler("traceidratio", "half")


# -- Tests: tracer -----------------------------------------------------------


class TestTracer:
    def test_root_and_child(self):
        tracer, exporter = make_tracer()
        with tracer.start_as_current_span("GET /checkout", kind=SpanKind.SERVER) as root:
            assert get_current_span() is root
            with tracer.start_as_current_span("charge") as child:
                assert child.context.trace_id == root.context.trace_id
                assert child.parent_span_id == root.context.span_id
            assert get_current_span() is root
        assert get_current_span() is None

        child_span, root_span = exporter.spans
        assert root_span.is_root
        assert root_span.kind == SpanKind.SERVER
        assert root_span.resource.service_name == "checkout"
        assert root_span.scope.name == "telepipe.sdk"
        assert child_span.parent_span_id == root_span.span_id
        assert child_span.end_time_ns >= child_span.start_time_ns

    def test_explicit_remote_parent(self):
        tracer, exporter = make_tracer()
        parent = SpanContext(
            trace_id=TRACE_ID, span_id=SPAN_ID, trace_flags=1, trace_state="vendor=1", is_remote=True
        )
        tracer.start_span("consume", parent=parent).end()
        [span] = exporter.spans
        assert span.trace_id == TRACE_ID
        assert span.parent_span_id == SPAN_ID
        assert span.context.trace_state == "vendor=1"

    def test_exception_recorded(self):
        tracer, exporter = make_tracer()
        with pytest.raises(ValueError):
            with tracer.start_as_current_span("work"):
                raise ValueError("bad input")
        [span] = exporter.spans
        assert span.status.code == StatusCode.ERROR
        assert span.status.message == "bad input"
        [event] = span.events
        assert event.name == "exception"
        assert event.attributes["exception.type"] == "ValueError"
        assert "bad input" in event.attributes["exception.stacktrace"]

    def test_not_sampled_span_is_not_exported(self):
        tracer, exporter = make_tracer(sampler=AlwaysOffSampler())
        with tracer.start_as_current_span("quiet") as span:
            assert not span.is_recording
            assert span.context.is_valid
            assert not span.context.sampled
        assert exporter.spans == []

    def test_unsampled_parent_propagates_decision(self):
        tracer, exporter = make_tracer()
        parent = SpanContext(trace_id=TRACE_ID, span_id=SPAN_ID, trace_flags=0)
        span = tracer.start_span("child", parent=parent)
        assert not span.context.sampled
        span.end()
        assert exporter.spans == []

    def test_span_mutations(self):
        tracer, exporter = make_tracer()
        span = tracer.start_span("draft", attributes={"a": 1})
        span.set_attribute("b", "x")
        span.set_attributes({"c": True})
        span.add_event("cache.miss", {"key": "k"})
        span.update_name("final")
        span.set_status(StatusCode.OK, "ignored for ok")
        span.set_status(StatusCode.ERROR, "too late")
        span.end()
        span.set_attribute("after", 1)
        span.end()

        [result] = exporter.spans
        assert result.name == "final"
        assert result.attributes == {"a": 1, "b": "x", "c": True}
        assert [e.name for e in result.events] == ["cache.miss"]
        assert result.status.code == StatusCode.OK
        assert result.status.message == ""

    def test_invalid_attribute_rejected(self):
        tracer, _ = make_tracer()
        span = tracer.start_span("x")
        with pytest.raises(ValueError):
            span.set_attribute("nested", {"a": 1})

    def test_use_span_without_ending(self):
        tracer, exporter = make_tracer()
        span = tracer.start_span("outer")
        with use_span(span):
            assert get_current_span() is span
        assert not span.ended
        span.end()
        assert len(exporter.spans) == 1


# -- Tests: span processors --------------------------------------------------


class TestSpanProcessors:
    def test_simple_processor_swallows_export_errors(self):
        tracer = Tracer(processor=SimpleSpanProcessor(FailingConsumer()))
        with tracer.start_as_current_span("safe"):
            pass

    def test_simple_processor_after_shutdown(self):
        exporter = memory_exporter()
        processor = SimpleSpanProcessor(exporter)
        processor.shutdown()
        Tracer(processor=processor).start_span("late").end()
        assert exporter.spans == []

    def test_batch_processor_flush(self):
        exporter = memory_exporter()
        processor = BatchSpanProcessor(exporter, schedule_delay_ms=60_000, max_export_batch_size=10)
        tracer = Tracer(processor=processor)
        for i in range(5):
            tracer.start_span(f"s{i}").end()
        processor.force_flush()
        assert [s.name for s in exporter.spans] == ["s0", "s1", "s2", "s3", "s4"]
        processor.shutdown()

    def test_batch_processor_exports_full_batches(self):
        exporter = memory_exporter()
        processor = BatchSpanProcessor(exporter, schedule_delay_ms=60_000, max_export_batch_size=2)
        tracer = Tracer(processor=processor)
        for i in range(4):
            tracer.start_span(f"s{i}").end()
        processor.shutdown()
        assert len(exporter.spans) == 4
        assert all(len(b) <= 2 for b in exporter.batches)

    def test_batch_processor_drops_when_full(self):
        consumer = BlockingConsumer()
        processor = BatchSpanProcessor(
            consumer, max_queue_size=2, schedule_delay_ms=60_000, max_export_batch_size=2
        )
        tracer = Tracer(processor=processor)
        try:
            for i in range(2):
                tracer.start_span(f"s{i}").end()
            assert consumer.entered.wait(5.0)
            for i in range(2, 5):
                tracer.start_span(f"s{i}").end()
            assert processor.dropped == 1
        finally:
            consumer.release.set()
            processor.shutdown()
        assert [s.name for b in consumer.batches for s in b] == ["s0", "s1", "s2", "s3"]

    def test_batch_processor_shutdown_twice(self):
        processor = BatchSpanProcessor(memory_exporter(), schedule_delay_ms=10)
        processor.shutdown()
        processor.shutdown()

    def test_invalid_sizes(self):
        with pytest.raises(ValueError):
            BatchSpanProcessor(memory_exporter(), max_queue_size=10, max_export_batch_size=20)


# -- Tests: propagation helpers ----------------------------------------------


class TestPropagationHelpers:
    def test_inject_current(self):
        tracer, _ = make_tracer()
        carrier: dict = {}
        with tracer.start_as_current_span("client") as span:
            inject_current(carrier, baggage={"tenant": "acme"})
        assert carrier["traceparent"] == f"00-{span.context.trace_id}-{span.context.span_id}-01"
        assert carrier["baggage"] == "tenant=acme"

    def test_inject_without_current_span(self):
        carrier: dict = {}
        inject_current(carrier)
        assert "traceparent" not in carrier

    def test_extract_then_continue_trace(self):
        tracer, exporter = make_tracer()
        carrier = {"b3": f"{TRACE_ID}-{SPAN_ID}-1"}
        context = extract_context(carrier, create_propagator("b3"))
        with tracer.start_as_current_span("server", parent=context.span_context):
            pass
        [span] = exporter.spans
        assert span.trace_id == TRACE_ID
        assert span.parent_span_id == SPAN_ID
