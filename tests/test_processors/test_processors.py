"""
Tests for processors: base forwarding, batch, memory_limiter, attributes,
resource, filter and probabilistic_sampler.
"""

import threading
import time
from unittest.mock import patch

import pytest

from telepipe.components import ComponentID, ConfigError, ConsumerRefusedError, default_registry
from telepipe.model import (
    LogRecord,
    MetricPoint,
    Resource,
    Signal,
    Span,
    SpanContext,
    TelemetryBatch,
    generate_trace_id,
)
from telepipe.processors import Processor
from telepipe.processors.attributes import AttributeAction, apply_actions
from telepipe.processors.probabilistic_sampler import fnv1a_32

SPAN_ID = "00f067aa0ba902b7"


class Sink:
    """Records every batch it receives."""

    def __init__(self, fail_with: Exception | None = None):
        self.batches: list[TelemetryBatch] = []
        self.fail_with = fail_with
        self.received = threading.Event()

    def consume(self, batch):
        if self.fail_with is not None:
            raise self.fail_with
        self.batches.append(batch)
        self.received.set()

    @property
    def items(self):
        return [item for batch in self.batches for item in batch]


def make_processor(type_id: str, settings: dict | None = None, sink: Sink | None = None):
    processor = default_registry().create("processor", type_id, settings)
    processor.set_next(sink if sink is not None else Sink())
    return processor


def span(name: str = "op", trace_id: str | None = None, attributes=None, service: str = "api") -> Span:
    return Span(
        name=name,
        context=SpanContext(trace_id=trace_id or generate_trace_id(), span_id=SPAN_ID),
        attributes=attributes or {},
        resource=Resource(attributes={"service.name": service}),
    )


def traces(*items) -> TelemetryBatch:
    return TelemetryBatch(Signal.TRACES, items)


# -- Tests: base -------------------------------------------------------------


class TestProcessorBase:
    def test_passthrough_and_counters(self):
        sink = Sink()
        processor = Processor(ComponentID("noop"), None)
        processor.set_next(sink)
        processor.consume(traces(span(), span()))
        assert len(sink.items) == 2
        assert processor.counters.get("accepted") == 2
        assert processor.counters.get("dropped") == 0

    def test_unlinked_processor(self):
        processor = Processor(ComponentID("noop"), None)
        with pytest.raises(ConfigError, match="not linked"):
            processor.next_consumer


# -- Tests: batch ------------------------------------------------------------


class TestBatchProcessor:
    def test_flush_on_size(self):
        sink = Sink()
        processor = make_processor("batch", {"send_batch_size": 3, "timeout": 60}, sink)
        processor.consume(traces(span(), span()))
        assert sink.batches == []
        processor.consume(traces(span(), span()))
        assert [len(b) for b in sink.batches] == [4]

    def test_max_size_splits(self):
        sink = Sink()
        processor = make_processor(
            "batch", {"send_batch_size": 2, "send_batch_max_size": 2, "timeout": 60}, sink
        )
        processor.consume(traces(*[span(str(i)) for i in range(5)]))
        assert [len(b) for b in sink.batches] == [2, 2, 1]
        assert [s.name for s in sink.items] == ["0", "1", "2", "3", "4"]

    def test_flush_on_timeout(self):
        sink = Sink()
        processor = make_processor("batch", {"send_batch_size": 100, "timeout": 0.05}, sink)
        processor.start()
        try:
            processor.consume(traces(span()))
            assert sink.received.wait(2.0)
            assert len(sink.items) == 1
        finally:
            processor.shutdown()

    def test_shutdown_flushes(self):
        sink = Sink()
        processor = make_processor("batch", {"send_batch_size": 100, "timeout": 60}, sink)
        processor.start()
        processor.consume(traces(span(), span()))
        processor.shutdown()
        assert len(sink.items) == 2
        processor.shutdown()
        assert len(sink.items) == 2

    def test_failed_timed_flush_counts_dropped(self):
        sink = Sink(fail_with=RuntimeError("down"))
        processor = make_processor("batch", {"send_batch_size": 100, "timeout": 0.05}, sink)
        processor.start()
        try:
            processor.consume(traces(span(), span()))
            deadline = time.monotonic() + 2.0
            while processor.counters.get("dropped") < 2 and time.monotonic() < deadline:
                time.sleep(0.01)
            assert processor.counters.get("dropped") == 2
        finally:
            processor.shutdown()

    def test_invalid_sizes(self):
        with pytest.raises(ConfigError):
            make_processor("batch", {"send_batch_size": 10, "send_batch_max_size": 5})


# -- Tests: memory_limiter ---------------------------------------------------


class TestMemoryLimiter:
    def test_refuses_oversized_batch(self):
        sink = Sink()
        limiter = make_processor("memory_limiter", {"limit_items": 2}, sink)
        with pytest.raises(ConsumerRefusedError, match="memory limit"):
            limiter.consume(traces(span(), span(), span()))
        assert limiter.counters.get("refused") == 3
        assert sink.items == []

    def test_budget_held_during_downstream_call(self):
        observed = []
        limiter = make_processor("memory_limiter", {"limit_items": 10})

        class InFlightRecorder:
            def consume(self, batch):
                observed.append(limiter.in_flight)

        limiter.set_next(InFlightRecorder())
        limiter.consume(traces(span(), span(), span()))
        assert observed == [3]
        assert limiter.in_flight == 0

    def test_concurrent_batches_refused_beyond_limit(self):
        limiter = make_processor("memory_limiter", {"limit_items": 3})
        release = threading.Event()
        entered = threading.Event()

        class Blocking:
            def consume(self, batch):
                entered.set()
                release.wait(2.0)

        limiter.set_next(Blocking())
        worker = threading.Thread(target=limiter.consume, args=(traces(span(), span()),))
        worker.start()
        try:
            assert entered.wait(2.0)
            with pytest.raises(ConsumerRefusedError):
                limiter.consume(traces(span(), span()))
        finally:
            release.set()
            worker.join()
        assert limiter.in_flight == 0

    def test_budget_released_on_error(self):
        limiter = make_processor("memory_limiter", {"limit_items": 5}, Sink(fail_with=RuntimeError("x")))
        with pytest.raises(RuntimeError):
            limiter.consume(traces(span()))
        assert limiter.in_flight == 0


# -- Tests: attributes / resource ---------------------------------------------


def actions(*items) -> list[AttributeAction]:
    return [AttributeAction(**item) for item in items]


class TestApplyActions:
    def test_insert_update_upsert(self):
        attrs = {"env": "dev"}
        result = apply_actions(attrs, actions(
            {"key": "env", "action": "insert", "value": "prod"},
            {"key": "region", "action": "insert", "value": "eu"},
            {"key": "missing", "action": "update", "value": "x"},
            {"key": "env", "action": "update", "value": "staging"},
            {"key": "team", "action": "upsert", "value": "core"},
        ))
        assert result == {"env": "staging", "region": "eu", "team": "core"}
        assert attrs == {"env": "dev"}

    def test_from_attribute(self):
        result = apply_actions({"user": "alice"}, actions(
            {"key": "enduser.id", "action": "upsert", "from_attribute": "user"},
            {"key": "other", "action": "upsert", "from_attribute": "absent"},
        ))
        assert result == {"user": "alice", "enduser.id": "alice"}

    def test_delete_by_key_and_pattern(self):
        result = apply_actions(
            {"password": "x", "http.header.auth": "y", "http.header.ua": "z", "keep": 1},
            actions(
                {"key": "password", "action": "delete"},
                {"pattern": "^http\\.header\\.", "action": "delete"},
            ),
        )
        assert result == {"keep": 1}

    def test_hash(self):
        result = apply_actions({"email": "a@b.c"}, actions({"key": "email", "action": "hash"}))
        assert len(result["email"]) == 64
        assert result["email"] != "a@b.c"

    def test_extract(self):
        result = apply_actions(
            {"http.url": "/users/42/orders"},
            actions({
                "key": "http.url",
                "action": "extract",
                "pattern": r"/users/(?P<user_id>\d+)",
            }),
        )
        assert result["user_id"] == "42"

    @pytest.mark.parametrize(
        "fields",
        [
            {"action": "insert", "value": 1},
            {"key": "a", "action": "upsert"},
            {"action": "delete"},
            {"key": "a", "action": "extract", "pattern": "no-groups"},
            {"key": "a", "action": "delete", "pattern": "("},
            {"key": "a", "action": "upsert", "value": {"nested": 1}},
        ],
    )
    def test_invalid_actions(self, fields):
        with pytest.raises(ValueError):
            AttributeAction(**fields)


class TestAttributesProcessor:
    def test_items_copied_not_mutated(self):
        sink = Sink()
        processor = make_processor(
            "attributes", {"actions": [{"key": "env", "action": "upsert", "value": "prod"}]}, sink
        )
        original = span()
        processor.consume(traces(original))
        assert original.attributes == {}
        assert sink.items[0].attributes == {"env": "prod"}

    def test_requires_actions(self):
        with pytest.raises(ConfigError, match="at least one action"):
            make_processor("attributes", {"actions": []})


class TestResourceProcessor:
    def test_shared_resource_updated_once(self):
        sink = Sink()
        processor = make_processor(
            "resource",
            {"actions": [{"key": "deployment.environment", "action": "insert", "value": "prod"}]},
            sink,
        )
        resource = Resource(attributes={"service.name": "api"})
        items = [span().model_copy(update={"resource": resource}) for _ in range(3)]
        processor.consume(traces(*items))
        resources = {id(item.resource) for item in sink.items}
        assert len(resources) == 1
        assert sink.items[0].resource.attributes["deployment.environment"] == "prod"
        assert "deployment.environment" not in resource.attributes


# -- Tests: filter -----------------------------------------------------------


class TestFilterProcessor:
    def test_span_names(self):
        sink = Sink()
        processor = make_processor("filter", {"span_names": ["^health"]}, sink)
        processor.consume(traces(span("healthcheck"), span("GET /cart")))
        assert [s.name for s in sink.items] == ["GET /cart"]
        assert processor.counters.get("dropped") == 1

    def test_attributes_match_item_or_resource(self):
        sink = Sink()
        processor = make_processor("filter", {"attributes": {"service.name": "noisy"}}, sink)
        processor.consume(traces(span(service="noisy"), span(attributes={"service.name": "noisy"}), span()))
        assert len(sink.items) == 1

    def test_min_severity(self):
        sink = Sink()
        processor = make_processor("filter", {"min_severity": 9}, sink)
        batch = TelemetryBatch(Signal.LOGS, [
            LogRecord(severity_number=5, body="debug"),
            LogRecord(severity_number=13, body="warn"),
            LogRecord(severity_number=0, body="unspecified"),
        ])
        processor.consume(batch)
        assert [r.body for r in sink.items] == ["warn", "unspecified"]

    def test_metric_names(self):
        sink = Sink()
        processor = make_processor("filter", {"metric_names": ["^runtime\\."]}, sink)
        processor.consume(TelemetryBatch(Signal.METRICS, [
            MetricPoint(name="runtime.gc"),
            MetricPoint(name="http.requests"),
        ]))
        assert [p.name for p in sink.items] == ["http.requests"]

    def test_everything_dropped_forwards_nothing(self):
        sink = Sink()
        processor = make_processor("filter", {"span_names": [".*"]}, sink)
        processor.consume(traces(span()))
        assert sink.batches == []

    def test_invalid_pattern(self):
        with pytest.raises(ConfigError, match="invalid pattern"):
            make_processor("filter", {"span_names": ["("]})


# -- Tests: probabilistic_sampler ---------------------------------------------


class TestProbabilisticSampler:
    def test_fnv1a_known_values(self):
        assert fnv1a_32(b"") == 0x811C9DC5
        assert fnv1a_32(b"a") == 0xE40C292C

    def test_zero_and_hundred_percent(self):
        sink = Sink()
        none = make_processor("probabilistic_sampler", {"sampling_percentage": 0}, sink)
        none.consume(traces(*[span() for _ in range(20)]))
        assert sink.items == []

        full = make_processor("probabilistic_sampler", {"sampling_percentage": 100}, sink)
        full.consume(traces(*[span() for _ in range(20)]))
        assert len(sink.items) == 20

    def test_decision_is_per_trace(self):
        sink = Sink()
        processor = make_processor("probabilistic_sampler", {"sampling_percentage": 50}, sink)
        trace_ids = [generate_trace_id() for _ in range(50)]
        processor.consume(traces(*[span(trace_id=t) for t in trace_ids for _ in range(3)]))
        kept = [s.trace_id for s in sink.items]
        for trace_id in set(kept):
            assert kept.count(trace_id) == 3

    def test_rate_roughly_matches(self):
        processor = make_processor("probabilistic_sampler", {"sampling_percentage": 25})
        kept = sum(processor.keep_trace(generate_trace_id()) for _ in range(4000))
        assert 700 < kept < 1300

    def test_fractional_percentage_threshold(self):
        processor = make_processor("probabilistic_sampler", {"sampling_percentage": 33.333})
        with patch("telepipe.processors.probabilistic_sampler.trace_hash", return_value=3333):
            assert processor.keep_trace(generate_trace_id())
        with patch("telepipe.processors.probabilistic_sampler.trace_hash", return_value=13334):
            assert not processor.keep_trace(generate_trace_id())

    def test_seed_changes_decisions(self):
        a = make_processor("probabilistic_sampler", {"sampling_percentage": 50, "hash_seed": 1})
        b = make_processor("probabilistic_sampler", {"sampling_percentage": 50, "hash_seed": 2})
        trace_ids = [generate_trace_id() for _ in range(200)]
        assert [a.keep_trace(t) for t in trace_ids] != [b.keep_trace(t) for t in trace_ids]

    def test_logs_follow_trace_or_are_kept(self):
        sink = Sink()
        processor = make_processor("probabilistic_sampler", {"sampling_percentage": 0}, sink)
        processor.consume(TelemetryBatch(Signal.LOGS, [
            LogRecord(body="no trace"),
            LogRecord(body="traced", trace_id=generate_trace_id(), span_id=SPAN_ID),
        ]))
        assert [r.body for r in sink.items] == ["no trace"]

    def test_signals(self):
        from telepipe.processors import ProbabilisticSamplerProcessor

        assert Signal.METRICS not in ProbabilisticSamplerProcessor.supported_signals
