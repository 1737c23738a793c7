"""
Tests for exporters: debug, file, memory and otlp_http.

The OTLP/HTTP exporter is exercised against httpx.MockTransport, so no
network is needed.
"""

import gzip
import io
import json
import threading

import httpx
import pytest

from telepipe.components import ComponentID, ConsumerRefusedError, ExportError, default_registry
from telepipe.exporters import (
    DebugExporter,
    MemoryExporter,
    OTLPHTTPExporter,
    RetryableExportError,
    parse_retry_after,
)
from telepipe.exporters.debug import DebugSettings, describe_item
from telepipe.exporters.otlp_http import OTLPHTTPSettings
from telepipe.model import (
    LogRecord,
    MetricPoint,
    Signal,
    Span,
    SpanContext,
    Status,
    StatusCode,
    TelemetryBatch,
)
from telepipe.otlp import decode_json

TRACE_ID = "4bf92f3577b34da6a3ce929d0e0e4736"
SPAN_ID = "00f067aa0ba902b7"


def span(name: str = "GET /cart") -> Span:
    return Span(
        name=name,
        context=SpanContext(trace_id=TRACE_ID, span_id=SPAN_ID),
        start_time_ns=0,
        end_time_ns=1_500_000,
        status=Status(code=StatusCode.ERROR),
    )


def traces(n: int = 1) -> TelemetryBatch:
    return TelemetryBatch(Signal.TRACES, [span(f"op-{i}") for i in range(n)])


# -- Tests: debug ------------------------------------------------------------


class TestDebugExporter:
    def make(self, verbosity: str) -> tuple[DebugExporter, io.StringIO]:
        stream = io.StringIO()
        exporter = DebugExporter(ComponentID("debug"), DebugSettings(verbosity=verbosity), stream=stream)
        return exporter, stream

    def test_basic(self):
        exporter, stream = self.make("basic")
        exporter.consume(traces(2))
        assert stream.getvalue() == "debug: traces batch, 2 item(s)\n"
        assert exporter.counters.get("sent") == 2

    def test_normal(self):
        exporter, stream = self.make("normal")
        exporter.consume(traces(1))
        lines = stream.getvalue().splitlines()
        assert len(lines) == 2
        assert lines[1].startswith("  span op-0 trace=" + TRACE_ID)
        assert "1.500ms status=error" in lines[1]

    def test_detailed_is_otlp_json(self):
        exporter, stream = self.make("detailed")
        exporter.consume(traces(1))
        body = stream.getvalue().split("\n", 1)[1]
        assert json.loads(body)["resourceSpans"]

    def test_empty_batch_ignored(self):
        exporter, stream = self.make("basic")
        exporter.consume(TelemetryBatch(Signal.TRACES))
        assert stream.getvalue() == ""

    def test_describe_log_and_metric(self):
        assert describe_item(LogRecord(severity_text="WARN", body="slow")) == "log [WARN] slow"
        line = describe_item(MetricPoint(name="calls", kind="sum", value=3, unit="1"))
        assert line.startswith("metric calls sum=3 1")


# -- Tests: file -------------------------------------------------------------


class TestFileExporter:
    def test_appends_one_line_per_batch(self, tmp_path):
        path = tmp_path / "out" / "traces.jsonl"
        exporter = default_registry().create("exporter", "file", {"path": str(path)})
        exporter.start()
        exporter.consume(traces(2))
        exporter.consume(traces(1))
        exporter.shutdown()

        lines = path.read_text(encoding="utf-8").splitlines()
        assert len(lines) == 2
        assert [len(decode_json(line)) for line in lines] == [2, 1]

    def test_reopen_appends(self, tmp_path):
        path = tmp_path / "traces.jsonl"
        for _ in range(2):
            exporter = default_registry().create("exporter", "file", {"path": str(path)})
            exporter.start()
            exporter.consume(traces(1))
            exporter.shutdown()
        assert len(path.read_text(encoding="utf-8").splitlines()) == 2

    def test_rotation_keeps_one_backup(self, tmp_path):
        path = tmp_path / "traces.jsonl"
        exporter = default_registry().create(
            "exporter", "file", {"path": str(path), "rotate_max_bytes": 1}
        )
        exporter.start()
        exporter.consume(traces(1))
        exporter.consume(traces(2))
        exporter.shutdown()

        backup = tmp_path / "traces.jsonl.1"
        assert path.read_text(encoding="utf-8") == ""
        [line] = backup.read_text(encoding="utf-8").splitlines()
        assert len(decode_json(line)) == 2

    def test_not_started(self, tmp_path):
        exporter = default_registry().create("exporter", "file", {"path": str(tmp_path / "x")})
        with pytest.raises(ExportError, match="not started"):
            exporter.consume(traces(1))
        assert exporter.counters.get("send_failed") == 1


# -- Tests: memory -----------------------------------------------------------


class TestMemoryExporter:
    def test_collects_by_signal(self):
        exporter = default_registry().create("exporter", "memory")
        exporter.consume(traces(2))
        exporter.consume(TelemetryBatch(Signal.LOGS, [LogRecord(body="x")]))
        assert len(exporter.batches) == 2
        assert len(exporter.spans) == 2
        assert [r.body for r in exporter.logs] == ["x"]
        assert exporter.metrics == []
        exporter.clear()
        assert exporter.items() == []

    def test_refuses_when_full(self):
        exporter = default_registry().create("exporter", "memory", {"max_items": 2})
        exporter.consume(traces(2))
        with pytest.raises(ConsumerRefusedError):
            exporter.consume(traces(1))
        assert len(exporter.spans) == 2


# -- Tests: otlp_http --------------------------------------------------------


FAST_RETRY = {"initial_interval": 0.01, "max_interval": 0.02, "max_elapsed_time": 5}


def make_otlp(handler, **settings) -> OTLPHTTPExporter:
    settings.setdefault("endpoint", "http://collector:4318/")
    settings.setdefault("retry_on_failure", FAST_RETRY)
    exporter = OTLPHTTPExporter(
        ComponentID("otlp_http"),
        OTLPHTTPSettings(**settings),
        transport=httpx.MockTransport(handler),
    )
    exporter.start()
    return exporter


class TestOTLPHTTPSettings:
    def test_urls(self):
        settings = OTLPHTTPSettings(
            endpoint="https://otel.example.com/",
            logs_endpoint="https://logs.example.com/ingest",
        )
        assert settings.url_for(Signal.TRACES) == "https://otel.example.com/v1/traces"
        assert settings.url_for(Signal.METRICS) == "https://otel.example.com/v1/metrics"
        assert settings.url_for(Signal.LOGS) == "https://logs.example.com/ingest"

    def test_endpoint_scheme_required(self):
        with pytest.raises(ValueError):
            OTLPHTTPSettings(endpoint="collector:4318")


class TestParseRetryAfter:
    def test_seconds(self):
        assert parse_retry_after("7") == 7.0

    def test_past_http_date(self):
        assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT") == 0.0

    @pytest.mark.parametrize("value", [None, "", "soon"])
    def test_invalid(self, value):
        assert parse_retry_after(value) is None


class TestOTLPHTTPExporter:
    def test_posts_json(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"partialSuccess": {}})

        exporter = make_otlp(handler, headers={"Authorization": "Bearer t"})
        exporter.consume(traces(3))
        exporter.shutdown()

        [request] = requests
        assert str(request.url) == "http://collector:4318/v1/traces"
        assert request.headers["content-type"] == "application/json"
        assert request.headers["authorization"] == "Bearer t"
        assert len(decode_json(request.content)) == 3
        assert exporter.counters.get("sent") == 3

    def test_gzip(self):
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["content-encoding"] == "gzip"
            bodies.append(gzip.decompress(request.content))
            return httpx.Response(200)

        exporter = make_otlp(handler, compression="gzip")
        exporter.consume(traces(1))
        exporter.shutdown()
        assert len(decode_json(bodies[0])) == 1

    def test_retries_transient_status(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(503, headers={"Retry-After": "0"})
            return httpx.Response(200)

        exporter = make_otlp(handler)
        exporter.consume(traces(1))
        exporter.shutdown()
        assert len(calls) == 3
        assert exporter.counters.get("sent") == 1

    def test_retries_connection_errors(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200)

        exporter = make_otlp(handler)
        exporter.consume(traces(1))
        exporter.shutdown()
        assert len(calls) == 2

    def test_permanent_failure_not_retried(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(400, text="bad payload")

        exporter = make_otlp(handler)
        with pytest.raises(ExportError) as exc_info:
            exporter.consume(traces(2))
        exporter.shutdown()
        assert not exc_info.value.retryable
        assert "HTTP 400" in str(exc_info.value)
        assert len(calls) == 1
        assert exporter.counters.get("send_failed") == 2

    def test_retry_disabled(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(429)

        exporter = make_otlp(handler, retry_on_failure={"enabled": False})
        with pytest.raises(RetryableExportError):
            exporter.consume(traces(1))
        exporter.shutdown()
        assert len(calls) == 1

    def test_gives_up_after_max_elapsed_time(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502)

        exporter = make_otlp(
            handler,
            retry_on_failure={"initial_interval": 0.01, "max_interval": 0.01, "max_elapsed_time": 0.1},
        )
        with pytest.raises(RetryableExportError):
            exporter.consume(traces(1))
        exporter.shutdown()

    def test_not_started(self):
        exporter = OTLPHTTPExporter(
            ComponentID("otlp_http"), OTLPHTTPSettings(endpoint="http://localhost:4318")
        )
        with pytest.raises(ExportError, match="not started"):
            exporter.consume(traces(1))

    def test_sending_queue(self):
        entered = threading.Event()
        release = threading.Event()
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            entered.set()
            release.wait(5.0)
            return httpx.Response(200)

        exporter = make_otlp(
            handler, sending_queue={"enabled": True, "queue_size": 1, "num_consumers": 1}
        )
        try:
            exporter.consume(traces(1))
            assert entered.wait(5.0)
            exporter.consume(traces(1))
            with pytest.raises(ConsumerRefusedError, match="full"):
                exporter.consume(traces(1))
        finally:
            release.set()
            exporter.shutdown()

        assert len(calls) == 2
        assert exporter.counters.get("sent") == 2
        assert exporter.counters.get("refused") == 1

    def test_registered(self):
        registry = default_registry()
        exporter = registry.create("exporter", "otlp_http/backup", {"endpoint": "http://b:4318"})
        assert isinstance(exporter, OTLPHTTPExporter)
        assert str(exporter.id) == "otlp_http/backup"
        assert isinstance(registry.create("exporter", "memory"), MemoryExporter)
