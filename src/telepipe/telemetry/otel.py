"""
OpenTelemetry integration - the collector tracing its own data path.

CollectorTracer emits spans for:
- a batch entering a pipeline      (telepipe.pipeline.consume)
- a batch leaving through an exporter (telepipe.export)

Attributes: ``telepipe.pipeline``, ``telepipe.component``,
``telepipe.signal``, ``telepipe.items``.

Supported exporters:
- otlp: OpenTelemetry Protocol (gRPC)
- console: prints spans to stderr (debugging)
- json-file: writes spans to a JSON lines file

If OpenTelemetry is not installed, NoopTracer is used and nothing is traced.
"""

import json
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator

import structlog

logger = structlog.get_logger()

__all__ = [
    "CollectorTracer",
    "NoopSpan",
    "NoopTracer",
    "OTEL_AVAILABLE",
    "create_tracer",
]

# OpenTelemetry is an optional dependency (pip install telepipe[telemetry])
try:
    from opentelemetry.sdk.resources import Resource  # type: ignore[import-untyped]
    from opentelemetry.sdk.trace import TracerProvider  # type: ignore[import-untyped]
    from opentelemetry.sdk.trace.export import (  # type: ignore[import-untyped]
        BatchSpanProcessor,
        ConsoleSpanExporter,
        SimpleSpanProcessor,
    )
    from opentelemetry.trace import Status, StatusCode  # type: ignore[import-untyped]

    OTEL_AVAILABLE = True
except ImportError:
    OTEL_AVAILABLE = False


SERVICE_NAME = "telepipe"
SERVICE_VERSION = "0.3.0"


class NoopSpan:
    """Span that does nothing (used when OTel is not available)."""

    def set_attribute(self, key: str, value: Any) -> None:
        """No-op."""

    def set_status(self, status: Any) -> None:
        """No-op."""

    def add_event(self, name: str, attributes: dict[str, Any] | None = None) -> None:
        """No-op."""

    def record_exception(self, exc: BaseException) -> None:
        """No-op."""

    def end(self) -> None:
        """No-op."""

    def __enter__(self) -> "NoopSpan":
        return self

    def __exit__(self, *args: Any) -> None:
        pass


class NoopTracer:
    """Tracer that does nothing.

    Lets the service use the same interface whether tracing is on or off.
    """

    enabled = False

    @contextmanager
    def trace_consume(
        self, pipeline: str, signal: str, items: int
    ) -> Generator[NoopSpan, None, None]:
        """No-op pipeline span."""
        yield NoopSpan()

    @contextmanager
    def trace_export(
        self, component: str, signal: str, items: int
    ) -> Generator[NoopSpan, None, None]:
        """No-op export span."""
        yield NoopSpan()

    def shutdown(self) -> None:
        """No-op."""


def _json_file_exporter(path: str) -> Any:
    from opentelemetry.sdk.trace import ReadableSpan  # type: ignore[import-untyped]
    from opentelemetry.sdk.trace.export import (  # type: ignore[import-untyped]
        SpanExporter,
        SpanExportResult,
    )

    class JsonFileExporter(SpanExporter):
        """Writes spans as JSON lines."""

        def __init__(self, file_path: str) -> None:
            self.file_path = file_path

        def export(self, spans: list[ReadableSpan]) -> SpanExportResult:
            with open(self.file_path, "a", encoding="utf-8") as f:
                for span in spans:
                    data = {
                        "name": span.name,
                        "trace_id": format(span.context.trace_id, "032x"),
                        "span_id": format(span.context.span_id, "016x"),
                        "start_time": span.start_time,
                        "end_time": span.end_time,
                        "attributes": dict(span.attributes) if span.attributes else {},
                        "status": span.status.status_code.name,
                    }
                    f.write(json.dumps(data, default=str) + "\n")
            return SpanExportResult.SUCCESS

        def shutdown(self) -> None:
            pass

    return JsonFileExporter(path)


class CollectorTracer:
    """OpenTelemetry tracer for the collector's own pipelines.

    Behaves like NoopTracer when disabled or when OpenTelemetry is missing.

    Attributes:
        enabled: Whether spans are actually produced.
        exporter_type: Configured exporter type.
    """

    def __init__(
        self,
        enabled: bool = True,
        exporter: str = "console",
        endpoint: str = "http://localhost:4317",
        trace_file: str | None = None,
    ) -> None:
        """Initialize the tracer.

        Args:
            enabled: If False, acts like NoopTracer.
            exporter: Exporter type ('otlp', 'console', 'json-file').
            endpoint: Endpoint for the OTLP exporter.
            trace_file: File path for the json-file exporter.
        """
        self.enabled = enabled and OTEL_AVAILABLE
        self.exporter_type = exporter
        self._provider: Any = None
        self._tracer: Any = None
        self.log = logger.bind(component="telemetry")

        if self.enabled:
            self._setup(exporter, endpoint, trace_file)
        elif enabled and not OTEL_AVAILABLE:
            self.log.warning(
                "telemetry.otel_not_available",
                msg="OpenTelemetry not installed. Install with: pip install telepipe[telemetry]",
            )

    def _setup(self, exporter: str, endpoint: str, trace_file: str | None) -> None:
        resource = Resource.create({
            "service.name": SERVICE_NAME,
            "service.version": SERVICE_VERSION,
        })
        self._provider = TracerProvider(resource=resource)

        match exporter:
            case "otlp":
                self._setup_otlp(endpoint)
            case "json-file":
                self._setup_json_file(trace_file)
            case _:
                self._setup_console()

        # The global tracer provider is left untouched
        self._tracer = self._provider.get_tracer(SERVICE_NAME, SERVICE_VERSION)

        self.log.info(
            "telemetry.initialized",
            exporter=exporter,
            endpoint=endpoint if exporter == "otlp" else None,
        )

    def _setup_otlp(self, endpoint: str) -> None:
        try:
            from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (  # type: ignore[import-untyped]
                OTLPSpanExporter,
            )
        except ImportError:
            self.log.warning(
                "telemetry.otlp_not_available",
                msg="opentelemetry-exporter-otlp not installed. Using console.",
            )
            self._setup_console()
            return
        self._provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))

    def _setup_console(self) -> None:
        self._provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

    def _setup_json_file(self, trace_file: str | None) -> None:
        path = trace_file or ".telepipe/traces.json"
        try:
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            self.log.warning("telemetry.json_file_fallback", error=str(e), msg="Using console")
            self._setup_console()
            return
        self._provider.add_span_processor(SimpleSpanProcessor(_json_file_exporter(path)))

    @contextmanager
    def _span(self, name: str, attributes: dict[str, Any]) -> Generator[Any, None, None]:
        if not self.enabled or not self._tracer:
            yield NoopSpan()
            return
        with self._tracer.start_as_current_span(
            name, attributes=attributes, record_exception=True, set_status_on_exception=False
        ) as span:
            try:
                yield span
            except Exception as e:
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise

    def trace_consume(self, pipeline: str, signal: str, items: int):
        """Span around a batch entering ``pipeline``."""
        return self._span(
            "telepipe.pipeline.consume",
            {
                "telepipe.pipeline": pipeline,
                "telepipe.signal": signal,
                "telepipe.items": items,
            },
        )

    def trace_export(self, component: str, signal: str, items: int):
        """Span around an exporter handling a batch."""
        return self._span(
            "telepipe.export",
            {
                "telepipe.component": component,
                "telepipe.signal": signal,
                "telepipe.items": items,
            },
        )

    def shutdown(self) -> None:
        """Stop the tracer and flush pending spans."""
        if self._provider:
            try:
                self._provider.shutdown()
            except Exception as e:
                self.log.warning("telemetry.shutdown_error", error=str(e))


def create_tracer(
    enabled: bool = False,
    exporter: str = "console",
    endpoint: str = "http://localhost:4317",
    trace_file: str | None = None,
) -> CollectorTracer | NoopTracer:
    """Create the right tracer.

    Returns NoopTracer when disabled or when OpenTelemetry is not installed.
    """
    if not enabled or not OTEL_AVAILABLE:
        if enabled:
            logger.warning(
                "telemetry.otel_not_available",
                msg="OpenTelemetry not installed. Install with: pip install telepipe[telemetry]",
            )
        return NoopTracer()
    return CollectorTracer(enabled=True, exporter=exporter, endpoint=endpoint, trace_file=trace_file)
