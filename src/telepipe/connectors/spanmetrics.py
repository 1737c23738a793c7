"""
Span metrics connector - derives request metrics from spans.

For every combination of ``service.name``, ``span.name``, ``span.kind``,
``status.code`` and the configured ``dimensions`` it keeps two cumulative
sums:

    calls      number of spans (monotonic)
    duration   total span duration in milliseconds

A dimension is looked up in the span attributes, then in the resource
attributes; missing ones use the dimension's ``default`` or are left out.
Each consumed batch emits the current totals of the series it touched.

At most ``dimensions_cache_size`` series are tracked. Spans that would open
a new series beyond that are added to a single series carrying only the
``otel.metric.overflow=true`` attribute.
"""

import threading
from typing import Any, ClassVar

from pydantic import BaseModel, Field

from ..model.types import (
    InstrumentationScope,
    MetricPoint,
    Resource,
    Signal,
    Span,
    TelemetryBatch,
    now_ns,
)
from .base import Connector

SCOPE = InstrumentationScope(name="telepipe/connector/spanmetrics")
OVERFLOW_ATTRIBUTE = "otel.metric.overflow"


class Dimension(BaseModel):
    name: str
    default: str | None = None

    model_config = {"extra": "forbid"}


class SpanMetricsSettings(BaseModel):
    dimensions: list[Dimension] = Field(default_factory=list)
    namespace: str = ""
    dimensions_cache_size: int = Field(default=1000, ge=1)

    model_config = {"extra": "forbid"}


class _Series:
    __slots__ = ("attributes", "resource", "calls", "duration_ms", "start_time_ns")

    def __init__(self, attributes: dict[str, Any], resource: Resource, start_time_ns: int) -> None:
        self.attributes = attributes
        self.resource = resource
        self.calls = 0
        self.duration_ms = 0.0
        self.start_time_ns = start_time_ns


class SpanMetricsConnector(Connector):
    type_name: ClassVar[str] = "spanmetrics"
    settings_model: ClassVar[type[BaseModel]] = SpanMetricsSettings
    supported_pairs: ClassVar[frozenset[tuple[Signal, Signal]]] = frozenset(
        {(Signal.TRACES, Signal.METRICS)}
    )
    supported_signals: ClassVar[frozenset[Signal]] = frozenset({Signal.TRACES, Signal.METRICS})

    def __init__(self, component_id, settings: SpanMetricsSettings) -> None:
        super().__init__(component_id, settings)
        self._lock = threading.Lock()
        self._series: dict[tuple, _Series] = {}
        self._overflow: _Series | None = None

    def _overflow_series(self, now: int) -> _Series:
        self.counters.add("overflow", 1)
        if self._overflow is None:
            self.log.warning(
                "connector.spanmetrics.overflow", limit=self.settings.dimensions_cache_size
            )
            self._overflow = _Series({OVERFLOW_ATTRIBUTE: True}, Resource(), now)
        return self._overflow

    def _metric_name(self, name: str) -> str:
        return f"{self.settings.namespace}.{name}" if self.settings.namespace else name

    def series_attributes(self, span: Span) -> dict[str, Any]:
        attributes: dict[str, Any] = {
            "service.name": span.resource.service_name,
            "span.name": span.name,
            "span.kind": f"SPAN_KIND_{span.kind.value.upper()}",
            "status.code": f"STATUS_CODE_{span.status.code.value.upper()}",
        }
        for dim in self.settings.dimensions:
            value = span.attributes.get(dim.name, span.resource.attributes.get(dim.name))
            if value is None:
                value = dim.default
            if value is not None:
                attributes[dim.name] = value
        return attributes

    def connect(self, batch: TelemetryBatch) -> None:
        if batch.signal != Signal.TRACES:
            return
        now = now_ns()
        touched: dict[tuple, _Series] = {}
        with self._lock:
            for span in batch:
                attributes = self.series_attributes(span)
                key = tuple(sorted((k, repr(v)) for k, v in attributes.items()))
                series = self._series.get(key)
                if series is None:
                    if len(self._series) >= self.settings.dimensions_cache_size:
                        key = ()
                        series = self._overflow_series(now)
                    else:
                        resource = Resource(attributes={"service.name": span.resource.service_name})
                        series = self._series[key] = _Series(attributes, resource, now)
                series.calls += 1
                series.duration_ms += span.duration_ns / 1_000_000
                touched[key] = series

            points = []
            for series in touched.values():
                common = dict(
                    attributes=dict(series.attributes),
                    start_time_ns=series.start_time_ns,
                    time_ns=now,
                    resource=series.resource,
                    scope=SCOPE,
                    kind="sum",
                    monotonic=True,
                )
                points.append(MetricPoint(name=self._metric_name("calls"), value=series.calls, **common))
                points.append(
                    MetricPoint(
                        name=self._metric_name("duration"),
                        value=round(series.duration_ms, 6),
                        unit="ms",
                        **common,
                    )
                )
        self.emit(TelemetryBatch(Signal.METRICS, points))
