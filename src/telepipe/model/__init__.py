"""
Telemetry data model: identifiers, spans, logs, metric points and trace trees.
"""

from .ids import (
    INVALID_SPAN_ID,
    INVALID_TRACE_ID,
    generate_span_id,
    generate_trace_id,
    is_valid_span_id,
    is_valid_trace_id,
    validate_span_id,
    validate_trace_id,
)
from .trace_tree import (
    TraceNode,
    TraceSummary,
    build_trace_tree,
    group_by_trace,
    render_tree,
    summarize_trace,
)
from .types import (
    InstrumentationScope,
    LogRecord,
    MetricPoint,
    Resource,
    Signal,
    Span,
    SpanContext,
    SpanEvent,
    SpanKind,
    SpanLink,
    Status,
    StatusCode,
    TelemetryBatch,
    TelemetryItem,
    now_ns,
    validate_attributes,
)

__all__ = [
    "INVALID_SPAN_ID",
    "INVALID_TRACE_ID",
    "InstrumentationScope",
    "LogRecord",
    "MetricPoint",
    "Resource",
    "Signal",
    "Span",
    "SpanContext",
    "SpanEvent",
    "SpanKind",
    "SpanLink",
    "Status",
    "StatusCode",
    "TelemetryBatch",
    "TelemetryItem",
    "TraceNode",
    "TraceSummary",
    "build_trace_tree",
    "generate_span_id",
    "generate_trace_id",
    "group_by_trace",
    "is_valid_span_id",
    "is_valid_trace_id",
    "now_ns",
    "render_tree",
    "summarize_trace",
    "validate_attributes",
    "validate_span_id",
    "validate_trace_id",
]
