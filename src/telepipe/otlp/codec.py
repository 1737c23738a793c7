"""
OTLP/JSON codec - encode and decode export requests.

Follows the OTLP/JSON mapping of the protobuf messages:
- trace and span ids are hex strings (not base64)
- 64-bit integers (timestamps, intValue) are decimal strings; decoding also
  accepts plain JSON numbers
- enums (span kind, status code) are integers
- records are grouped resource → scope → records

Only sum and gauge metrics are supported. Other metric types (histogram,
summary...) are skipped on decode with a debug log.
"""

import base64
import json
from typing import Any

import structlog
from pydantic import ValidationError

from ..model.types import (
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
)

logger = structlog.get_logger()

__all__ = [
    "OTLPDecodeError",
    "decode",
    "decode_json",
    "encode",
    "encode_json",
    "request_signal",
]


class OTLPDecodeError(ValueError):
    """The payload is not a valid OTLP/JSON export request."""


_TOP_LEVEL_KEYS: dict[Signal, tuple[str, str, str]] = {
    Signal.TRACES: ("resourceSpans", "scopeSpans", "spans"),
    Signal.METRICS: ("resourceMetrics", "scopeMetrics", "metrics"),
    Signal.LOGS: ("resourceLogs", "scopeLogs", "logRecords"),
}

_SPAN_KIND_TO_INT = {
    SpanKind.INTERNAL: 1,
    SpanKind.SERVER: 2,
    SpanKind.CLIENT: 3,
    SpanKind.PRODUCER: 4,
    SpanKind.CONSUMER: 5,
}
_INT_TO_SPAN_KIND = {v: k for k, v in _SPAN_KIND_TO_INT.items()}

_STATUS_TO_INT = {StatusCode.UNSET: 0, StatusCode.OK: 1, StatusCode.ERROR: 2}
_INT_TO_STATUS = {v: k for k, v in _STATUS_TO_INT.items()}

# AGGREGATION_TEMPORALITY_CUMULATIVE
_CUMULATIVE = 2


# -- AnyValue / KeyValue ----------------------------------------------------


def _encode_value(value: Any) -> dict[str, Any]:
    # bool before int: bool is a subclass of int
    if isinstance(value, bool):
        return {"boolValue": value}
    if isinstance(value, int):
        return {"intValue": str(value)}
    if isinstance(value, float):
        return {"doubleValue": value}
    if isinstance(value, str):
        return {"stringValue": value}
    if isinstance(value, bytes):
        return {"bytesValue": base64.b64encode(value).decode("ascii")}
    if isinstance(value, (list, tuple)):
        return {"arrayValue": {"values": [_encode_value(v) for v in value]}}
    if isinstance(value, dict):
        return {"kvlistValue": {"values": _encode_attributes(value)}}
    if value is None:
        return {}
    return {"stringValue": str(value)}


def _decode_value(data: dict[str, Any] | None) -> Any:
    if not data:
        return None
    if "stringValue" in data:
        return data["stringValue"]
    if "boolValue" in data:
        return bool(data["boolValue"])
    if "intValue" in data:
        return int(data["intValue"])
    if "doubleValue" in data:
        return float(data["doubleValue"])
    if "arrayValue" in data:
        return [_decode_value(v) for v in data["arrayValue"].get("values", [])]
    if "kvlistValue" in data:
        return _decode_attributes(data["kvlistValue"].get("values", []))
    if "bytesValue" in data:
        return data["bytesValue"]
    raise OTLPDecodeError(f"unknown AnyValue: {sorted(data)}")


def _encode_attributes(attributes: dict[str, Any]) -> list[dict[str, Any]]:
    return [{"key": k, "value": _encode_value(v)} for k, v in attributes.items()]


def _decode_attributes(items: list[dict[str, Any]] | None) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for item in items or []:
        result[item["key"]] = _decode_value(item.get("value"))
    return result


def _nanos(value: Any) -> int:
    if value in (None, ""):
        return 0
    return int(value)


# -- Encoding ---------------------------------------------------------------


def _group(items: list[Any]) -> list[tuple[Resource, list[tuple[InstrumentationScope, list[Any]]]]]:
    """Group items by resource then scope, preserving first-seen order."""
    resources: dict[str, tuple[Resource, dict[tuple[str, str], tuple[InstrumentationScope, list[Any]]]]] = {}
    for item in items:
        res_key = json.dumps(item.resource.attributes, sort_keys=True, default=str)
        if res_key not in resources:
            resources[res_key] = (item.resource, {})
        scopes = resources[res_key][1]
        scope_key = (item.scope.name, item.scope.version)
        if scope_key not in scopes:
            scopes[scope_key] = (item.scope, [])
        scopes[scope_key][1].append(item)

    return [
        (resource, list(scopes.values()))
        for resource, scopes in resources.values()
    ]


def _encode_span(span: Span) -> dict[str, Any]:
    data: dict[str, Any] = {
        "traceId": span.trace_id,
        "spanId": span.span_id,
        "name": span.name,
        "kind": _SPAN_KIND_TO_INT[span.kind],
        "startTimeUnixNano": str(span.start_time_ns),
        "endTimeUnixNano": str(span.end_time_ns),
        "attributes": _encode_attributes(span.attributes),
        "flags": span.context.trace_flags,
        "status": {"code": _STATUS_TO_INT[span.status.code]},
    }
    if span.parent_span_id:
        data["parentSpanId"] = span.parent_span_id
    if span.context.trace_state:
        data["traceState"] = span.context.trace_state
    if span.status.message:
        data["status"]["message"] = span.status.message
    if span.events:
        data["events"] = [
            {
                "name": e.name,
                "timeUnixNano": str(e.timestamp_ns),
                "attributes": _encode_attributes(e.attributes),
            }
            for e in span.events
        ]
    if span.links:
        data["links"] = [
            {
                "traceId": link.trace_id,
                "spanId": link.span_id,
                "attributes": _encode_attributes(link.attributes),
            }
            for link in span.links
        ]
    return data


def _encode_log(record: LogRecord) -> dict[str, Any]:
    data: dict[str, Any] = {
        "timeUnixNano": str(record.timestamp_ns),
        "severityNumber": record.severity_number,
        "attributes": _encode_attributes(record.attributes),
    }
    if record.severity_text:
        data["severityText"] = record.severity_text
    if record.body is not None:
        data["body"] = _encode_value(record.body)
    if record.trace_id:
        data["traceId"] = record.trace_id
    if record.span_id:
        data["spanId"] = record.span_id
    return data


def _encode_metrics(points: list[MetricPoint]) -> list[dict[str, Any]]:
    """One OTLP metric per (name, kind, unit), holding every data point."""
    metrics: dict[tuple[str, str, str, bool], list[MetricPoint]] = {}
    for point in points:
        metrics.setdefault((point.name, point.kind, point.unit, point.monotonic), []).append(point)

    encoded: list[dict[str, Any]] = []
    for (name, kind, unit, monotonic), group in metrics.items():
        data_points = []
        for point in group:
            dp: dict[str, Any] = {
                "attributes": _encode_attributes(point.attributes),
                "timeUnixNano": str(point.time_ns),
            }
            if point.start_time_ns:
                dp["startTimeUnixNano"] = str(point.start_time_ns)
            if isinstance(point.value, int) and not isinstance(point.value, bool):
                dp["asInt"] = str(point.value)
            else:
                dp["asDouble"] = float(point.value)
            data_points.append(dp)

        metric: dict[str, Any] = {"name": name}
        if unit:
            metric["unit"] = unit
        if kind == "sum":
            metric["sum"] = {
                "dataPoints": data_points,
                "aggregationTemporality": _CUMULATIVE,
                "isMonotonic": monotonic,
            }
        else:
            metric["gauge"] = {"dataPoints": data_points}
        encoded.append(metric)
    return encoded


def encode(batch: TelemetryBatch) -> dict[str, Any]:
    """Encode a batch as an OTLP/JSON export request (a dict)."""
    top_key, scope_key, records_key = _TOP_LEVEL_KEYS[batch.signal]

    resource_entries = []
    for resource, scopes in _group(batch.items):
        scope_entries = []
        for scope, items in scopes:
            if batch.signal == Signal.TRACES:
                records = [_encode_span(s) for s in items]
            elif batch.signal == Signal.LOGS:
                records = [_encode_log(r) for r in items]
            else:
                records = _encode_metrics(items)

            scope_data: dict[str, Any] = {"name": scope.name}
            if scope.version:
                scope_data["version"] = scope.version
            scope_entries.append({"scope": scope_data, records_key: records})

        resource_entries.append({
            "resource": {"attributes": _encode_attributes(resource.attributes)},
            scope_key: scope_entries,
        })

    return {top_key: resource_entries}


def encode_json(batch: TelemetryBatch) -> str:
    """Encode a batch as a compact OTLP/JSON string (one line)."""
    return json.dumps(encode(batch), separators=(",", ":"))


# -- Decoding ---------------------------------------------------------------


def request_signal(payload: dict[str, Any]) -> Signal:
    """Detect which signal an export request carries.

    Raises:
        OTLPDecodeError: If no known top-level key is present.
    """
    for signal, (top_key, _, _) in _TOP_LEVEL_KEYS.items():
        if top_key in payload:
            return signal
    raise OTLPDecodeError(
        "payload has none of resourceSpans, resourceMetrics, resourceLogs"
    )


def _decode_span(data: dict[str, Any], resource: Resource, scope: InstrumentationScope) -> Span:
    status = data.get("status") or {}
    flags = data.get("flags")
    context = SpanContext(
        trace_id=str(data.get("traceId", "")).lower(),
        span_id=str(data.get("spanId", "")).lower(),
        trace_flags=(int(flags) & 0xFF) if flags is not None else 1,
        trace_state=data.get("traceState", "") or "",
    )
    parent = data.get("parentSpanId") or None
    return Span(
        name=data.get("name", ""),
        context=context,
        parent_span_id=parent.lower() if parent else None,
        kind=_INT_TO_SPAN_KIND.get(int(data.get("kind", 1) or 1), SpanKind.INTERNAL),
        start_time_ns=_nanos(data.get("startTimeUnixNano")),
        end_time_ns=_nanos(data.get("endTimeUnixNano")),
        attributes=_decode_attributes(data.get("attributes")),
        events=[
            SpanEvent(
                name=e.get("name", ""),
                timestamp_ns=_nanos(e.get("timeUnixNano")),
                attributes=_decode_attributes(e.get("attributes")),
            )
            for e in data.get("events") or []
        ],
        links=[
            SpanLink(
                trace_id=str(link.get("traceId", "")).lower(),
                span_id=str(link.get("spanId", "")).lower(),
                attributes=_decode_attributes(link.get("attributes")),
            )
            for link in data.get("links") or []
        ],
        status=Status(
            code=_INT_TO_STATUS.get(int(status.get("code", 0) or 0), StatusCode.UNSET),
            message=status.get("message", "") or "",
        ),
        resource=resource,
        scope=scope,
    )


def _decode_log(data: dict[str, Any], resource: Resource, scope: InstrumentationScope) -> LogRecord:
    trace_id = data.get("traceId") or None
    span_id = data.get("spanId") or None
    return LogRecord(
        timestamp_ns=_nanos(data.get("timeUnixNano") or data.get("observedTimeUnixNano")),
        severity_number=int(data.get("severityNumber", 0) or 0),
        severity_text=data.get("severityText", "") or "",
        body=_decode_value(data.get("body")),
        attributes=_decode_attributes(data.get("attributes")),
        trace_id=trace_id.lower() if trace_id else None,
        span_id=span_id.lower() if span_id else None,
        resource=resource,
        scope=scope,
    )


def _decode_metric(
    data: dict[str, Any], resource: Resource, scope: InstrumentationScope
) -> list[MetricPoint]:
    name = data.get("name", "")
    unit = data.get("unit", "") or ""
    if "sum" in data:
        body = data["sum"]
        kind = "sum"
        monotonic = bool(body.get("isMonotonic", False))
    elif "gauge" in data:
        body = data["gauge"]
        kind = "gauge"
        monotonic = False
    else:
        logger.debug("otlp.decode.unsupported_metric", metric=name, keys=sorted(data))
        return []

    points: list[MetricPoint] = []
    for dp in body.get("dataPoints") or []:
        if "asInt" in dp:
            value: int | float = int(dp["asInt"])
        else:
            value = float(dp.get("asDouble", 0.0))
        points.append(MetricPoint(
            name=name,
            kind=kind,
            value=value,
            attributes=_decode_attributes(dp.get("attributes")),
            start_time_ns=_nanos(dp.get("startTimeUnixNano")),
            time_ns=_nanos(dp.get("timeUnixNano")),
            unit=unit,
            monotonic=monotonic,
            resource=resource,
            scope=scope,
        ))
    return points


def decode(payload: dict[str, Any], signal: Signal | str | None = None) -> TelemetryBatch:
    """Decode an OTLP/JSON export request.

    Args:
        payload: Parsed JSON body.
        signal: Expected signal. None = detect from the payload.

    Returns:
        TelemetryBatch with every record of the request.

    Raises:
        OTLPDecodeError: If the structure or a record is invalid.
    """
    if not isinstance(payload, dict):
        raise OTLPDecodeError(f"export request must be an object, got {type(payload).__name__}")

    signal = Signal(signal) if signal is not None else request_signal(payload)
    top_key, scope_key, records_key = _TOP_LEVEL_KEYS[signal]

    items: list[Any] = []
    try:
        for res_entry in payload.get(top_key) or []:
            resource = Resource(
                attributes=_decode_attributes((res_entry.get("resource") or {}).get("attributes"))
            )
            for scope_entry in res_entry.get(scope_key) or []:
                scope_data = scope_entry.get("scope") or {}
                scope = InstrumentationScope(
                    name=scope_data.get("name", "") or "",
                    version=scope_data.get("version", "") or "",
                )
                for record in scope_entry.get(records_key) or []:
                    if signal == Signal.TRACES:
                        items.append(_decode_span(record, resource, scope))
                    elif signal == Signal.LOGS:
                        items.append(_decode_log(record, resource, scope))
                    else:
                        items.extend(_decode_metric(record, resource, scope))
    except OTLPDecodeError:
        raise
    except (ValidationError, ValueError, TypeError, KeyError, AttributeError) as e:
        raise OTLPDecodeError(f"invalid {signal.value} payload: {e}") from e

    return TelemetryBatch(signal, items)


def decode_json(text: str | bytes, signal: Signal | str | None = None) -> TelemetryBatch:
    """Parse and decode an OTLP/JSON document.

    Raises:
        OTLPDecodeError: On malformed JSON or an invalid request.
    """
    try:
        payload = json.loads(text)
    except ValueError as e:
        # JSONDecodeError, or UnicodeDecodeError for bytes that are not UTF-8
        raise OTLPDecodeError(f"malformed JSON: {e}") from e
    return decode(payload, signal)
