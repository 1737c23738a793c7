"""
Telemetry data model - spans, log records and metric points.

All records are pydantic v2 models. They are treated as immutable once they
enter a pipeline: processors that change a record produce a copy with
``model_copy(update=...)`` so that fan-out to several pipelines never leaks
modifications between them.
"""

import time
from enum import Enum
from typing import Any, Iterable, Iterator, Literal

from pydantic import BaseModel, Field, field_validator

from .ids import (
    is_valid_span_id,
    is_valid_trace_id,
    validate_span_id,
    validate_trace_id,
)

__all__ = [
    "AttributeValue",
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
    "now_ns",
    "validate_attributes",
]

AttributeValue = str | bool | int | float | list[str] | list[bool] | list[int] | list[float]

_SCALAR_TYPES = (str, bool, int, float)

DEFAULT_SERVICE_NAME = "unknown_service"


def now_ns() -> int:
    """Current wall-clock time in nanoseconds since the epoch."""
    return time.time_ns()


def validate_attributes(attributes: dict[str, Any]) -> dict[str, Any]:
    """Check that attribute values are scalars or homogeneous scalar lists.

    Raises:
        ValueError: On empty keys, nested containers or mixed-type lists.
    """
    for key, value in attributes.items():
        if not isinstance(key, str) or not key:
            raise ValueError(f"attribute keys must be non-empty strings, got {key!r}")
        if isinstance(value, _SCALAR_TYPES):
            continue
        if isinstance(value, (list, tuple)):
            kinds = {type(v) for v in value}
            if len(kinds) > 1 or (kinds and not kinds <= set(_SCALAR_TYPES)):
                raise ValueError(
                    f"attribute '{key}' must be a homogeneous list of scalars"
                )
            continue
        raise ValueError(
            f"attribute '{key}' has unsupported type {type(value).__name__}"
        )
    return {k: list(v) if isinstance(v, tuple) else v for k, v in attributes.items()}


class Signal(str, Enum):
    """The three telemetry signals a pipeline can carry."""

    TRACES = "traces"
    METRICS = "metrics"
    LOGS = "logs"


class SpanKind(str, Enum):
    INTERNAL = "internal"
    SERVER = "server"
    CLIENT = "client"
    PRODUCER = "producer"
    CONSUMER = "consumer"


class StatusCode(str, Enum):
    UNSET = "unset"
    OK = "ok"
    ERROR = "error"


class _Record(BaseModel):
    """Shared configuration for every telemetry model."""

    model_config = {"extra": "forbid"}

    @field_validator("attributes", check_fields=False)
    @classmethod
    def check_attributes(cls, value: dict[str, Any]) -> dict[str, Any]:
        return validate_attributes(value)


class Resource(_Record):
    """Entity producing telemetry (service, host, pod...)."""

    attributes: dict[str, Any] = Field(default_factory=dict)

    @property
    def service_name(self) -> str:
        return str(self.attributes.get("service.name", DEFAULT_SERVICE_NAME))


class InstrumentationScope(_Record):
    """Library that produced the telemetry."""

    name: str = ""
    version: str = ""


class Status(_Record):
    code: StatusCode = StatusCode.UNSET
    message: str = ""


class SpanContext(_Record):
    """Identifiers that travel with a request across process boundaries."""

    trace_id: str
    span_id: str
    trace_flags: int = Field(default=0, ge=0, le=255)
    trace_state: str = ""
    is_remote: bool = False

    @field_validator("trace_id")
    @classmethod
    def check_trace_id(cls, value: str) -> str:
        return validate_trace_id(value)

    @field_validator("span_id")
    @classmethod
    def check_span_id(cls, value: str) -> str:
        return validate_span_id(value)

    @property
    def sampled(self) -> bool:
        return bool(self.trace_flags & 0x01)

    @property
    def is_valid(self) -> bool:
        return is_valid_trace_id(self.trace_id) and is_valid_span_id(self.span_id)


class SpanEvent(_Record):
    name: str
    timestamp_ns: int = Field(default_factory=now_ns)
    attributes: dict[str, Any] = Field(default_factory=dict)


class SpanLink(_Record):
    trace_id: str
    span_id: str
    attributes: dict[str, Any] = Field(default_factory=dict)

    @field_validator("trace_id")
    @classmethod
    def check_trace_id(cls, value: str) -> str:
        return validate_trace_id(value)

    @field_validator("span_id")
    @classmethod
    def check_span_id(cls, value: str) -> str:
        return validate_span_id(value)


class Span(_Record):
    """A finished unit of work."""

    name: str
    context: SpanContext
    parent_span_id: str | None = None
    kind: SpanKind = SpanKind.INTERNAL
    start_time_ns: int = 0
    end_time_ns: int = 0
    attributes: dict[str, Any] = Field(default_factory=dict)
    events: list[SpanEvent] = Field(default_factory=list)
    links: list[SpanLink] = Field(default_factory=list)
    status: Status = Field(default_factory=Status)
    resource: Resource = Field(default_factory=Resource)
    scope: InstrumentationScope = Field(default_factory=InstrumentationScope)

    @field_validator("parent_span_id")
    @classmethod
    def check_parent_span_id(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return validate_span_id(value)

    @property
    def trace_id(self) -> str:
        return self.context.trace_id

    @property
    def span_id(self) -> str:
        return self.context.span_id

    @property
    def duration_ns(self) -> int:
        if not self.end_time_ns:
            return 0
        return max(0, self.end_time_ns - self.start_time_ns)

    @property
    def is_root(self) -> bool:
        return self.parent_span_id is None


class LogRecord(_Record):
    timestamp_ns: int = Field(default_factory=now_ns)
    severity_number: int = Field(default=0, ge=0, le=24)
    severity_text: str = ""
    body: Any = None
    attributes: dict[str, Any] = Field(default_factory=dict)
    trace_id: str | None = None
    span_id: str | None = None
    resource: Resource = Field(default_factory=Resource)
    scope: InstrumentationScope = Field(default_factory=InstrumentationScope)

    @field_validator("trace_id")
    @classmethod
    def check_trace_id(cls, value: str | None) -> str | None:
        return None if value is None else validate_trace_id(value)

    @field_validator("span_id")
    @classmethod
    def check_span_id(cls, value: str | None) -> str | None:
        return None if value is None else validate_span_id(value)


class MetricPoint(_Record):
    """A single data point of a sum or gauge metric."""

    name: str
    kind: Literal["sum", "gauge"] = "gauge"
    value: int | float = 0
    attributes: dict[str, Any] = Field(default_factory=dict)
    start_time_ns: int = 0
    time_ns: int = Field(default_factory=now_ns)
    unit: str = ""
    monotonic: bool = False
    resource: Resource = Field(default_factory=Resource)
    scope: InstrumentationScope = Field(default_factory=InstrumentationScope)


TelemetryItem = Span | LogRecord | MetricPoint

_ITEM_TYPES: dict[Signal, type] = {
    Signal.TRACES: Span,
    Signal.METRICS: MetricPoint,
    Signal.LOGS: LogRecord,
}


class TelemetryBatch:
    """Unit of data flowing through a pipeline: one signal, many items."""

    __slots__ = ("signal", "items")

    def __init__(self, signal: Signal | str, items: Iterable[TelemetryItem] = ()) -> None:
        self.signal = Signal(signal)
        self.items: list[Any] = list(items)
        expected = _ITEM_TYPES[self.signal]
        for item in self.items:
            if not isinstance(item, expected):
                raise TypeError(
                    f"{self.signal.value} batch cannot hold {type(item).__name__}"
                )

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator[Any]:
        return iter(self.items)

    def __bool__(self) -> bool:
        return bool(self.items)

    def __repr__(self) -> str:
        return f"TelemetryBatch(signal={self.signal.value!r}, items={len(self.items)})"

    def with_items(self, items: Iterable[TelemetryItem]) -> "TelemetryBatch":
        """Return a new batch of the same signal holding ``items``."""
        return TelemetryBatch(self.signal, items)

    def split(self, max_size: int) -> list["TelemetryBatch"]:
        """Split into batches of at most ``max_size`` items (0 = no split)."""
        if max_size <= 0 or len(self.items) <= max_size:
            return [self]
        return [
            self.with_items(self.items[i:i + max_size])
            for i in range(0, len(self.items), max_size)
        ]

    @classmethod
    def merge(cls, batches: Iterable["TelemetryBatch"]) -> "TelemetryBatch":
        """Concatenate batches of the same signal.

        Raises:
            ValueError: If the batches carry different signals or none is given.
        """
        batches = list(batches)
        if not batches:
            raise ValueError("cannot merge an empty sequence of batches")
        signal = batches[0].signal
        items: list[Any] = []
        for batch in batches:
            if batch.signal != signal:
                raise ValueError(
                    f"cannot merge {batch.signal.value} into {signal.value} batch"
                )
            items.extend(batch.items)
        return cls(signal, items)
