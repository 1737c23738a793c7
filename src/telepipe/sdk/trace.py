"""
Tracer - creates spans and tracks the current one.

The current span lives in a ``contextvars.ContextVar``, so it follows threads
and asyncio tasks the way ``contextvars`` does. ``start_as_current_span`` is
the usual entry point:

    tracer = Tracer(resource=Resource(attributes={"service.name": "api"}),
                    processor=SimpleSpanProcessor(exporter))
    with tracer.start_as_current_span("GET /orders", kind=SpanKind.SERVER):
        ...

Spans that are not sampled still get a valid context (flags 0) so that
downstream services see the decision, but they are never given to the span
processor.
"""

import threading
import traceback
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Iterator

from ..model.ids import generate_span_id, generate_trace_id
from ..model.types import (
    InstrumentationScope,
    Resource,
    Span,
    SpanContext,
    SpanEvent,
    SpanKind,
    SpanLink,
    Status,
    StatusCode,
    now_ns,
    validate_attributes,
)
from ..propagation import PropagationContext, get_global_propagator
from ..propagation.base import Carrier, TextMapPropagator
from .export import SpanProcessor
from .sampling import AlwaysOnSampler, ParentBasedSampler, Sampler

__all__ = [
    "RecordingSpan",
    "Tracer",
    "extract_context",
    "get_current_span",
    "inject_current",
    "use_span",
]

_current_span: ContextVar["RecordingSpan | None"] = ContextVar(
    "telepipe_current_span", default=None
)


def get_current_span() -> "RecordingSpan | None":
    return _current_span.get()


class RecordingSpan:
    """Mutable handle on a span in progress.

    ``end`` freezes it into an immutable ``Span``; calls after ``end`` are
    ignored.
    """

    def __init__(
        self,
        tracer: "Tracer",
        name: str,
        context: SpanContext,
        parent_span_id: str | None,
        kind: SpanKind,
        attributes: dict[str, Any],
        links: list[SpanLink],
        start_time_ns: int,
    ) -> None:
        self._tracer = tracer
        self._lock = threading.Lock()
        self.name = name
        self.context = context
        self.parent_span_id = parent_span_id
        self.kind = kind
        self.attributes = attributes
        self.links = links
        self.events: list[SpanEvent] = []
        self.status = Status()
        self.start_time_ns = start_time_ns
        self.end_time_ns: int | None = None
        self._span: Span | None = None

    def __repr__(self) -> str:
        return f"RecordingSpan({self.name!r}, span_id={self.context.span_id})"

    @property
    def is_recording(self) -> bool:
        return self.end_time_ns is None and self.context.sampled

    @property
    def ended(self) -> bool:
        return self.end_time_ns is not None

    def set_attribute(self, key: str, value: Any) -> None:
        with self._lock:
            if self.ended:
                return
            self.attributes.update(validate_attributes({key: value}))

    def set_attributes(self, attributes: dict[str, Any]) -> None:
        with self._lock:
            if self.ended:
                return
            self.attributes.update(validate_attributes(attributes))

    def add_event(
        self, name: str, attributes: dict[str, Any] | None = None, timestamp_ns: int | None = None
    ) -> None:
        with self._lock:
            if self.ended:
                return
            self.events.append(
                SpanEvent(
                    name=name,
                    attributes=attributes or {},
                    timestamp_ns=timestamp_ns or now_ns(),
                )
            )

    def update_name(self, name: str) -> None:
        with self._lock:
            if not self.ended:
                self.name = name

    def set_status(self, code: StatusCode, message: str = "") -> None:
        """Set the status. An ``ok`` status is final and cannot be overridden."""
        with self._lock:
            if self.ended or self.status.code == StatusCode.OK:
                return
            code = StatusCode(code)
            self.status = Status(code=code, message=message if code == StatusCode.ERROR else "")

    def record_exception(self, exc: BaseException) -> None:
        self.add_event(
            "exception",
            {
                "exception.type": type(exc).__qualname__,
                "exception.message": str(exc),
                "exception.stacktrace": "".join(
                    traceback.format_exception(type(exc), exc, exc.__traceback__)
                ),
            },
        )

    def to_span(self) -> Span:
        with self._lock:
            return self._freeze(self.end_time_ns or now_ns())

    def _freeze(self, end_time_ns: int) -> Span:
        return Span(
            name=self.name,
            context=self.context,
            parent_span_id=self.parent_span_id,
            kind=self.kind,
            start_time_ns=self.start_time_ns,
            end_time_ns=end_time_ns,
            attributes=dict(self.attributes),
            events=list(self.events),
            links=list(self.links),
            status=self.status,
            resource=self._tracer.resource,
            scope=self._tracer.scope,
        )

    def end(self, end_time_ns: int | None = None) -> None:
        with self._lock:
            if self.ended:
                return
            self.end_time_ns = max(end_time_ns or now_ns(), self.start_time_ns)
            self._span = self._freeze(self.end_time_ns)
        if self.context.sampled:
            self._tracer._on_end(self._span)

    def __enter__(self) -> "RecordingSpan":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc is not None and isinstance(exc, Exception):
            self.record_exception(exc)
            self.set_status(StatusCode.ERROR, str(exc))
        self.end()


@contextmanager
def use_span(span: RecordingSpan, end_on_exit: bool = False) -> Iterator[RecordingSpan]:
    """Make ``span`` the current span for the duration of the block."""
    token = _current_span.set(span)
    try:
        yield span
    except Exception as e:
        span.record_exception(e)
        span.set_status(StatusCode.ERROR, str(e))
        raise
    finally:
        _current_span.reset(token)
        if end_on_exit:
            span.end()


class Tracer:
    """Creates spans for one instrumented service.

    Args:
        resource: Resource attached to every span (``service.name``...).
        scope: Instrumentation scope; defaults to ``telepipe.sdk``.
        sampler: Head sampler; defaults to ``parentbased_always_on``.
        processor: Receives ended, sampled spans. None = spans are dropped.
    """

    def __init__(
        self,
        resource: Resource | None = None,
        scope: InstrumentationScope | None = None,
        sampler: Sampler | None = None,
        processor: SpanProcessor | None = None,
    ) -> None:
        self.resource = resource or Resource()
        self.scope = scope or InstrumentationScope(name="telepipe.sdk")
        self.sampler = sampler or ParentBasedSampler(AlwaysOnSampler())
        self.processor = processor

    def _on_end(self, span: Span) -> None:
        if self.processor is not None:
            self.processor.on_end(span)

    def start_span(
        self,
        name: str,
        kind: SpanKind = SpanKind.INTERNAL,
        attributes: dict[str, Any] | None = None,
        parent: SpanContext | None = None,
        links: list[SpanLink] | None = None,
        start_time_ns: int | None = None,
    ) -> RecordingSpan:
        """Start a span without making it current.

        ``parent`` overrides the current span; an invalid parent starts a
        new trace.
        """
        if parent is None:
            current = get_current_span()
            parent = current.context if current is not None else None
        if parent is not None and not parent.is_valid:
            parent = None

        trace_id = parent.trace_id if parent is not None else generate_trace_id()
        sampled = self.sampler.should_sample(trace_id, name, parent)
        context = SpanContext(
            trace_id=trace_id,
            span_id=generate_span_id(),
            trace_flags=0x01 if sampled else 0x00,
            trace_state=parent.trace_state if parent is not None else "",
        )
        return RecordingSpan(
            self,
            name=name,
            context=context,
            parent_span_id=parent.span_id if parent is not None else None,
            kind=SpanKind(kind),
            attributes=validate_attributes(dict(attributes or {})),
            links=list(links or []),
            start_time_ns=start_time_ns or now_ns(),
        )

    @contextmanager
    def start_as_current_span(
        self,
        name: str,
        kind: SpanKind = SpanKind.INTERNAL,
        attributes: dict[str, Any] | None = None,
        parent: SpanContext | None = None,
        links: list[SpanLink] | None = None,
    ) -> Iterator[RecordingSpan]:
        """Start a span, make it current, end it when the block exits.

        An exception leaving the block is recorded as an ``exception`` event
        and sets the status to error before being re-raised.
        """
        span = self.start_span(name, kind=kind, attributes=attributes, parent=parent, links=links)
        with use_span(span, end_on_exit=True):
            yield span


def inject_current(
    carrier: Carrier,
    propagator: TextMapPropagator | None = None,
    baggage: dict[str, str] | None = None,
) -> None:
    """Write the current span's context (and ``baggage``) into ``carrier``."""
    current = get_current_span()
    context = PropagationContext(
        span_context=current.context if current is not None else None,
        baggage=dict(baggage or {}),
    )
    (propagator or get_global_propagator()).inject(carrier, context)


def extract_context(
    carrier: Carrier, propagator: TextMapPropagator | None = None
) -> PropagationContext:
    """Read a remote context from ``carrier``; pass ``.span_context`` as ``parent``."""
    return (propagator or get_global_propagator()).extract(carrier)
