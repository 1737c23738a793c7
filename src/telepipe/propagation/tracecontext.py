"""
W3C Trace Context propagation (``traceparent`` / ``tracestate``).

traceparent format:

    {version:2}-{trace-id:32}-{parent-id:16}-{trace-flags:2}
    00-4bf92f3577b34da6a3ce929d0e0e4736-00f067aa0ba902b7-01

Parsing rules:
- Version ``ff`` is forbidden.
- Version ``00`` must have exactly four fields.
- Higher versions may append fields; only the first four are read.
- All-zero trace or parent ids are invalid.
"""

import re

import structlog

from ..model.ids import is_valid_span_id, is_valid_trace_id
from ..model.types import SpanContext
from .base import Carrier, PropagationContext, TextMapPropagator, get_header

logger = structlog.get_logger()

__all__ = [
    "MAX_TRACESTATE_MEMBERS",
    "W3CTraceContextPropagator",
    "format_traceparent",
    "format_tracestate",
    "parse_traceparent",
    "parse_tracestate",
]

TRACEPARENT_HEADER = "traceparent"
TRACESTATE_HEADER = "tracestate"

MAX_TRACESTATE_MEMBERS = 32

_TRACEPARENT_RE = re.compile(
    r"^(?P<version>[0-9a-f]{2})-(?P<trace_id>[0-9a-f]{32})-"
    r"(?P<span_id>[0-9a-f]{16})-(?P<flags>[0-9a-f]{2})(?P<rest>-.*)?$"
)

_KEY_RE = re.compile(
    r"^(?:[a-z0-9][_0-9a-z\-*/]{0,255}"
    r"|[a-z0-9][_0-9a-z\-*/]{0,240}@[a-z][_0-9a-z\-*/]{0,13})$"
)
_VALUE_RE = re.compile(r"^[\x20-\x2b\x2d-\x3c\x3e-\x7e]{0,255}[\x21-\x2b\x2d-\x3c\x3e-\x7e]$")


def parse_traceparent(header: str | None) -> SpanContext | None:
    """Parse a traceparent header into a remote ``SpanContext``.

    Returns:
        The context, or None when the header is missing or malformed.
    """
    if not header:
        return None

    match = _TRACEPARENT_RE.match(header.strip())
    if not match:
        return None

    version = match.group("version")
    if version == "ff":
        return None
    if version == "00" and match.group("rest"):
        return None

    trace_id = match.group("trace_id")
    span_id = match.group("span_id")
    if not is_valid_trace_id(trace_id) or not is_valid_span_id(span_id):
        return None

    return SpanContext(
        trace_id=trace_id,
        span_id=span_id,
        trace_flags=int(match.group("flags"), 16),
        is_remote=True,
    )


def format_traceparent(context: SpanContext) -> str:
    return f"00-{context.trace_id}-{context.span_id}-{context.trace_flags:02x}"


def parse_tracestate(header: str | None) -> list[tuple[str, str]]:
    """Parse a tracestate header into ordered ``(key, value)`` members.

    Invalid members are dropped, duplicated keys keep their first occurrence.
    A header with more than ``MAX_TRACESTATE_MEMBERS`` non-empty list-members,
    valid or not, is discarded entirely.
    """
    if not header:
        return []

    raw_members = [m.strip() for m in header.split(",") if m.strip()]
    if len(raw_members) > MAX_TRACESTATE_MEMBERS:
        logger.debug("propagation.tracestate.too_many_members", count=len(raw_members))
        return []

    members: list[tuple[str, str]] = []
    seen: set[str] = set()
    for raw in raw_members:
        key, sep, value = raw.partition("=")
        key = key.strip()
        value = value.strip()
        if not sep or not _KEY_RE.match(key) or not _VALUE_RE.match(value):
            logger.debug("propagation.tracestate.invalid_member", member=raw)
            continue
        if key in seen:
            continue
        seen.add(key)
        members.append((key, value))
    return members


def format_tracestate(members: list[tuple[str, str]]) -> str:
    return ",".join(f"{key}={value}" for key, value in members)


class W3CTraceContextPropagator(TextMapPropagator):
    """Propagator for the W3C ``traceparent`` and ``tracestate`` headers."""

    name = "tracecontext"

    def extract(
        self, carrier: Carrier, context: PropagationContext | None = None
    ) -> PropagationContext:
        context = context or PropagationContext()
        span_context = parse_traceparent(get_header(carrier, TRACEPARENT_HEADER))
        if span_context is None:
            return context

        state = format_tracestate(parse_tracestate(get_header(carrier, TRACESTATE_HEADER)))
        if state:
            span_context = span_context.model_copy(update={"trace_state": state})
        context.span_context = span_context
        return context

    def inject(self, carrier: Carrier, context: PropagationContext) -> None:
        if not context.has_span_context:
            return
        span_context = context.span_context
        carrier[TRACEPARENT_HEADER] = format_traceparent(span_context)
        if span_context.trace_state:
            carrier[TRACESTATE_HEADER] = span_context.trace_state

    @property
    def fields(self) -> set[str]:
        return {TRACEPARENT_HEADER, TRACESTATE_HEADER}
