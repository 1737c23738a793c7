"""
B3 propagation (Zipkin) in its single-header and multi-header forms.

Multi-header:
    X-B3-TraceId: 463ac35c9f6413ad48485a3953bb6124
    X-B3-SpanId:  0020000000000001
    X-B3-Sampled: 1

Single-header:
    b3: {TraceId}-{SpanId}-{SamplingState}-{ParentSpanId}

SamplingState and ParentSpanId are optional. ``b3: 0`` (sampling state only)
carries no ids and therefore yields no span context. 64-bit trace ids are
left-padded with zeros to 128 bits.
"""

import re

from ..model.ids import is_valid_span_id, is_valid_trace_id
from ..model.types import SpanContext
from .base import Carrier, PropagationContext, TextMapPropagator, get_header

__all__ = ["B3Propagator"]

SINGLE_HEADER = "b3"
TRACE_ID_HEADER = "X-B3-TraceId"
SPAN_ID_HEADER = "X-B3-SpanId"
PARENT_SPAN_ID_HEADER = "X-B3-ParentSpanId"
SAMPLED_HEADER = "X-B3-Sampled"
FLAGS_HEADER = "X-B3-Flags"

_TRACE_ID_RE = re.compile(r"^(?:[0-9a-fA-F]{16}|[0-9a-fA-F]{32})$")
_SPAN_ID_RE = re.compile(r"^[0-9a-fA-F]{16}$")

_SAMPLED_VALUES = frozenset({"1", "true", "d"})


def _build_context(
    trace_id: str | None, span_id: str | None, sampled: str | None
) -> SpanContext | None:
    if not trace_id or not span_id:
        return None
    if not _TRACE_ID_RE.match(trace_id) or not _SPAN_ID_RE.match(span_id):
        return None

    trace_id = trace_id.lower().rjust(32, "0")
    span_id = span_id.lower()
    if not is_valid_trace_id(trace_id) or not is_valid_span_id(span_id):
        return None

    flags = 1 if sampled is not None and sampled.strip().lower() in _SAMPLED_VALUES else 0
    return SpanContext(
        trace_id=trace_id,
        span_id=span_id,
        trace_flags=flags,
        is_remote=True,
    )


class B3Propagator(TextMapPropagator):
    """Propagator for Zipkin B3 headers.

    Args:
        single_header: If True, ``inject`` writes the compact ``b3`` header,
            otherwise the three ``X-B3-*`` headers. ``extract`` always accepts
            both, preferring the single header.
    """

    def __init__(self, single_header: bool = False) -> None:
        self.single_header = single_header
        self.name = "b3" if single_header else "b3multi"

    def extract(
        self, carrier: Carrier, context: PropagationContext | None = None
    ) -> PropagationContext:
        context = context or PropagationContext()

        span_context = self._extract_single(carrier)
        if span_context is None:
            span_context = self._extract_multi(carrier)
        if span_context is not None:
            context.span_context = span_context
        return context

    def _extract_single(self, carrier: Carrier) -> SpanContext | None:
        header = get_header(carrier, SINGLE_HEADER)
        if not header:
            return None

        parts = header.strip().split("-")
        if len(parts) < 2 or len(parts) > 4:
            return None

        sampled = parts[2] if len(parts) >= 3 else None
        return _build_context(parts[0], parts[1], sampled)

    def _extract_multi(self, carrier: Carrier) -> SpanContext | None:
        sampled = get_header(carrier, SAMPLED_HEADER)
        # Debug flag implies an accept sampling decision.
        if (get_header(carrier, FLAGS_HEADER) or "").strip() == "1":
            sampled = "1"
        return _build_context(
            (get_header(carrier, TRACE_ID_HEADER) or "").strip(),
            (get_header(carrier, SPAN_ID_HEADER) or "").strip(),
            sampled,
        )

    def inject(self, carrier: Carrier, context: PropagationContext) -> None:
        if not context.has_span_context:
            return
        span_context = context.span_context
        sampled = "1" if span_context.sampled else "0"

        if self.single_header:
            carrier[SINGLE_HEADER] = (
                f"{span_context.trace_id}-{span_context.span_id}-{sampled}"
            )
            return

        carrier[TRACE_ID_HEADER] = span_context.trace_id
        carrier[SPAN_ID_HEADER] = span_context.span_id
        carrier[SAMPLED_HEADER] = sampled

    @property
    def fields(self) -> set[str]:
        if self.single_header:
            return {SINGLE_HEADER}
        return {TRACE_ID_HEADER, SPAN_ID_HEADER, SAMPLED_HEADER}
