"""
Context propagation - carry trace identity across service boundaries.

Supported formats: W3C Trace Context, W3C Baggage, B3 (single and multi
header).
"""

from .b3 import B3Propagator
from .baggage import W3CBaggagePropagator, format_baggage, parse_baggage
from .base import Carrier, PropagationContext, TextMapPropagator, get_header
from .composite import (
    AVAILABLE_PROPAGATORS,
    CompositePropagator,
    create_propagator,
    get_global_propagator,
    set_global_propagator,
)
from .tracecontext import (
    W3CTraceContextPropagator,
    format_traceparent,
    format_tracestate,
    parse_traceparent,
    parse_tracestate,
)

__all__ = [
    "AVAILABLE_PROPAGATORS",
    "B3Propagator",
    "Carrier",
    "CompositePropagator",
    "PropagationContext",
    "TextMapPropagator",
    "W3CBaggagePropagator",
    "W3CTraceContextPropagator",
    "create_propagator",
    "format_baggage",
    "format_traceparent",
    "format_tracestate",
    "get_global_propagator",
    "get_header",
    "parse_baggage",
    "parse_traceparent",
    "parse_tracestate",
    "set_global_propagator",
]
