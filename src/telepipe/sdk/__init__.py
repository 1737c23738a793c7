"""
Instrumentation side: create spans in an application and feed them to a
collector pipeline or an exporter.
"""

from .export import BatchSpanProcessor, SimpleSpanProcessor, SpanProcessor
from .sampling import (
    AlwaysOffSampler,
    AlwaysOnSampler,
    ParentBasedSampler,
    Sampler,
    TraceIdRatioSampler,
    create_sampler,
)
from .trace import (
    RecordingSpan,
    Tracer,
    extract_context,
    get_current_span,
    inject_current,
    use_span,
)

__all__ = [
    "AlwaysOffSampler",
    "AlwaysOnSampler",
    "BatchSpanProcessor",
    "ParentBasedSampler",
    "RecordingSpan",
    "Sampler",
    "SimpleSpanProcessor",
    "SpanProcessor",
    "TraceIdRatioSampler",
    "Tracer",
    "create_sampler",
    "extract_context",
    "get_current_span",
    "inject_current",
    "use_span",
]
