"""
Telemetry -- the collector observing itself via OpenTelemetry.

Provides spans for pipeline consumption and exports.

Optional dependencies: opentelemetry-api, opentelemetry-sdk,
opentelemetry-exporter-otlp.
"""

from .otel import OTEL_AVAILABLE, CollectorTracer, NoopSpan, NoopTracer, create_tracer

__all__ = [
    "CollectorTracer",
    "NoopSpan",
    "NoopTracer",
    "OTEL_AVAILABLE",
    "create_tracer",
]
