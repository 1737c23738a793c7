"""
Connectors: join pipelines, optionally converting one signal into another.
"""

from .base import Connector
from .count import CountConnector
from .forward import ForwardConnector
from .spanmetrics import SpanMetricsConnector

BUILTIN_CONNECTORS = (
    CountConnector,
    ForwardConnector,
    SpanMetricsConnector,
)

__all__ = [
    "BUILTIN_CONNECTORS",
    "Connector",
    "CountConnector",
    "ForwardConnector",
    "SpanMetricsConnector",
]
