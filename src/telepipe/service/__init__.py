"""
Service: builds pipelines from the config and runs them.
"""

from .collector import Collector
from .fanout import FanOutConsumer
from .graph import Graph, Pipeline, PipelineValidationError, build_graph
from .shutdown import EXIT_INTERRUPTED, GracefulShutdown

__all__ = [
    "Collector",
    "EXIT_INTERRUPTED",
    "FanOutConsumer",
    "Graph",
    "GracefulShutdown",
    "Pipeline",
    "PipelineValidationError",
    "build_graph",
]
