"""
Configuration module for telepipe.

Exports the main components for convenient imports.
"""

from .loader import deep_merge, expand_env, load_config
from .schema import (
    CollectorConfig,
    LoggingConfig,
    PipelineConfig,
    ServiceConfig,
    TelemetryConfig,
)

__all__ = [
    "load_config",
    "deep_merge",
    "expand_env",
    "CollectorConfig",
    "LoggingConfig",
    "PipelineConfig",
    "ServiceConfig",
    "TelemetryConfig",
]
