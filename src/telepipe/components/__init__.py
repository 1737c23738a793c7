"""
Collector components: contract, errors and registry.
"""

from .base import (
    Component,
    ComponentID,
    ComponentKind,
    ConfigError,
    Consumer,
    ConsumerRefusedError,
    Counters,
    EmptySettings,
    ExportError,
    TelepipeError,
)
from .registry import (
    ComponentNotFoundError,
    ComponentRegistry,
    DuplicateComponentError,
    default_registry,
)

__all__ = [
    "Component",
    "ComponentID",
    "ComponentKind",
    "ComponentNotFoundError",
    "ComponentRegistry",
    "ConfigError",
    "Consumer",
    "ConsumerRefusedError",
    "Counters",
    "DuplicateComponentError",
    "EmptySettings",
    "ExportError",
    "TelepipeError",
    "default_registry",
]
