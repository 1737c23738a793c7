"""
Collector component contract.

Every receiver, processor, exporter and connector is a ``Component``:
- identified by a ``ComponentID`` (``type`` or ``type/name``)
- configured by a pydantic settings model (``settings_model``)
- started and shut down by the service, in dependency order
- counting what flows through it in thread-safe ``Counters``

Data moves between components through the ``Consumer`` protocol: a single
``consume(batch)`` call that either returns (accepted) or raises.
"""

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Protocol, runtime_checkable

import structlog
from pydantic import BaseModel

from ..model.types import Signal, TelemetryBatch

logger = structlog.get_logger()

__all__ = [
    "Component",
    "ComponentID",
    "ComponentKind",
    "ConfigError",
    "Consumer",
    "ConsumerRefusedError",
    "Counters",
    "EmptySettings",
    "ExportError",
    "TelepipeError",
]


class TelepipeError(Exception):
    """Base error for telepipe."""


class ConfigError(TelepipeError):
    """A component section or the pipeline graph is invalid."""


class ConsumerRefusedError(TelepipeError):
    """A downstream consumer refused data (back-pressure).

    Retryable by the sender: receivers translate it to HTTP 503.
    """


class ExportError(TelepipeError):
    """An exporter could not deliver a batch.

    Attributes:
        retryable: True if sending the same batch later may succeed.
    """

    def __init__(self, message: str, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


@runtime_checkable
class Consumer(Protocol):
    def consume(self, batch: TelemetryBatch) -> None: ...


class ComponentKind(str, Enum):
    RECEIVER = "receiver"
    PROCESSOR = "processor"
    EXPORTER = "exporter"
    CONNECTOR = "connector"


@dataclass(frozen=True)
class ComponentID:
    """``type`` or ``type/name``, e.g. ``otlp`` or ``otlp_http/backup``."""

    type: str
    name: str = ""

    @classmethod
    def parse(cls, value: str) -> "ComponentID":
        """Parse a component id.

        Raises:
            ValueError: On an empty type, an empty name after '/', or more
                than one '/'.
        """
        value = value.strip()
        parts = value.split("/")
        if len(parts) > 2:
            raise ValueError(f"invalid component id '{value}': more than one '/'")
        type_ = parts[0]
        name = parts[1] if len(parts) == 2 else ""
        if not type_:
            raise ValueError(f"invalid component id '{value}': empty type")
        if len(parts) == 2 and not name:
            raise ValueError(f"invalid component id '{value}': empty name after '/'")
        return cls(type=type_, name=name)

    def __str__(self) -> str:
        return f"{self.type}/{self.name}" if self.name else self.type


class Counters:
    """Thread-safe named counters for one component."""

    NAMES = ("accepted", "refused", "dropped", "sent", "send_failed")

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._values: dict[str, int] = {name: 0 for name in self.NAMES}

    def add(self, name: str, value: int = 1) -> None:
        with self._lock:
            self._values[name] = self._values.get(name, 0) + value

    def get(self, name: str) -> int:
        with self._lock:
            return self._values.get(name, 0)

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._values)


class EmptySettings(BaseModel):
    """Settings model for components without options."""

    model_config = {"extra": "forbid"}


class Component:
    """Base class of every collector component.

    Subclasses set the class attributes and implement ``consume`` (processors,
    exporters, connectors) and/or ``start``/``shutdown``.
    """

    kind: ClassVar[ComponentKind]
    type_name: ClassVar[str]
    settings_model: ClassVar[type[BaseModel]] = EmptySettings
    supported_signals: ClassVar[frozenset[Signal]] = frozenset(Signal)

    def __init__(self, component_id: ComponentID, settings: BaseModel) -> None:
        self.id = component_id
        self.settings = settings
        self.counters = Counters()
        self.log = logger.bind(component=str(component_id), kind=self.kind.value)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.id})"

    def start(self) -> None:
        """Acquire resources (threads, sockets). Default: nothing to do."""

    def shutdown(self) -> None:
        """Flush and release resources. Must be safe to call twice."""

    def describe(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "kind": self.kind.value,
            "signals": sorted(s.value for s in self.supported_signals),
        }
