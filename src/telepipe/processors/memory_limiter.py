"""
Memory limiter - refuses data when too many items are in flight.

The limit is expressed in items rather than bytes: each batch reserves
``len(batch)`` from the budget while downstream processing runs and releases
it afterwards. A batch that does not fit raises ``ConsumerRefusedError`` so
the receiver can ask the client to retry later (HTTP 503). Place it first in
the pipeline so refusals happen before any work is done.
"""

import threading
from typing import ClassVar

from pydantic import BaseModel, Field

from ..components.base import ConsumerRefusedError
from ..model.types import TelemetryBatch
from .base import Processor


class MemoryLimiterSettings(BaseModel):
    limit_items: int = Field(default=100_000, ge=1)

    model_config = {"extra": "forbid"}


class MemoryLimiterProcessor(Processor):
    type_name: ClassVar[str] = "memory_limiter"
    settings_model: ClassVar[type[BaseModel]] = MemoryLimiterSettings

    def __init__(self, component_id, settings: MemoryLimiterSettings) -> None:
        super().__init__(component_id, settings)
        self._lock = threading.Lock()
        self._in_flight = 0

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight

    def consume(self, batch: TelemetryBatch) -> None:
        size = len(batch)
        with self._lock:
            if self._in_flight + size > self.settings.limit_items:
                self.counters.add("refused", size)
                self.log.warning(
                    "processor.memory_limiter.refused",
                    items=size,
                    in_flight=self._in_flight,
                    limit=self.settings.limit_items,
                )
                raise ConsumerRefusedError(
                    f"memory limit reached ({self._in_flight}/{self.settings.limit_items} items in flight)"
                )
            self._in_flight += size

        self.counters.add("accepted", size)
        try:
            self.next_consumer.consume(batch)
        finally:
            with self._lock:
                self._in_flight -= size
