"""
In-memory exporter - keeps every batch it receives. Used by tests and by
embedding applications that want to inspect collector output.
"""

import threading
from typing import ClassVar

from pydantic import BaseModel, Field

from ..components.base import ConsumerRefusedError
from ..model.types import LogRecord, MetricPoint, Signal, Span, TelemetryBatch
from .base import Exporter


class MemoryExporterSettings(BaseModel):
    max_items: int = Field(default=0, ge=0, description="0 = unbounded; refuse once full.")

    model_config = {"extra": "forbid"}


class MemoryExporter(Exporter):
    type_name: ClassVar[str] = "memory"
    settings_model: ClassVar[type[BaseModel]] = MemoryExporterSettings

    def __init__(self, component_id, settings: MemoryExporterSettings) -> None:
        super().__init__(component_id, settings)
        self._lock = threading.Lock()
        self._batches: list[TelemetryBatch] = []
        self._count = 0

    def export(self, batch: TelemetryBatch) -> None:
        with self._lock:
            limit = self.settings.max_items
            if limit and self._count + len(batch) > limit:
                raise ConsumerRefusedError(f"memory exporter '{self.id}' is full")
            self._batches.append(batch)
            self._count += len(batch)

    @property
    def batches(self) -> list[TelemetryBatch]:
        with self._lock:
            return list(self._batches)

    def items(self, signal: Signal | None = None) -> list:
        with self._lock:
            return [
                item
                for batch in self._batches
                if signal is None or batch.signal == signal
                for item in batch
            ]

    @property
    def spans(self) -> list[Span]:
        return self.items(Signal.TRACES)

    @property
    def logs(self) -> list[LogRecord]:
        return self.items(Signal.LOGS)

    @property
    def metrics(self) -> list[MetricPoint]:
        return self.items(Signal.METRICS)

    def clear(self) -> None:
        with self._lock:
            self._batches.clear()
            self._count = 0
