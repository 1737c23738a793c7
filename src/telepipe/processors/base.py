"""
Processor base class.

A processor sits between the receivers and the exporters of one pipeline.
The service creates one instance per pipeline and links it to the next
consumer with ``set_next``.
"""

from typing import ClassVar

from ..components.base import Component, ComponentKind, ConfigError, Consumer
from ..model.types import TelemetryBatch


class Processor(Component):
    """Transforms batches and forwards the result to the next consumer.

    Subclasses implement ``process``. Returning an empty batch (or None)
    drops the data; dropped items are counted.
    """

    kind: ClassVar[ComponentKind] = ComponentKind.PROCESSOR

    def __init__(self, component_id, settings) -> None:
        super().__init__(component_id, settings)
        self._next: Consumer | None = None

    def set_next(self, consumer: Consumer) -> None:
        self._next = consumer

    @property
    def next_consumer(self) -> Consumer:
        if self._next is None:
            raise ConfigError(f"processor '{self.id}' is not linked to a next consumer")
        return self._next

    def consume(self, batch: TelemetryBatch) -> None:
        self.counters.add("accepted", len(batch))
        result = self.process(batch)
        kept = len(result) if result is not None else 0
        if kept < len(batch):
            self.counters.add("dropped", len(batch) - kept)
        if result:
            self.next_consumer.consume(result)

    def process(self, batch: TelemetryBatch) -> TelemetryBatch | None:
        return batch
