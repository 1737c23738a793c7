"""
Connector base class.

A connector is the exporter of one pipeline and the receiver of another. It
consumes signals listed first in ``supported_pairs`` and emits the second.
"""

from typing import ClassVar

from ..components.base import Component, ComponentKind, ConfigError, Consumer
from ..model.types import Signal, TelemetryBatch


class Connector(Component):
    kind: ClassVar[ComponentKind] = ComponentKind.CONNECTOR
    supported_pairs: ClassVar[frozenset[tuple[Signal, Signal]]] = frozenset()

    def __init__(self, component_id, settings) -> None:
        super().__init__(component_id, settings)
        self._consumers: dict[Signal, Consumer] = {}

    @classmethod
    def input_signals(cls) -> frozenset[Signal]:
        return frozenset(pair[0] for pair in cls.supported_pairs)

    @classmethod
    def output_signals(cls) -> frozenset[Signal]:
        return frozenset(pair[1] for pair in cls.supported_pairs)

    @classmethod
    def supports(cls, in_signal: Signal, out_signal: Signal) -> bool:
        return (Signal(in_signal), Signal(out_signal)) in cls.supported_pairs

    def set_consumer(self, signal: Signal, consumer: Consumer) -> None:
        self._consumers[Signal(signal)] = consumer

    def has_consumer(self, signal: Signal) -> bool:
        return Signal(signal) in self._consumers

    def emit(self, batch: TelemetryBatch) -> None:
        """Deliver produced data to the pipelines fed by this connector."""
        if not batch:
            return
        consumer = self._consumers.get(batch.signal)
        if consumer is None:
            raise ConfigError(f"connector '{self.id}' has no pipeline for {batch.signal.value}")
        consumer.consume(batch)
        self.counters.add("sent", len(batch))

    def consume(self, batch: TelemetryBatch) -> None:
        self.counters.add("accepted", len(batch))
        self.connect(batch)

    def connect(self, batch: TelemetryBatch) -> None:
        raise NotImplementedError

    def describe(self) -> dict:
        info = super().describe()
        info["pairs"] = sorted(f"{a.value}->{b.value}" for a, b in self.supported_pairs)
        return info
