"""
Receiver base class.

A receiver brings data into the collector. The service wires one consumer per
signal (the fan-out into every pipeline that lists the receiver) with
``set_consumer`` before ``start``.
"""

import logging
from typing import ClassVar

from ..components.base import Component, ComponentKind, ConfigError, Consumer, ConsumerRefusedError
from ..logging.human import HumanLog
from ..model.types import Signal, TelemetryBatch

_hlog = HumanLog(logging.getLogger("telepipe.receiver"))


class Receiver(Component):
    kind: ClassVar[ComponentKind] = ComponentKind.RECEIVER

    def __init__(self, component_id, settings) -> None:
        super().__init__(component_id, settings)
        self._consumers: dict[Signal, Consumer] = {}

    def set_consumer(self, signal: Signal, consumer: Consumer) -> None:
        self._consumers[Signal(signal)] = consumer

    def has_consumer(self, signal: Signal) -> bool:
        return Signal(signal) in self._consumers

    @property
    def signals(self) -> list[Signal]:
        """Signals this receiver is wired for, in declaration order."""
        return list(self._consumers)

    def deliver(self, batch: TelemetryBatch) -> None:
        """Push a batch into the pipelines of its signal.

        Raises:
            ConfigError: If no pipeline takes this signal from this receiver.
            ConsumerRefusedError: If a pipeline refused the data; the caller
                should ask its client to retry.
        """
        consumer = self._consumers.get(batch.signal)
        if consumer is None:
            raise ConfigError(f"receiver '{self.id}' has no pipeline for {batch.signal.value}")
        if not batch:
            return
        try:
            consumer.consume(batch)
        except ConsumerRefusedError:
            self.counters.add("refused", len(batch))
            self.log.warning("receiver.refused", items=len(batch), signal=batch.signal.value)
            _hlog.receiver_refused(str(self.id), len(batch))
            raise
        self.counters.add("accepted", len(batch))
