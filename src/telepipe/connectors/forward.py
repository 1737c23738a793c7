"""
Forward connector - passes batches unchanged to pipelines of the same signal.
"""

from typing import ClassVar

from ..model.types import Signal, TelemetryBatch
from .base import Connector


class ForwardConnector(Connector):
    type_name: ClassVar[str] = "forward"
    supported_pairs: ClassVar[frozenset[tuple[Signal, Signal]]] = frozenset(
        (signal, signal) for signal in Signal
    )

    def connect(self, batch: TelemetryBatch) -> None:
        self.emit(batch)
