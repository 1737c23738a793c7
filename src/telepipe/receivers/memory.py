"""
In-process receiver. Anything holding a reference to it (an sdk span
processor, a test) can push batches with ``consume``.
"""

from typing import ClassVar

from ..model.types import TelemetryBatch
from .base import Receiver


class MemoryReceiver(Receiver):
    type_name: ClassVar[str] = "memory"

    def consume(self, batch: TelemetryBatch) -> None:
        self.deliver(batch)
