"""
Exporter base class and the optional sending queue.

Without a queue, ``consume`` exports synchronously and errors travel back to
the caller. With ``sending_queue.enabled`` the batch is queued and
``num_consumers`` worker threads export in the background: the caller only
sees a ``ConsumerRefusedError`` when the queue is full.
"""

import logging
import queue
import threading
from typing import ClassVar

from pydantic import BaseModel, Field

from ..components.base import Component, ComponentKind, ConsumerRefusedError, ExportError
from ..logging.human import HumanLog
from ..model.types import TelemetryBatch

_hlog = HumanLog(logging.getLogger("telepipe.exporter"))


class SendingQueueSettings(BaseModel):
    enabled: bool = False
    queue_size: int = Field(default=1000, ge=1, description="Capacity in batches.")
    num_consumers: int = Field(default=1, ge=1, le=64)

    model_config = {"extra": "forbid"}


class Exporter(Component):
    """Sends batches out of the collector.

    Subclasses implement ``export``. Settings models that declare a
    ``sending_queue`` field get queued, asynchronous delivery.
    """

    kind: ClassVar[ComponentKind] = ComponentKind.EXPORTER

    def __init__(self, component_id, settings) -> None:
        super().__init__(component_id, settings)
        queue_settings = getattr(settings, "sending_queue", None)
        self._queue_settings: SendingQueueSettings | None = (
            queue_settings if queue_settings is not None and queue_settings.enabled else None
        )
        self._queue: queue.Queue[TelemetryBatch | None] | None = None
        self._workers: list[threading.Thread] = []

    # -- lifecycle ---------------------------------------------------------

    def start(self) -> None:
        if self._queue_settings is None or self._workers:
            return
        self._queue = queue.Queue(maxsize=self._queue_settings.queue_size)
        for i in range(self._queue_settings.num_consumers):
            worker = threading.Thread(
                target=self._drain, name=f"exporter-{self.id}-{i}", daemon=True
            )
            worker.start()
            self._workers.append(worker)
        self.log.info(
            "exporter.queue.started",
            queue_size=self._queue_settings.queue_size,
            consumers=self._queue_settings.num_consumers,
        )

    def shutdown(self) -> None:
        if self._queue is not None:
            for _ in self._workers:
                self._queue.put(None)
            for worker in self._workers:
                worker.join()
            self._workers = []
            self._queue = None

    # -- data path -----------------------------------------------------------

    def consume(self, batch: TelemetryBatch) -> None:
        if not batch:
            return
        if self._queue is None:
            self._export_counted(batch)
            return
        try:
            self._queue.put_nowait(batch)
        except queue.Full:
            self.counters.add("refused", len(batch))
            self.log.warning("exporter.queue.full", items=len(batch))
            raise ConsumerRefusedError(f"sending queue of '{self.id}' is full") from None

    def _drain(self) -> None:
        assert self._queue is not None
        while True:
            batch = self._queue.get()
            if batch is None:
                return
            try:
                self._export_counted(batch)
            except Exception:
                # Counted and logged by _export_counted
                continue

    def _export_counted(self, batch: TelemetryBatch) -> None:
        try:
            self.export(batch)
        except Exception as e:
            self.counters.add("send_failed", len(batch))
            retryable = isinstance(e, ExportError) and e.retryable
            self.log.warning(
                "exporter.export_failed",
                items=len(batch),
                signal=batch.signal.value,
                error=str(e),
                error_type=type(e).__name__,
                retryable=retryable,
            )
            _hlog.exporter_failed(str(self.id), len(batch), str(e))
            raise
        self.counters.add("sent", len(batch))

    def export(self, batch: TelemetryBatch) -> None:
        raise NotImplementedError
