"""
Batch processor - groups items into larger batches before export.

Flush triggers:
- the buffer reaches ``send_batch_size`` items
- ``timeout`` elapsed since the first buffered item
- shutdown

Batches larger than ``send_batch_max_size`` (0 = unlimited) are split before
being forwarded. Flushes triggered by size run on the caller's thread; timed
flushes run on a background thread started by ``start``.
"""

import threading
import time
from typing import Any, ClassVar

from pydantic import BaseModel, Field, model_validator

from ..model.types import TelemetryBatch
from .base import Processor


class BatchSettings(BaseModel):
    send_batch_size: int = Field(default=8192, ge=1)
    send_batch_max_size: int = Field(default=0, ge=0)
    timeout: float = Field(
        default=0.2,
        gt=0,
        description="Seconds to wait before sending a partial batch.",
    )

    model_config = {"extra": "forbid"}

    @model_validator(mode="after")
    def check_sizes(self) -> "BatchSettings":
        if self.send_batch_max_size and self.send_batch_max_size < self.send_batch_size:
            raise ValueError("send_batch_max_size must be >= send_batch_size")
        return self


class BatchProcessor(Processor):
    type_name: ClassVar[str] = "batch"
    settings_model: ClassVar[type[BaseModel]] = BatchSettings

    def __init__(self, component_id, settings: BatchSettings) -> None:
        super().__init__(component_id, settings)
        self._lock = threading.Lock()
        self._buffer: list[Any] = []
        self._signal = None
        self._first_item_at: float | None = None
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run_timer, name=f"batch-{self.id}", daemon=True
        )
        self._thread.start()
        self.log.info(
            "processor.batch.started",
            send_batch_size=self.settings.send_batch_size,
            timeout=self.settings.timeout,
        )

    def consume(self, batch: TelemetryBatch) -> None:
        if not batch:
            return
        self.counters.add("accepted", len(batch))

        ready: TelemetryBatch | None = None
        with self._lock:
            if not self._buffer:
                self._first_item_at = time.monotonic()
            self._signal = batch.signal
            self._buffer.extend(batch.items)
            if len(self._buffer) >= self.settings.send_batch_size:
                ready = self._take_locked()

        if ready is not None:
            self._send(ready)

    def _take_locked(self) -> TelemetryBatch | None:
        if not self._buffer:
            return None
        taken = TelemetryBatch(self._signal, self._buffer)
        self._buffer = []
        self._first_item_at = None
        return taken

    def _send(self, batch: TelemetryBatch) -> None:
        for part in batch.split(self.settings.send_batch_max_size):
            self.log.debug("processor.batch.flush", items=len(part))
            self.next_consumer.consume(part)

    def flush(self) -> None:
        """Send whatever is buffered now."""
        with self._lock:
            ready = self._take_locked()
        if ready is not None:
            self._send(ready)

    def _run_timer(self) -> None:
        interval = min(self.settings.timeout, 0.05)
        while not self._stop.wait(interval):
            with self._lock:
                due = (
                    self._first_item_at is not None
                    and time.monotonic() - self._first_item_at >= self.settings.timeout
                )
                ready = self._take_locked() if due else None
            if ready is None:
                continue
            try:
                self._send(ready)
            except Exception as e:
                # Nobody upstream is waiting for a timed flush.
                self.counters.add("dropped", len(ready))
                self.log.warning(
                    "processor.batch.flush_failed",
                    items=len(ready),
                    error=str(e),
                    error_type=type(e).__name__,
                )

    def shutdown(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=max(1.0, self.settings.timeout * 5))
            self._thread = None
        self.flush()
