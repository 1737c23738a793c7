"""
Span processors - hand ended spans to a ``Consumer``.

A consumer is anything with ``consume(batch)``: an exporter, a processor or
the ``memory`` receiver of a running collector. Export failures are logged
and never raised into the instrumented code.
"""

import collections
import threading
from abc import ABC, abstractmethod

import structlog

from ..components.base import Consumer
from ..model.types import Signal, Span, TelemetryBatch

logger = structlog.get_logger()

__all__ = ["BatchSpanProcessor", "SimpleSpanProcessor", "SpanProcessor"]


class SpanProcessor(ABC):
    @abstractmethod
    def on_end(self, span: Span) -> None:
        """Called once for every ended, sampled span."""

    def force_flush(self) -> None:
        """Deliver everything pending. Default: nothing pending."""

    def shutdown(self) -> None:
        """Flush and stop. Must be safe to call twice."""


def _deliver(consumer: Consumer, spans: list[Span]) -> bool:
    try:
        consumer.consume(TelemetryBatch(Signal.TRACES, spans))
    except Exception as e:
        logger.warning(
            "sdk.export_failed",
            spans=len(spans),
            error=str(e),
            error_type=type(e).__name__,
        )
        return False
    return True


class SimpleSpanProcessor(SpanProcessor):
    """Delivers each span as soon as it ends, on the caller's thread."""

    def __init__(self, consumer: Consumer) -> None:
        self.consumer = consumer
        self._shutdown = False

    def on_end(self, span: Span) -> None:
        if not self._shutdown:
            _deliver(self.consumer, [span])

    def shutdown(self) -> None:
        self._shutdown = True


class BatchSpanProcessor(SpanProcessor):
    """Queues spans and delivers them from a worker thread.

    The worker wakes up every ``schedule_delay_ms`` or as soon as
    ``max_export_batch_size`` spans are queued. Spans arriving while the
    queue holds ``max_queue_size`` are dropped and counted in ``dropped``.
    """

    def __init__(
        self,
        consumer: Consumer,
        max_queue_size: int = 2048,
        schedule_delay_ms: int = 5000,
        max_export_batch_size: int = 512,
    ) -> None:
        if max_queue_size < 1 or max_export_batch_size < 1:
            raise ValueError("queue and batch sizes must be positive")
        if max_export_batch_size > max_queue_size:
            raise ValueError("max_export_batch_size must be <= max_queue_size")
        self.consumer = consumer
        self.max_queue_size = max_queue_size
        self.schedule_delay_ms = schedule_delay_ms
        self.max_export_batch_size = max_export_batch_size
        self.dropped = 0

        self._queue: collections.deque[Span] = collections.deque()
        self._condition = threading.Condition()
        self._export_lock = threading.Lock()
        self._shutdown = False
        self._worker = threading.Thread(target=self._run, name="telepipe-bsp", daemon=True)
        self._worker.start()

    def on_end(self, span: Span) -> None:
        with self._condition:
            if self._shutdown:
                return
            if len(self._queue) >= self.max_queue_size:
                self.dropped += 1
                if self.dropped == 1 or self.dropped % 1000 == 0:
                    logger.warning("sdk.queue_full", dropped=self.dropped)
                return
            self._queue.append(span)
            if len(self._queue) >= self.max_export_batch_size:
                self._condition.notify()

    def _drain(self) -> None:
        with self._export_lock:
            while True:
                with self._condition:
                    if not self._queue:
                        return
                    count = min(self.max_export_batch_size, len(self._queue))
                    spans = [self._queue.popleft() for _ in range(count)]
                _deliver(self.consumer, spans)

    def _run(self) -> None:
        while True:
            with self._condition:
                if self._shutdown:
                    return
                if len(self._queue) < self.max_export_batch_size:
                    self._condition.wait(self.schedule_delay_ms / 1000)
                if self._shutdown:
                    return
            self._drain()

    def force_flush(self) -> None:
        self._drain()

    def shutdown(self) -> None:
        with self._condition:
            if self._shutdown:
                return
            self._shutdown = True
            self._condition.notify_all()
        self._worker.join()
        self._drain()
