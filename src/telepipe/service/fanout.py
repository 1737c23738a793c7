"""
Fan-out and traced consumers used to wire pipelines together.
"""

from typing import Any

import structlog

from ..components.base import Consumer, ConsumerRefusedError
from ..model.types import TelemetryBatch

logger = structlog.get_logger()


class FanOutConsumer:
    """Delivers each batch to every consumer.

    A failing consumer does not stop the others. After all of them ran, the
    first ``ConsumerRefusedError`` is re-raised so the sender can retry;
    other errors are logged and counted in ``errors``.
    """

    def __init__(self, consumers: list[Consumer], name: str = "") -> None:
        self.consumers = list(consumers)
        self.name = name
        self.errors = 0
        self.log = logger.bind(fanout=name)

    def __repr__(self) -> str:
        return f"FanOutConsumer({self.name!r}, {len(self.consumers)} consumers)"

    def consume(self, batch: TelemetryBatch) -> None:
        refused: ConsumerRefusedError | None = None
        for consumer in self.consumers:
            try:
                consumer.consume(batch)
            except ConsumerRefusedError as e:
                if refused is None:
                    refused = e
            except Exception as e:
                self.errors += 1
                self.log.error(
                    "fanout.consumer_failed",
                    consumer=repr(consumer),
                    items=len(batch),
                    error=str(e),
                    error_type=type(e).__name__,
                )
        if refused is not None:
            raise refused


class TracedPipelineEntry:
    """Wraps the first consumer of a pipeline in a ``telepipe.pipeline.consume`` span."""

    def __init__(self, pipeline_id: str, consumer: Consumer, tracer: Any) -> None:
        self.pipeline_id = pipeline_id
        self.consumer = consumer
        self.tracer = tracer

    def __repr__(self) -> str:
        return f"pipeline({self.pipeline_id})"

    def consume(self, batch: TelemetryBatch) -> None:
        with self.tracer.trace_consume(self.pipeline_id, batch.signal.value, len(batch)):
            self.consumer.consume(batch)


class TracedExporter:
    """Wraps an exporter (or connector) in a ``telepipe.export`` span."""

    def __init__(self, component: Any, tracer: Any) -> None:
        self.component = component
        self.tracer = tracer

    def __repr__(self) -> str:
        return repr(self.component)

    def consume(self, batch: TelemetryBatch) -> None:
        with self.tracer.trace_export(str(self.component.id), batch.signal.value, len(batch)):
            self.component.consume(batch)
