"""
Collector - owns the pipeline graph and its lifecycle.

Start order is the reverse of the data flow (exporters first, receivers
last) so no component sends into one that is not running yet. Shutdown
follows the data flow (receivers first, exporters last) so processors such
as ``batch`` can drain into exporters that are still up.
"""

import logging
from typing import Any

import structlog

from ..components.base import Component
from ..components.registry import ComponentRegistry, default_registry
from ..config.schema import CollectorConfig
from ..logging.human import HumanLog
from ..telemetry import NoopTracer
from .graph import Graph, build_graph
from .shutdown import GracefulShutdown

logger = structlog.get_logger()
_hlog = HumanLog(logging.getLogger("telepipe.service"))


class Collector:
    """A running set of pipelines built from a ``CollectorConfig``.

    Example:
        collector = Collector(load_config("collector.yaml"))
        collector.run(GracefulShutdown())

    Raises (on construction):
        PipelineValidationError: If the pipeline graph is invalid.
        ConfigError: If a component section does not validate.
    """

    def __init__(
        self,
        config: CollectorConfig,
        registry: ComponentRegistry | None = None,
        tracer: Any = None,
    ) -> None:
        self.config = config
        self.registry = registry or default_registry()
        self.tracer = tracer or NoopTracer()
        self.graph: Graph = build_graph(
            config,
            self.registry,
            tracer=self.tracer if getattr(self.tracer, "enabled", False) else None,
        )
        self._started: list[Component] = []
        self.log = logger.bind(component="collector")

    @property
    def running(self) -> bool:
        return bool(self._started)

    def component(self, kind: str, component_id: str) -> Component:
        """Return a shared component (receiver, exporter or connector) by id."""
        store = getattr(self.graph, f"{kind}s")
        return store[component_id]

    def start(self) -> None:
        """Start every component. On failure, stop the ones already started.

        Raises:
            Exception: Whatever the failing component raised.
        """
        if self._started:
            return
        for pipeline in self.graph.pipelines.values():
            _hlog.pipeline_built(
                pipeline.id, pipeline.receivers, pipeline.processor_ids, pipeline.exporters
            )
        for component in self.graph.start_order():
            try:
                component.start()
            except Exception as e:
                self.log.error(
                    "collector.start_failed",
                    failed=str(component.id),
                    kind=component.kind.value,
                    error=str(e),
                )
                self._stop_started()
                raise
            self._started.append(component)
            self.log.debug("collector.component_started", id=str(component.id), kind=component.kind.value)

        components = len(self._started)
        self.log.info("collector.started", pipelines=len(self.graph.pipelines), components=components)
        _hlog.collector_running(len(self.graph.pipelines), components)

    def _stop_started(self) -> None:
        while self._started:
            component = self._started.pop()
            try:
                component.shutdown()
            except Exception as e:
                self.log.error(
                    "collector.shutdown_failed",
                    failed=str(component.id),
                    kind=component.kind.value,
                    error=str(e),
                    error_type=type(e).__name__,
                )

    def shutdown(self) -> dict[str, dict[str, int]]:
        """Stop every started component in data-flow order.

        Returns:
            Final ``stats()``.
        """
        if not self._started:
            return self.stats()
        self._stop_started()
        stats = self.stats()
        self.log.info("collector.stopped", stats=stats)
        _hlog.collector_stopped(stats)
        return stats

    def run(self, shutdown: GracefulShutdown | None = None, poll_interval: float = 0.5) -> dict[str, dict[str, int]]:
        """Start, block until ``shutdown.should_stop``, then shut down.

        Returns:
            Final ``stats()``.
        """
        shutdown = shutdown or GracefulShutdown()
        self.start()
        try:
            while not shutdown.should_stop:
                shutdown.wait(poll_interval)
        finally:
            stats = self.shutdown()
        return stats

    def stats(self) -> dict[str, dict[str, int]]:
        """Counters of every component.

        Shared components are keyed ``<kind>/<id>``; processors, which exist
        once per pipeline, ``processor/<id>@<pipeline>``.
        """
        result: dict[str, dict[str, int]] = {}
        for rid, receiver in self.graph.receivers.items():
            result[f"receiver/{rid}"] = receiver.counters.snapshot()
        for pipeline in self.graph.pipelines.values():
            for processor in pipeline.processors:
                result[f"processor/{processor.id}@{pipeline.id}"] = processor.counters.snapshot()
        for cid, connector in self.graph.connectors.items():
            result[f"connector/{cid}"] = connector.counters.snapshot()
        for eid, exporter in self.graph.exporters.items():
            result[f"exporter/{eid}"] = exporter.counters.snapshot()
        return result

    def __enter__(self) -> "Collector":
        self.start()
        return self

    def __exit__(self, *exc: Any) -> None:
        self.shutdown()

