"""
Pipeline graph - validates ``service.pipelines`` and wires components.

Wiring per pipeline::

    receivers ─▶ fan-out ─▶ processor 1 ─▶ … ─▶ processor N ─▶ fan-out ─▶ exporters

Receivers, exporters and connectors are single instances shared by every
pipeline that lists them. Processors are instantiated once per pipeline.
A connector appears as an exporter in one pipeline and as a receiver in
another.

Validation collects every problem before failing, so a broken config is
reported in one go.
"""

import heapq
from dataclasses import dataclass, field
from typing import Any

import structlog

from ..components.base import Component, ComponentKind, ConfigError, Consumer
from ..components.registry import ComponentRegistry
from ..config.schema import CollectorConfig
from ..connectors.base import Connector
from ..exporters.base import Exporter
from ..model.types import Signal
from ..processors.base import Processor
from ..receivers.base import Receiver
from .fanout import FanOutConsumer, TracedExporter, TracedPipelineEntry

logger = structlog.get_logger()

__all__ = ["Graph", "Pipeline", "PipelineValidationError", "build_graph"]

_RANK = {
    ComponentKind.RECEIVER: 0,
    ComponentKind.PROCESSOR: 1,
    ComponentKind.CONNECTOR: 2,
    ComponentKind.EXPORTER: 3,
}


class PipelineValidationError(ConfigError):
    """The pipeline graph is invalid. ``problems`` lists every issue found."""

    def __init__(self, problems: list[str]) -> None:
        self.problems = list(problems)
        lines = "\n".join(f"  - {p}" for p in self.problems)
        super().__init__(f"invalid pipeline configuration ({len(self.problems)} problem(s)):\n{lines}")


@dataclass
class Pipeline:
    id: str
    signal: Signal
    receivers: list[str]
    processors: list[Processor]
    exporters: list[str]
    entry: Consumer | None = None

    @property
    def processor_ids(self) -> list[str]:
        return [str(p.id) for p in self.processors]


@dataclass
class Graph:
    receivers: dict[str, Receiver] = field(default_factory=dict)
    exporters: dict[str, Exporter] = field(default_factory=dict)
    connectors: dict[str, Connector] = field(default_factory=dict)
    pipelines: dict[str, Pipeline] = field(default_factory=dict)
    edges: dict[int, list[Component]] = field(default_factory=dict)

    def components(self) -> list[Component]:
        result: list[Component] = [*self.receivers.values()]
        for pipeline in self.pipelines.values():
            result.extend(pipeline.processors)
        result.extend(self.connectors.values())
        result.extend(self.exporters.values())
        return result

    def shutdown_order(self) -> list[Component]:
        """Components in data-flow order: a component comes before every
        component it feeds, so draining one never pushes into a stopped one.
        """
        nodes = self.components()
        indegree = {id(c): 0 for c in nodes}
        for targets in self.edges.values():
            for target in targets:
                indegree[id(target)] += 1

        heap: list[tuple[int, int, Component]] = []
        order_of = {id(c): i for i, c in enumerate(nodes)}
        for c in nodes:
            if indegree[id(c)] == 0:
                heapq.heappush(heap, (_RANK[c.kind], order_of[id(c)], c))

        ordered: list[Component] = []
        while heap:
            _, _, component = heapq.heappop(heap)
            ordered.append(component)
            for target in self.edges.get(id(component), []):
                indegree[id(target)] -= 1
                if indegree[id(target)] == 0:
                    heapq.heappush(heap, (_RANK[target.kind], order_of[id(target)], target))
        return ordered

    def start_order(self) -> list[Component]:
        """Reverse of ``shutdown_order``: exporters first, receivers last."""
        return list(reversed(self.shutdown_order()))


class _Builder:
    def __init__(self, config: CollectorConfig, registry: ComponentRegistry) -> None:
        self.config = config
        self.registry = registry
        self.problems: list[str] = []
        self.graph = Graph()
        self._failed: set[tuple[str, str]] = set()
        self.connector_inputs: dict[str, set[Signal]] = {}
        self.connector_outputs: dict[str, set[Signal]] = {}

    def problem(self, message: str) -> None:
        if message not in self.problems:
            self.problems.append(message)

    def _create(self, kind: ComponentKind, component_id: str) -> Component | None:
        if (kind.value, component_id) in self._failed:
            return None
        try:
            return self.registry.create(kind, component_id, self.config.section(kind.value)[component_id])
        except ConfigError as e:
            self._failed.add((kind.value, component_id))
            self.problem(str(e))
            return None

    def shared(self, role: ComponentKind, component_id: str, pipeline_id: str) -> Component | None:
        """Resolve a receiver/exporter id, which may name a connector."""
        if component_id in self.config.section(role.value):
            kind, store = role, (
                self.graph.receivers if role == ComponentKind.RECEIVER else self.graph.exporters
            )
        elif component_id in self.config.connectors:
            kind, store = ComponentKind.CONNECTOR, self.graph.connectors
        else:
            self.problem(
                f"pipeline '{pipeline_id}': {role.value} '{component_id}' is not configured"
            )
            return None
        if component_id not in store:
            component = self._create(kind, component_id)
            if component is None:
                return None
            store[component_id] = component
        return store[component_id]

    def check_signal(self, component: Component, signal: Signal, pipeline_id: str) -> None:
        if signal not in component.supported_signals:
            self.problem(
                f"pipeline '{pipeline_id}': {component.kind.value} '{component.id}' "
                f"does not support {signal.value}"
            )

    def add_pipeline(self, pipeline_id: str, cfg: Any) -> None:
        signal = Signal(pipeline_id.partition("/")[0])
        if not cfg.receivers:
            self.problem(f"pipeline '{pipeline_id}': at least one receiver is required")
        if not cfg.exporters:
            self.problem(f"pipeline '{pipeline_id}': at least one exporter is required")

        for rid in cfg.receivers:
            component = self.shared(ComponentKind.RECEIVER, rid, pipeline_id)
            if isinstance(component, Connector):
                self.connector_outputs.setdefault(rid, set()).add(signal)
            elif component is not None:
                self.check_signal(component, signal, pipeline_id)

        processors: list[Processor] = []
        seen: set[str] = set()
        for pid in cfg.processors:
            if pid in seen:
                self.problem(f"pipeline '{pipeline_id}': processor '{pid}' is listed twice")
                continue
            seen.add(pid)
            if pid not in self.config.processors:
                self.problem(f"pipeline '{pipeline_id}': processor '{pid}' is not configured")
                continue
            processor = self._create(ComponentKind.PROCESSOR, pid)
            if processor is None:
                continue
            self.check_signal(processor, signal, pipeline_id)
            processors.append(processor)

        for eid in cfg.exporters:
            component = self.shared(ComponentKind.EXPORTER, eid, pipeline_id)
            if isinstance(component, Connector):
                self.connector_inputs.setdefault(eid, set()).add(signal)
            elif component is not None:
                self.check_signal(component, signal, pipeline_id)

        self.graph.pipelines[pipeline_id] = Pipeline(
            id=pipeline_id,
            signal=signal,
            receivers=list(cfg.receivers),
            processors=processors,
            exporters=list(cfg.exporters),
        )

    def check_connectors(self) -> None:
        for cid, connector in self.graph.connectors.items():
            inputs = self.connector_inputs.get(cid, set())
            outputs = self.connector_outputs.get(cid, set())
            if not inputs:
                self.problem(f"connector '{cid}' is used as a receiver but not as an exporter")
                continue
            if not outputs:
                self.problem(f"connector '{cid}' is used as an exporter but not as a receiver")
                continue
            for s_in in sorted(inputs):
                if not any(connector.supports(s_in, s_out) for s_out in outputs):
                    self.problem(
                        f"connector '{cid}' cannot connect {s_in.value} to "
                        f"{', '.join(sorted(s.value for s in outputs))}"
                    )
            for s_out in sorted(outputs):
                if not any(connector.supports(s_in, s_out) for s_in in inputs):
                    self.problem(
                        f"connector '{cid}' cannot produce {s_out.value} from "
                        f"{', '.join(sorted(s.value for s in inputs))}"
                    )

    def check_cycles(self) -> None:
        pipelines = self.graph.pipelines
        downstream: dict[str, list[str]] = {pid: [] for pid in pipelines}
        for a, pa in pipelines.items():
            for b, pb in pipelines.items():
                for cid in set(pa.exporters) & set(pb.receivers):
                    connector = self.graph.connectors.get(cid)
                    if connector is not None and connector.supports(pa.signal, pb.signal):
                        downstream[a].append(b)

        state: dict[str, int] = {}
        path: list[str] = []

        def visit(pid: str) -> bool:
            state[pid] = 1
            path.append(pid)
            for nxt in downstream[pid]:
                if state.get(nxt) == 1:
                    cycle = path[path.index(nxt):] + [nxt]
                    self.problem(f"pipelines form a cycle through connectors: {' -> '.join(cycle)}")
                    return True
                if nxt not in state and visit(nxt):
                    return True
            path.pop()
            state[pid] = 2
            return False

        for pid in pipelines:
            if pid not in state and visit(pid):
                return

    def wire(self, tracer: Any) -> None:
        graph = self.graph

        def target(component_id: str) -> Component:
            return graph.exporters.get(component_id) or graph.connectors[component_id]

        sources: dict[str, dict[Signal, list[Consumer]]] = {}
        for pipeline in graph.pipelines.values():
            exporters = [target(eid) for eid in pipeline.exporters]
            consumers: list[Consumer] = [
                TracedExporter(c, tracer) if tracer is not None else c for c in exporters
            ]
            nxt: Consumer = (
                consumers[0]
                if len(consumers) == 1
                else FanOutConsumer(consumers, f"{pipeline.id}/exporters")
            )
            for processor in reversed(pipeline.processors):
                processor.set_next(nxt)
                nxt = processor
            if tracer is not None:
                nxt = TracedPipelineEntry(pipeline.id, nxt, tracer)
            pipeline.entry = nxt

            first: list[Component] = pipeline.processors[:1] or exporters
            for a, b in zip(pipeline.processors, pipeline.processors[1:]):
                graph.edges.setdefault(id(a), []).append(b)
            if pipeline.processors:
                graph.edges.setdefault(id(pipeline.processors[-1]), []).extend(exporters)

            for rid in pipeline.receivers:
                source = graph.receivers.get(rid) or graph.connectors[rid]
                graph.edges.setdefault(id(source), []).extend(first)
                sources.setdefault(rid, {}).setdefault(pipeline.signal, []).append(nxt)

        for rid, by_signal in sources.items():
            source = graph.receivers.get(rid) or graph.connectors[rid]
            for signal, entries in by_signal.items():
                consumer = (
                    entries[0] if len(entries) == 1 else FanOutConsumer(entries, f"{rid}/{signal.value}")
                )
                source.set_consumer(signal, consumer)


def build_graph(
    config: CollectorConfig,
    registry: ComponentRegistry,
    tracer: Any = None,
) -> Graph:
    """Validate ``config.service.pipelines`` and build the wired graph.

    Args:
        config: Validated collector configuration.
        registry: Where component types are looked up.
        tracer: Optional self-tracer; when given, pipeline entries and
            exporters are wrapped in spans.

    Raises:
        PipelineValidationError: Listing every problem found.
    """
    builder = _Builder(config, registry)
    if not config.service.pipelines:
        builder.problem("service.pipelines: at least one pipeline is required")
    for pipeline_id, pipeline_cfg in config.service.pipelines.items():
        builder.add_pipeline(pipeline_id, pipeline_cfg)
    builder.check_connectors()
    if not builder.problems:
        builder.check_cycles()
    if builder.problems:
        raise PipelineValidationError(builder.problems)

    builder.wire(tracer)
    graph = builder.graph

    for section, used in (
        ("receivers", set(graph.receivers)),
        ("processors", {pid for p in graph.pipelines.values() for pid in p.processor_ids}),
        ("exporters", set(graph.exporters)),
        ("connectors", set(graph.connectors)),
    ):
        unused = sorted(set(getattr(config, section)) - used)
        if unused:
            logger.info("service.unused_components", section=section, ids=unused)
    return graph
