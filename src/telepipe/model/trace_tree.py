"""
Trace assembly - turns a flat list of spans into parent/child trees.

Spans arrive at a collector in any order and possibly from several services.
A trace is reconstructed by linking each span to its parent via
``parent_span_id``. Spans whose parent never arrived are kept as extra roots
flagged ``orphan`` so that partial traces are still displayable.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable

from .types import Span, StatusCode

__all__ = [
    "TraceNode",
    "TraceSummary",
    "build_trace_tree",
    "group_by_trace",
    "render_tree",
    "summarize_trace",
]


@dataclass
class TraceNode:
    """A span and its children, ordered by start time."""

    span: Span
    children: list["TraceNode"] = field(default_factory=list)
    orphan: bool = False

    def walk(self, depth: int = 0) -> Iterable[tuple[int, "TraceNode"]]:
        """Depth-first iteration yielding ``(depth, node)``."""
        yield depth, self
        for child in self.children:
            yield from child.walk(depth + 1)


@dataclass
class TraceSummary:
    """Aggregate view over every span of one trace."""

    trace_id: str
    root_name: str
    service_names: list[str]
    span_count: int
    start_time_ns: int
    end_time_ns: int
    error_count: int

    @property
    def duration_ns(self) -> int:
        return max(0, self.end_time_ns - self.start_time_ns)


def group_by_trace(spans: Iterable[Span]) -> dict[str, list[Span]]:
    """Group spans by trace id, preserving arrival order inside each group."""
    grouped: dict[str, list[Span]] = defaultdict(list)
    for span in spans:
        grouped[span.trace_id].append(span)
    return dict(grouped)


def build_trace_tree(spans: Iterable[Span]) -> list[TraceNode]:
    """Build the span tree(s) of a single trace.

    Args:
        spans: Spans sharing one trace id. Duplicated span ids keep the
            first occurrence.

    Returns:
        Root nodes sorted by start time. True roots come first, orphans
        (parent missing) after them.

    Raises:
        ValueError: If the spans belong to more than one trace.
    """
    nodes: dict[str, TraceNode] = {}
    trace_ids: set[str] = set()
    for span in spans:
        trace_ids.add(span.trace_id)
        nodes.setdefault(span.span_id, TraceNode(span=span))

    if len(trace_ids) > 1:
        raise ValueError(
            f"build_trace_tree expects spans of one trace, got {len(trace_ids)}"
        )

    parent_of = {
        span_id: node.span.parent_span_id
        for span_id, node in nodes.items()
        if node.span.parent_span_id in nodes
    }

    roots: list[TraceNode] = []
    for span_id, node in nodes.items():
        parent_id = node.span.parent_span_id
        if parent_id is None:
            roots.append(node)
        elif span_id in parent_of and not _in_cycle(span_id, parent_of):
            nodes[parent_id].children.append(node)
        else:
            node.orphan = True
            roots.append(node)

    for node in nodes.values():
        node.children.sort(key=lambda n: n.span.start_time_ns)

    roots.sort(key=lambda n: (n.orphan, n.span.start_time_ns))
    return roots


def _in_cycle(span_id: str, parent_of: dict[str, str]) -> bool:
    """True if following parents from ``span_id`` comes back to it."""
    seen: set[str] = set()
    current = parent_of.get(span_id)
    while current is not None and current not in seen:
        if current == span_id:
            return True
        seen.add(current)
        current = parent_of.get(current)
    return current == span_id


def summarize_trace(spans: list[Span]) -> TraceSummary:
    """Compute a ``TraceSummary`` for the spans of one trace."""
    if not spans:
        raise ValueError("cannot summarize an empty trace")

    roots = build_trace_tree(spans)
    services = sorted({span.resource.service_name for span in spans})
    ended = [s.end_time_ns for s in spans if s.end_time_ns]

    return TraceSummary(
        trace_id=spans[0].trace_id,
        root_name=roots[0].span.name,
        service_names=services,
        span_count=len({s.span_id for s in spans}),
        start_time_ns=min(s.start_time_ns for s in spans),
        end_time_ns=max(ended) if ended else 0,
        error_count=sum(1 for s in spans if s.status.code == StatusCode.ERROR),
    )


def render_tree(roots: list[TraceNode]) -> str:
    """Render trace trees as indented text.

    Example:
        GET /checkout [frontend] 120.5ms
          charge [payments] 80.1ms ERROR
          ? reserve [inventory] 12.0ms   (orphan)
    """
    lines: list[str] = []
    for root in roots:
        for depth, node in root.walk():
            span = node.span
            marker = "? " if node.orphan else ""
            status = " ERROR" if span.status.code == StatusCode.ERROR else ""
            duration_ms = span.duration_ns / 1_000_000
            lines.append(
                f"{'  ' * depth}{marker}{span.name} "
                f"[{span.resource.service_name}] {duration_ms:.1f}ms{status}"
            )
    return "\n".join(lines)
