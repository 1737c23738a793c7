"""
Composite propagator and the process-wide default propagator.
"""

import threading
from typing import Callable

from .b3 import B3Propagator
from .baggage import W3CBaggagePropagator
from .base import Carrier, PropagationContext, TextMapPropagator
from .tracecontext import W3CTraceContextPropagator

__all__ = [
    "AVAILABLE_PROPAGATORS",
    "CompositePropagator",
    "create_propagator",
    "get_global_propagator",
    "set_global_propagator",
]


class CompositePropagator(TextMapPropagator):
    """Runs several propagators as one.

    ``inject`` writes with every propagator. ``extract`` keeps the first valid
    span context found (in propagator order) and merges baggage from all of
    them.
    """

    name = "composite"

    def __init__(self, propagators: list[TextMapPropagator]) -> None:
        self.propagators = list(propagators)

    def extract(
        self, carrier: Carrier, context: PropagationContext | None = None
    ) -> PropagationContext:
        context = context or PropagationContext()
        for propagator in self.propagators:
            found = propagator.extract(carrier, PropagationContext())
            if found.has_span_context and not context.has_span_context:
                context.span_context = found.span_context
            if found.baggage:
                context.baggage = {**context.baggage, **found.baggage}
        return context

    def inject(self, carrier: Carrier, context: PropagationContext) -> None:
        for propagator in self.propagators:
            propagator.inject(carrier, context)

    @property
    def fields(self) -> set[str]:
        result: set[str] = set()
        for propagator in self.propagators:
            result |= propagator.fields
        return result


AVAILABLE_PROPAGATORS: dict[str, Callable[[], TextMapPropagator]] = {
    "tracecontext": W3CTraceContextPropagator,
    "baggage": W3CBaggagePropagator,
    "b3": lambda: B3Propagator(single_header=True),
    "b3multi": lambda: B3Propagator(single_header=False),
}


def create_propagator(names: list[str] | str) -> CompositePropagator:
    """Build a composite propagator from names (``OTEL_PROPAGATORS`` style).

    Args:
        names: List of names or a comma-separated string, e.g.
            ``"tracecontext,baggage"``.

    Raises:
        ValueError: If a name is unknown.
    """
    if isinstance(names, str):
        names = [n.strip() for n in names.split(",") if n.strip()]

    propagators: list[TextMapPropagator] = []
    for name in names:
        factory = AVAILABLE_PROPAGATORS.get(name.lower())
        if factory is None:
            available = ", ".join(sorted(AVAILABLE_PROPAGATORS))
            raise ValueError(f"Unknown propagator '{name}'. Available: {available}")
        propagators.append(factory())
    return CompositePropagator(propagators)


_lock = threading.Lock()
_global_propagator: TextMapPropagator = create_propagator(["tracecontext", "baggage"])


def get_global_propagator() -> TextMapPropagator:
    return _global_propagator


def set_global_propagator(propagator: TextMapPropagator) -> None:
    global _global_propagator
    with _lock:
        _global_propagator = propagator
