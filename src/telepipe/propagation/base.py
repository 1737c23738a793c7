"""
Propagation primitives: the extracted context and the propagator interface.

A carrier is any mutable mapping of header name to value (HTTP headers,
message metadata...). Header names are matched case-insensitively on extract
and written exactly as each propagator spells them on inject.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, MutableMapping

from ..model.types import SpanContext

__all__ = [
    "Carrier",
    "PropagationContext",
    "TextMapPropagator",
    "get_header",
]

Carrier = MutableMapping[str, Any]


@dataclass
class PropagationContext:
    """What travels between services: the remote span context and baggage."""

    span_context: SpanContext | None = None
    baggage: dict[str, str] = field(default_factory=dict)

    @property
    def has_span_context(self) -> bool:
        return self.span_context is not None and self.span_context.is_valid


def get_header(carrier: Carrier, name: str) -> str | None:
    """Case-insensitive header lookup.

    List values (as some frameworks expose repeated headers) are joined with
    commas, which is how HTTP folds repeated header lines.
    """
    wanted = name.lower()
    for key, value in carrier.items():
        if key.lower() != wanted:
            continue
        if isinstance(value, (list, tuple)):
            return ",".join(str(v) for v in value)
        return None if value is None else str(value)
    return None


class TextMapPropagator(ABC):
    """Reads and writes context to string key/value carriers."""

    name: str = ""

    @abstractmethod
    def extract(
        self, carrier: Carrier, context: PropagationContext | None = None
    ) -> PropagationContext:
        """Return ``context`` (or a new one) updated with what the carrier holds.

        Invalid or missing headers leave the context unchanged; they are
        never an error.
        """

    @abstractmethod
    def inject(self, carrier: Carrier, context: PropagationContext) -> None:
        """Write ``context`` into the carrier. No-op when there is nothing to send."""

    @property
    def fields(self) -> set[str]:
        """Header names this propagator reads or writes."""
        return set()
