"""
Head samplers - decide at span start whether a trace is recorded.

Names accepted by ``create_sampler`` mirror ``OTEL_TRACES_SAMPLER``:
    always_on, always_off, traceidratio,
    parentbased_always_on, parentbased_always_off, parentbased_traceidratio
"""

from abc import ABC, abstractmethod

from ..model.types import SpanContext

__all__ = [
    "AlwaysOffSampler",
    "AlwaysOnSampler",
    "ParentBasedSampler",
    "Sampler",
    "TraceIdRatioSampler",
    "create_sampler",
]


class Sampler(ABC):
    @abstractmethod
    def should_sample(self, trace_id: str, name: str, parent: SpanContext | None = None) -> bool:
        """True if the new span (and so its trace) should be recorded."""

    @property
    def description(self) -> str:
        return type(self).__name__


class AlwaysOnSampler(Sampler):
    def should_sample(self, trace_id: str, name: str, parent: SpanContext | None = None) -> bool:
        return True


class AlwaysOffSampler(Sampler):
    def should_sample(self, trace_id: str, name: str, parent: SpanContext | None = None) -> bool:
        return False


class TraceIdRatioSampler(Sampler):
    """Samples ``ratio`` of the traces, deterministically by trace id.

    The lower 64 bits of the trace id are compared with ``ratio * 2**64``, so
    every service using the same ratio takes the same decision.
    """

    def __init__(self, ratio: float) -> None:
        if not 0.0 <= ratio <= 1.0:
            raise ValueError(f"ratio must be in [0, 1], got {ratio}")
        self.ratio = ratio
        self.bound = round(ratio * (1 << 64))

    def should_sample(self, trace_id: str, name: str, parent: SpanContext | None = None) -> bool:
        return int(trace_id[16:], 16) < self.bound

    @property
    def description(self) -> str:
        return f"TraceIdRatioBased{{{self.ratio}}}"


class ParentBasedSampler(Sampler):
    """Follows a valid parent's sampled flag; ``root`` decides for roots."""

    def __init__(self, root: Sampler) -> None:
        self.root = root

    def should_sample(self, trace_id: str, name: str, parent: SpanContext | None = None) -> bool:
        if parent is not None and parent.is_valid:
            return parent.sampled
        return self.root.should_sample(trace_id, name, parent)

    @property
    def description(self) -> str:
        return f"ParentBased{{root={self.root.description}}}"


def _ratio(arg: str | float | None) -> float:
    if arg is None or arg == "":
        return 1.0
    try:
        return float(arg)
    except (TypeError, ValueError):
        raise ValueError(f"invalid sampler ratio '{arg}'") from None


def create_sampler(name: str, arg: str | float | None = None) -> Sampler:
    """Build a sampler from its ``OTEL_TRACES_SAMPLER`` name.

    Raises:
        ValueError: On an unknown name or an invalid ratio.
    """
    match name.strip().lower():
        case "always_on":
            return AlwaysOnSampler()
        case "always_off":
            return AlwaysOffSampler()
        case "traceidratio":
            return TraceIdRatioSampler(_ratio(arg))
        case "parentbased_always_on":
            return ParentBasedSampler(AlwaysOnSampler())
        case "parentbased_always_off":
            return ParentBasedSampler(AlwaysOffSampler())
        case "parentbased_traceidratio":
            return ParentBasedSampler(TraceIdRatioSampler(_ratio(arg)))
    raise ValueError(f"unknown sampler '{name}'")
