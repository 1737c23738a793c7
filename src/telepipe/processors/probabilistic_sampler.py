"""
Probabilistic sampler - keeps a fixed percentage of traces.

The decision hashes the trace id (FNV-1a 32 over the 4-byte seed followed by
the 16 trace id bytes), so every span of a trace gets the same decision in
every collector sharing the same ``hash_seed``.

Logs carrying a trace id follow their trace's decision. Logs without one are
always kept. Metrics are not sampled.
"""

from typing import ClassVar

from pydantic import BaseModel, Field

from ..model.types import LogRecord, Signal, Span, TelemetryBatch
from .base import Processor

_FNV_OFFSET = 0x811C9DC5
_FNV_PRIME = 0x01000193


def fnv1a_32(data: bytes) -> int:
    value = _FNV_OFFSET
    for byte in data:
        value ^= byte
        value = (value * _FNV_PRIME) & 0xFFFFFFFF
    return value


def trace_hash(trace_id: str, seed: int) -> int:
    return fnv1a_32(seed.to_bytes(4, "big") + bytes.fromhex(trace_id))


class ProbabilisticSamplerSettings(BaseModel):
    sampling_percentage: float = Field(default=100.0, ge=0, le=100)
    hash_seed: int = Field(default=0, ge=0, le=0xFFFFFFFF)

    model_config = {"extra": "forbid"}


class ProbabilisticSamplerProcessor(Processor):
    type_name: ClassVar[str] = "probabilistic_sampler"
    settings_model: ClassVar[type[BaseModel]] = ProbabilisticSamplerSettings
    supported_signals: ClassVar[frozenset[Signal]] = frozenset({Signal.TRACES, Signal.LOGS})

    def __init__(self, component_id, settings: ProbabilisticSamplerSettings) -> None:
        super().__init__(component_id, settings)
        self._threshold = settings.sampling_percentage * 100

    def keep_trace(self, trace_id: str) -> bool:
        return trace_hash(trace_id, self.settings.hash_seed) % 10000 < self._threshold

    def process(self, batch: TelemetryBatch) -> TelemetryBatch:
        kept = []
        for item in batch:
            if isinstance(item, Span):
                if self.keep_trace(item.trace_id):
                    kept.append(item)
            elif isinstance(item, LogRecord) and item.trace_id:
                if self.keep_trace(item.trace_id):
                    kept.append(item)
            else:
                kept.append(item)
        return batch.with_items(kept)
