"""
Count connector - counts items of any signal.

Emits a cumulative monotonic ``<signal>.count`` sum (``traces.count``,
``metrics.count``, ``logs.count``) per distinct combination of the configured
``attributes`` keys. Keys are looked up on the item, then on its resource;
absent keys are left out of the series.

At most ``dimensions_cache_size`` series are tracked per signal; items that
would open a new one beyond that are counted in a series carrying only the
``otel.metric.overflow=true`` attribute.
"""

import threading
from typing import Any, ClassVar

from pydantic import BaseModel, Field

from ..model.types import InstrumentationScope, MetricPoint, Signal, TelemetryBatch, now_ns
from .base import Connector

SCOPE = InstrumentationScope(name="telepipe/connector/count")
OVERFLOW_ATTRIBUTE = "otel.metric.overflow"


class CountSettings(BaseModel):
    attributes: list[str] = Field(default_factory=list)
    dimensions_cache_size: int = Field(default=1000, ge=1)

    model_config = {"extra": "forbid"}


class CountConnector(Connector):
    type_name: ClassVar[str] = "count"
    settings_model: ClassVar[type[BaseModel]] = CountSettings
    supported_pairs: ClassVar[frozenset[tuple[Signal, Signal]]] = frozenset(
        (signal, Signal.METRICS) for signal in Signal
    )

    def __init__(self, component_id, settings: CountSettings) -> None:
        super().__init__(component_id, settings)
        self._lock = threading.Lock()
        # (signal, attribute key) -> [attributes, count, start_time_ns]
        self._totals: dict[tuple, list] = {}
        self._series_per_signal: dict[Signal, int] = {}

    def group_attributes(self, item: Any) -> dict[str, Any]:
        attributes = {}
        for key in self.settings.attributes:
            value = item.attributes.get(key, item.resource.attributes.get(key))
            if value is not None:
                attributes[key] = value
        return attributes

    def _new_total(self, signal: Signal, key: tuple, attributes: dict, now: int) -> tuple[tuple, list]:
        tracked = self._series_per_signal.get(signal, 0)
        if tracked < self.settings.dimensions_cache_size:
            self._series_per_signal[signal] = tracked + 1
        else:
            self.counters.add("overflow", 1)
            key = (signal, None)
            if key in self._totals:
                return key, self._totals[key]
            self.log.warning(
                "connector.count.overflow", signal=signal.value, limit=self.settings.dimensions_cache_size
            )
            attributes = {OVERFLOW_ATTRIBUTE: True}
        total = self._totals[key] = [attributes, 0, now]
        return key, total

    def connect(self, batch: TelemetryBatch) -> None:
        now = now_ns()
        touched: dict[tuple, list] = {}
        with self._lock:
            for item in batch:
                attributes = self.group_attributes(item)
                key = (batch.signal, tuple(sorted((k, repr(v)) for k, v in attributes.items())))
                total = self._totals.get(key)
                if total is None:
                    key, total = self._new_total(batch.signal, key, attributes, now)
                total[1] += 1
                touched[key] = total
            points = [
                MetricPoint(
                    name=f"{batch.signal.value}.count",
                    kind="sum",
                    monotonic=True,
                    value=count,
                    attributes=dict(attributes),
                    start_time_ns=start,
                    time_ns=now,
                    scope=SCOPE,
                )
                for attributes, count, start in touched.values()
            ]
        self.emit(TelemetryBatch(Signal.METRICS, points))
