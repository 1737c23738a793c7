"""
Filter processor - drops items matching any configured rule.

Rules:
    span_names      regexes matched (search) against span names
    metric_names    regexes matched against metric point names
    attributes      exact key/value pairs; an item matches if it has any of
                    them (item attributes first, then resource attributes)
    min_severity    logs with a severity number below it are dropped
                    (records with severity 0, "unspecified", are kept)
"""

import re
from typing import Any, ClassVar

from pydantic import BaseModel, Field, field_validator

from ..model.types import LogRecord, MetricPoint, Span, TelemetryBatch
from .base import Processor

_MISSING = object()


class FilterSettings(BaseModel):
    span_names: list[str] = Field(default_factory=list)
    metric_names: list[str] = Field(default_factory=list)
    attributes: dict[str, Any] = Field(default_factory=dict)
    min_severity: int = Field(default=0, ge=0, le=24)

    model_config = {"extra": "forbid"}

    @field_validator("span_names", "metric_names")
    @classmethod
    def check_patterns(cls, value: list[str]) -> list[str]:
        for pattern in value:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ValueError(f"invalid pattern '{pattern}': {e}") from e
        return value


class FilterProcessor(Processor):
    type_name: ClassVar[str] = "filter"
    settings_model: ClassVar[type[BaseModel]] = FilterSettings

    def __init__(self, component_id, settings: FilterSettings) -> None:
        super().__init__(component_id, settings)
        self._span_names = [re.compile(p) for p in settings.span_names]
        self._metric_names = [re.compile(p) for p in settings.metric_names]

    def _matches_attributes(self, item: Any) -> bool:
        for key, expected in self.settings.attributes.items():
            if item.attributes.get(key, _MISSING) == expected:
                return True
            if item.resource.attributes.get(key, _MISSING) == expected:
                return True
        return False

    def should_drop(self, item: Any) -> bool:
        if isinstance(item, Span):
            if any(p.search(item.name) for p in self._span_names):
                return True
        elif isinstance(item, MetricPoint):
            if any(p.search(item.name) for p in self._metric_names):
                return True
        elif isinstance(item, LogRecord):
            if item.severity_number and item.severity_number < self.settings.min_severity:
                return True
        return self._matches_attributes(item)

    def process(self, batch: TelemetryBatch) -> TelemetryBatch:
        return batch.with_items(item for item in batch if not self.should_drop(item))

