"""
Debug exporter - prints what reaches it.

Verbosity:
    basic     one summary line per batch
    normal    one line per item
    detailed  the full OTLP/JSON document, indented
"""

import json
import sys
import threading
from typing import ClassVar, Literal, TextIO

from pydantic import BaseModel

from ..model.types import LogRecord, MetricPoint, Span, TelemetryBatch
from ..otlp import encode
from .base import Exporter


class DebugSettings(BaseModel):
    verbosity: Literal["basic", "normal", "detailed"] = "basic"

    model_config = {"extra": "forbid"}


def describe_item(item) -> str:
    """One-line rendering of a span, log record or metric point."""
    if isinstance(item, Span):
        ms = item.duration_ns / 1_000_000
        status = f" status={item.status.code.value}" if item.status.code.value != "unset" else ""
        return (
            f"span {item.name} trace={item.trace_id} span={item.span_id} "
            f"kind={item.kind.value} {ms:.3f}ms{status}"
        )
    if isinstance(item, LogRecord):
        severity = item.severity_text or str(item.severity_number)
        return f"log [{severity}] {item.body}"
    if isinstance(item, MetricPoint):
        unit = f" {item.unit}" if item.unit else ""
        return f"metric {item.name} {item.kind}={item.value}{unit} {item.attributes}"
    return repr(item)


class DebugExporter(Exporter):
    type_name: ClassVar[str] = "debug"
    settings_model: ClassVar[type[BaseModel]] = DebugSettings

    def __init__(self, component_id, settings: DebugSettings, stream: TextIO | None = None) -> None:
        super().__init__(component_id, settings)
        self._stream = stream
        self._lock = threading.Lock()

    @property
    def stream(self) -> TextIO:
        return self._stream or sys.stdout

    def render(self, batch: TelemetryBatch) -> list[str]:
        lines = [f"{self.id}: {batch.signal.value} batch, {len(batch)} item(s)"]
        match self.settings.verbosity:
            case "normal":
                lines.extend(f"  {describe_item(item)}" for item in batch)
            case "detailed":
                lines.append(json.dumps(encode(batch), indent=2, ensure_ascii=False))
        return lines

    def export(self, batch: TelemetryBatch) -> None:
        text = "\n".join(self.render(batch)) + "\n"
        with self._lock:
            self.stream.write(text)
            self.stream.flush()
