"""
Pydantic models for the collector configuration.

The file mirrors the OpenTelemetry Collector layout:

    receivers:   {<type>[/<name>]: settings}
    processors:  {<type>[/<name>]: settings}
    exporters:   {<type>[/<name>]: settings}
    connectors:  {<type>[/<name>]: settings}
    service:
      pipelines: {<signal>[/<name>]: {receivers, processors, exporters}}
      telemetry: self-tracing of the collector
    logging:     telepipe's own logs

Component settings are kept as raw dicts here. Each component validates its
own section with its settings model when it is created.
"""

from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

SIGNALS = ("traces", "metrics", "logs")


class PipelineConfig(BaseModel):
    """One pipeline: receivers → processors (in order) → exporters."""

    receivers: list[str] = Field(default_factory=list)
    processors: list[str] = Field(default_factory=list)
    exporters: list[str] = Field(default_factory=list)

    model_config = {"extra": "forbid"}


class TelemetryConfig(BaseModel):
    """Self-tracing of the collector via OpenTelemetry.

    When enabled, emits spans for pipeline consumption and exports.
    Requires the optional dependencies opentelemetry-api and
    opentelemetry-sdk (``pip install telepipe[telemetry]``).
    """

    enabled: bool = Field(
        default=False,
        description="If True, the collector traces its own data path.",
    )
    exporter: Literal["otlp", "console", "json-file"] = Field(
        default="console",
        description="Exporter type: otlp (gRPC), console (stderr), json-file.",
    )
    endpoint: str = Field(
        default="http://localhost:4317",
        description="Endpoint for the OTLP exporter.",
    )
    trace_file: str | None = Field(
        default=None,
        description="File path for the json-file exporter.",
    )

    model_config = {"extra": "forbid"}


class ServiceConfig(BaseModel):
    """Which components are wired together, and how the collector observes itself."""

    pipelines: dict[str, PipelineConfig] = Field(default_factory=dict)
    telemetry: TelemetryConfig = Field(default_factory=TelemetryConfig)

    model_config = {"extra": "forbid"}

    @field_validator("pipelines")
    @classmethod
    def check_pipeline_ids(cls, value: dict[str, PipelineConfig]) -> dict[str, PipelineConfig]:
        for pipeline_id in value:
            signal, _, name = pipeline_id.partition("/")
            if signal not in SIGNALS:
                raise ValueError(
                    f"pipeline '{pipeline_id}': signal must be one of {', '.join(SIGNALS)}"
                )
            if "/" in pipeline_id and not name:
                raise ValueError(f"pipeline '{pipeline_id}': empty name after '/'")
        return value


class LoggingConfig(BaseModel):
    """telepipe's own logging."""

    level: Literal["debug", "info", "human", "warn", "error"] = "human"
    file: Path | None = None
    verbose: int = 0

    model_config = {"extra": "forbid"}


class CollectorConfig(BaseModel):
    """Complete collector configuration.

    Root of the configuration tree and entry point for validation.
    """

    receivers: dict[str, dict[str, Any]] = Field(default_factory=dict)
    processors: dict[str, dict[str, Any]] = Field(default_factory=dict)
    exporters: dict[str, dict[str, Any]] = Field(default_factory=dict)
    connectors: dict[str, dict[str, Any]] = Field(default_factory=dict)
    service: ServiceConfig = Field(default_factory=ServiceConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"extra": "forbid"}

    @field_validator("receivers", "processors", "exporters", "connectors", mode="before")
    @classmethod
    def empty_sections_as_dicts(cls, value: Any) -> Any:
        """``batch:`` with no body in YAML means default settings."""
        if value is None:
            return {}
        if isinstance(value, dict):
            return {k: (v if v is not None else {}) for k, v in value.items()}
        return value

    def section(self, kind: str) -> dict[str, dict[str, Any]]:
        """Return the component section for ``receiver``/``processor``/... ."""
        return getattr(self, f"{kind}s")
