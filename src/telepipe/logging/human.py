"""
Human Log - formatter and helper for collector progress logs.

Produces readable output so an operator can follow what the collector does
without technical noise.

Example:
    ─── telepipe · collector.yaml ───────────────────────

    pipeline traces: otlp → batch, attributes/env → debug, otlp_http
    pipeline metrics/spans: spanmetrics → debug
      ▸ receiver otlp listening on 0.0.0.0:4318
    ✓ collector running (2 pipelines, 6 components)

      exporter otlp_http: retry #2 in 4.0s (HTTP 503)

    ■ collector stopped
      otlp_http   sent=1200 failed=0
"""

import logging
import sys

from .levels import HUMAN

_STD_RECORD_KEYS = frozenset({
    "msg", "args", "levelname", "levelno", "pathname",
    "filename", "module", "exc_info", "exc_text", "stack_info",
    "lineno", "funcName", "created", "msecs", "relativeCreated",
    "thread", "threadName", "processName", "process", "message",
    "taskName", "name", "event",
})


class HumanFormatter:
    """Turns structured collector events into readable lines.

    Each event type has its own format. Unknown events return None and are
    not printed.
    """

    def format_event(self, event: str, **kw) -> str | None:
        """Format an event as text.

        Args:
            event: Event name (e.g. "pipeline.built", "exporter.retry")
            **kw: Event fields

        Returns:
            Formatted text, or None if the event has no human format
        """
        match event:

            # ── LIFECYCLE ────────────────────────────────────────────────
            case "collector.starting":
                config = kw.get("config", "?")
                return f"─── telepipe · {config} {'─' * 30}\n"

            case "pipeline.built":
                name = kw.get("pipeline", "?")
                receivers = ", ".join(kw.get("receivers", [])) or "-"
                processors = ", ".join(kw.get("processors", [])) or "-"
                exporters = ", ".join(kw.get("exporters", [])) or "-"
                return f"pipeline {name}: {receivers} → {processors} → {exporters}"

            case "receiver.listening":
                component = kw.get("component", "?")
                endpoint = kw.get("endpoint", "?")
                return f"  ▸ receiver {component} listening on {endpoint}"

            case "collector.running":
                pipelines = kw.get("pipelines", "?")
                components = kw.get("components", "?")
                return f"✓ collector running ({pipelines} pipelines, {components} components)"

            case "collector.stopped":
                lines = ["\n■ collector stopped"]
                for component, counters in sorted((kw.get("stats") or {}).items()):
                    summary = " ".join(
                        f"{name}={value}" for name, value in counters.items() if value
                    )
                    if summary:
                        lines.append(f"  {component:<20} {summary}")
                return "\n".join(lines)

            # ── DATA PATH ────────────────────────────────────────────────
            case "exporter.retry":
                component = kw.get("component", "?")
                attempt = kw.get("attempt", "?")
                wait = kw.get("wait_seconds", "?")
                error = kw.get("error") or "?"
                return f"  exporter {component}: retry #{attempt} in {wait}s ({error})"

            case "exporter.failed":
                component = kw.get("component", "?")
                items = kw.get("items", "?")
                error = kw.get("error", "?")
                return f"  ✗ exporter {component}: dropped {items} items ({error})"

            case "receiver.refused":
                component = kw.get("component", "?")
                items = kw.get("items", "?")
                return f"  ⚠ receiver {component}: refused {items} items (back-pressure)"

            case "receiver.file.replayed":
                path = kw.get("path", "?")
                lines = kw.get("lines", "?")
                skipped = kw.get("skipped", 0)
                skipped_str = f", {skipped} skipped" if skipped else ""
                return f"  ▸ replayed {lines} lines from {path}{skipped_str}"

            case "collector.shutdown_requested":
                signal_name = kw.get("signal", "?")
                return f"\n⚠  {signal_name} received, draining pipelines..."

            case _:
                return None


class HumanLogHandler(logging.Handler):
    """Logging handler that only formats HUMAN level records.

    Writes to stderr so stdout stays clean for command output.
    """

    def __init__(self, stream=None) -> None:
        super().__init__(level=HUMAN)
        self.stream = stream or sys.stderr
        self.formatter_inst = HumanFormatter()

    def emit(self, record: logging.LogRecord) -> None:
        try:
            if record.levelno != HUMAN:
                return

            # stdlib callers pass a dict as msg: {"event": ..., **fields}
            if isinstance(record.msg, dict):
                kw = dict(record.msg)
                event = kw.pop("event", "")
            else:
                event = getattr(record, "event", None) or record.getMessage()
                kw = {
                    k: v for k, v in record.__dict__.items()
                    if not k.startswith("_") and k not in _STD_RECORD_KEYS
                }

            formatted = self.formatter_inst.format_event(event, **kw)
            if formatted is not None:
                self.stream.write(formatted + "\n")
                self.stream.flush()
        except Exception:
            self.handleError(record)


class HumanLog:
    """Typed helper to emit HUMAN level events.

    Usage:
        hlog = HumanLog(logging.getLogger("telepipe.service"))
        hlog.pipeline_built("traces", ["otlp"], ["batch"], ["debug"])
    """

    def __init__(self, logger: logging.Logger) -> None:
        self._log = logger

    def _emit(self, event: str, **kw) -> None:
        self._log.log(HUMAN, {"event": event, **kw})

    def collector_starting(self, config: str) -> None:
        self._emit("collector.starting", config=config)

    def pipeline_built(
        self, pipeline: str, receivers: list[str], processors: list[str], exporters: list[str]
    ) -> None:
        self._emit(
            "pipeline.built",
            pipeline=pipeline,
            receivers=receivers,
            processors=processors,
            exporters=exporters,
        )

    def receiver_listening(self, component: str, endpoint: str) -> None:
        self._emit("receiver.listening", component=component, endpoint=endpoint)

    def collector_running(self, pipelines: int, components: int) -> None:
        self._emit("collector.running", pipelines=pipelines, components=components)

    def collector_stopped(self, stats: dict[str, dict[str, int]]) -> None:
        self._emit("collector.stopped", stats=stats)

    def exporter_retry(self, component: str, attempt: int, wait_seconds: float, error: str | None) -> None:
        self._emit(
            "exporter.retry",
            component=component,
            attempt=attempt,
            wait_seconds=wait_seconds,
            error=error,
        )

    def exporter_failed(self, component: str, items: int, error: str) -> None:
        self._emit("exporter.failed", component=component, items=items, error=error)

    def receiver_refused(self, component: str, items: int) -> None:
        self._emit("receiver.refused", component=component, items=items)

    def file_replayed(self, path: str, lines: int, skipped: int) -> None:
        self._emit("receiver.file.replayed", path=path, lines=lines, skipped=skipped)

    def shutdown_requested(self, signal_name: str) -> None:
        self._emit("collector.shutdown_requested", signal=signal_name)
