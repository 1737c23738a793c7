"""
Main CLI for telepipe using Click.

Commands:
    run              start the collector until SIGINT/SIGTERM
    validate-config  build the pipeline graph without starting it
    components       list registered component types
    traces FILE      print trace trees from an OTLP/JSON lines file
    propagation      inspect trace context headers
"""

import json
import logging
import sys
from pathlib import Path

import click
import yaml

from .components import ComponentKind, ConfigError, default_registry
from .config.loader import load_config
from .logging import HumanLog, configure_logging
from .model import Signal, build_trace_tree, group_by_trace, render_tree, summarize_trace
from .otlp import OTLPDecodeError, decode_json
from .propagation import create_propagator
from .service import Collector, GracefulShutdown
from .telemetry.otel import create_tracer

# Exit codes
EXIT_SUCCESS = 0
EXIT_FAILED = 1
EXIT_CONFIG_ERROR = 3
EXIT_INTERRUPTED = 130

# Current version
_VERSION = "0.3.0"

_hlog = HumanLog(logging.getLogger("telepipe.cli"))


def _load_or_exit(config: Path | None, **cli_args):
    """Load the configuration; configuration problems exit with code 3."""
    try:
        return load_config(config_path=config, cli_args=cli_args)
    except FileNotFoundError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(EXIT_CONFIG_ERROR)
    except (ValueError, yaml.YAMLError) as e:
        # ValueError covers pydantic ValidationError and a non-mapping root
        click.echo(f"Invalid configuration: {e}", err=True)
        sys.exit(EXIT_CONFIG_ERROR)


@click.group()
@click.version_option(version=_VERSION, prog_name="telepipe")
def main() -> None:
    """telepipe - Telemetry pipelines: receive, process and export traces,
    metrics and logs.

    Pipelines are declared in a YAML file laid out like an OpenTelemetry
    Collector configuration.
    """
    pass


@main.command()
@click.option(
    "-c",
    "--config",
    type=click.Path(exists=True, path_type=Path),
    required=True,
    help="Path to the YAML configuration file",
)
@click.option("-v", "--verbose", count=True, help="Technical logs (-v info, -vv debug)")
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "human", "warn", "error"]),
    help="Log level",
)
@click.option("--log-file", type=click.Path(path_type=Path), help="JSON log file")
@click.option("--quiet", is_flag=True, help="No console output (the log file still works)")
@click.option(
    "--self-trace/--no-self-trace",
    default=None,
    help="Trace the collector's own pipelines with OpenTelemetry",
)
def run(
    config: Path,
    verbose: int,
    log_level: str | None,
    log_file: Path | None,
    quiet: bool,
    self_trace: bool | None,
) -> None:
    """Run the collector until SIGINT or SIGTERM.

    The first signal drains the pipelines and exits cleanly; a second
    SIGINT exits immediately with code 130.
    """
    app_config = _load_or_exit(
        config,
        verbose=verbose,
        log_level=log_level,
        log_file=str(log_file) if log_file else None,
        self_trace=self_trace,
    )
    configure_logging(app_config.logging, quiet=quiet)
    _hlog.collector_starting(str(config))

    telemetry = app_config.service.telemetry
    tracer = create_tracer(
        enabled=telemetry.enabled,
        exporter=telemetry.exporter,
        endpoint=telemetry.endpoint,
        trace_file=telemetry.trace_file,
    )

    try:
        collector = Collector(app_config, tracer=tracer)
    except ConfigError as e:
        click.echo(f"Invalid configuration: {e}", err=True)
        sys.exit(EXIT_CONFIG_ERROR)

    shutdown = GracefulShutdown()
    try:
        collector.run(shutdown)
    except KeyboardInterrupt:
        click.echo("\nInterrupted.", err=True)
        sys.exit(EXIT_INTERRUPTED)
    except ConfigError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(EXIT_CONFIG_ERROR)
    except Exception as e:
        click.echo(f"Collector failed: {e}", err=True)
        if verbose > 1:
            import traceback
            traceback.print_exc()
        sys.exit(EXIT_FAILED)
    finally:
        tracer.shutdown()
        shutdown.restore_defaults()

    sys.exit(EXIT_SUCCESS)


@main.command()
@click.option(
    "-c",
    "--config",
    type=click.Path(exists=True, path_type=Path),
    required=True,
    help="Path to the configuration file to validate",
)
def validate_config(config: Path) -> None:
    """Validate a configuration file and its pipeline graph."""
    app_config = _load_or_exit(config)
    try:
        collector = Collector(app_config)
    except ConfigError as e:
        click.echo(f"Invalid configuration: {e}", err=True)
        sys.exit(EXIT_CONFIG_ERROR)

    graph = collector.graph
    click.echo("Valid configuration")
    click.echo(f"  Receivers: {len(graph.receivers)}")
    click.echo(f"  Exporters: {len(graph.exporters)}")
    click.echo(f"  Connectors: {len(graph.connectors)}")
    click.echo(f"  Pipelines: {len(graph.pipelines)}")
    for pipeline in graph.pipelines.values():
        chain = " -> ".join(
            [
                ", ".join(pipeline.receivers),
                *pipeline.processor_ids,
                ", ".join(pipeline.exporters),
            ]
        )
        click.echo(f"    {pipeline.id:<16} {chain}")


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Print as JSON")
def components(as_json: bool) -> None:
    """List the registered component types per kind."""
    registry = default_registry()
    listing = {kind.value: registry.list_types(kind) for kind in ComponentKind}

    if as_json:
        click.echo(json.dumps(listing, indent=2))
        return

    for kind in ComponentKind:
        click.echo(f"{kind.value}s:")
        for type_name in listing[kind.value]:
            component_cls = registry.get(kind, type_name)
            signals = ", ".join(sorted(s.value for s in component_cls.supported_signals))
            click.echo(f"  {type_name:<24} {signals}")


@main.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--trace-id", help="Only show this trace")
@click.option("--json", "as_json", is_flag=True, help="Print trace summaries as JSON")
def traces(file: Path, trace_id: str | None, as_json: bool) -> None:
    """Print trace trees from an OTLP/JSON lines file.

    Each line is one OTLP/JSON export request, as written by the ``file``
    exporter. Non-trace lines are ignored; invalid lines are reported and
    skipped. Spans whose parent is missing are marked with '?'.
    """
    spans = []
    skipped = 0
    with open(file, "rb") as f:
        for lineno, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                batch = decode_json(line)
            except OTLPDecodeError as e:
                skipped += 1
                click.echo(f"line {lineno}: {e}", err=True)
                continue
            if batch.signal == Signal.TRACES:
                spans.extend(batch)

    grouped = group_by_trace(spans)
    if trace_id:
        grouped = {tid: s for tid, s in grouped.items() if tid == trace_id.lower()}
        if not grouped:
            click.echo(f"Trace {trace_id} not found", err=True)
            sys.exit(EXIT_FAILED)

    summaries = sorted(
        (summarize_trace(trace_spans) for trace_spans in grouped.values()),
        key=lambda s: s.start_time_ns,
    )

    if as_json:
        click.echo(json.dumps(
            [
                {
                    "trace_id": s.trace_id,
                    "root": s.root_name,
                    "services": s.service_names,
                    "spans": s.span_count,
                    "errors": s.error_count,
                    "duration_ms": round(s.duration_ns / 1_000_000, 3),
                }
                for s in summaries
            ],
            indent=2,
        ))
    else:
        for summary in summaries:
            click.echo(
                f"trace {summary.trace_id}  {summary.span_count} span(s)  "
                f"{summary.duration_ns / 1_000_000:.1f}ms  "
                f"services: {', '.join(summary.service_names)}"
            )
            click.echo(render_tree(build_trace_tree(grouped[summary.trace_id])))
            click.echo("")
        click.echo(f"{len(summaries)} trace(s), {len(spans)} span(s)", err=True)

    if skipped:
        click.echo(f"{skipped} invalid line(s) skipped", err=True)


@main.group()
def propagation() -> None:
    """Context propagation utilities."""
    pass


def _parse_header(raw: str) -> tuple[str, str]:
    name, sep, value = raw.partition(":")
    if not sep or not name.strip():
        raise click.BadParameter(f"expected 'name: value', got '{raw}'")
    return name.strip(), value.strip()


@propagation.command("inspect")
@click.argument("headers", nargs=-1, required=True)
@click.option(
    "-p",
    "--propagators",
    default="tracecontext,baggage",
    envvar="OTEL_PROPAGATORS",
    show_default=True,
    help="Comma-separated propagators (tracecontext, baggage, b3, b3multi)",
)
@click.option("--json", "as_json", is_flag=True, help="Print as JSON")
def inspect(headers: tuple[str, ...], propagators: str, as_json: bool) -> None:
    """Extract the trace context from 'name: value' HEADERS.

    Example:
        telepipe propagation inspect
            "traceparent: 00-4bf92f3577b34da6a3ce929d0e0e4736-00f067aa0ba902b7-01"
    """
    try:
        propagator = create_propagator(propagators)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--propagators") from e

    carrier: dict[str, str] = {}
    for raw in headers:
        name, value = _parse_header(raw)
        carrier[name] = f"{carrier[name]},{value}" if name in carrier else value

    context = propagator.extract(carrier)
    span_context = context.span_context if context.has_span_context else None

    if as_json:
        click.echo(json.dumps(
            {
                "span_context": span_context.model_dump() if span_context else None,
                "baggage": context.baggage,
            },
            indent=2,
        ))
    else:
        if span_context is not None:
            click.echo(f"trace_id:    {span_context.trace_id}")
            click.echo(f"span_id:     {span_context.span_id}")
            click.echo(f"sampled:     {'yes' if span_context.sampled else 'no'}")
            click.echo(f"trace_flags: {span_context.trace_flags:02x}")
            if span_context.trace_state:
                click.echo(f"trace_state: {span_context.trace_state}")
        else:
            click.echo("No valid span context")
        for key, value in context.baggage.items():
            click.echo(f"baggage:     {key}={value}")

    if span_context is None and not context.baggage:
        sys.exit(EXIT_FAILED)


if __name__ == "__main__":
    main()
