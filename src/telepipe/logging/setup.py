"""
Structured logging setup.

Three independent sinks:
1. File (JSON) - if config.file is set. Captures everything (DEBUG+).
2. Human handler (stderr) - only HUMAN events: what the collector does.
3. Technical console (stderr) - INFO/DEBUG controlled by -v. Excludes HUMAN.

Default behaviour (no -v): the operator sees HUMAN events and warnings only.
With -v: adds INFO. With -vv: adds DEBUG. With --quiet: silences both
console sinks (the file sink keeps working).
"""

import logging
import sys
from pathlib import Path

import structlog

from ..config.schema import LoggingConfig
from .human import HumanLogHandler
from .levels import HUMAN

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "human": HUMAN,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


def configure_logging(config: LoggingConfig, quiet: bool = False) -> None:
    """Configure structlog and the stdlib handlers.

    Args:
        config: Logging configuration (level, file, verbose)
        quiet: If True, disables the human and console sinks
    """
    logging.root.handlers.clear()
    structlog.reset_defaults()

    # Root captures everything, each handler filters by level
    logging.basicConfig(level=logging.DEBUG, format="%(message)s", handlers=[])

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    # ── Sink 1: JSON file ─────────────────────────────────────────────────
    file_handler = None
    if config.file:
        file_path = Path(config.file)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(str(file_path), encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processor=structlog.processors.JSONRenderer(),
                foreign_pre_chain=shared_processors,
            )
        )
        logging.root.addHandler(file_handler)

    if not quiet:
        # ── Sink 2: human ─────────────────────────────────────────────────
        if _LEVELS[config.level] <= HUMAN:
            human_handler = HumanLogHandler(stream=sys.stderr)
            human_handler.setLevel(HUMAN)
            human_handler.addFilter(lambda record: record.levelno == HUMAN)
            logging.root.addHandler(human_handler)

        # ── Sink 3: technical console ─────────────────────────────────────
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(_console_level(config))
        console_handler.addFilter(lambda record: record.levelno != HUMAN)
        if file_handler:
            console_handler.setFormatter(
                structlog.stdlib.ProcessorFormatter(
                    processor=structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
                    foreign_pre_chain=shared_processors,
                )
            )
        logging.root.addHandler(console_handler)

    # ── structlog ─────────────────────────────────────────────────────────
    if file_handler:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ]
    else:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _console_level(config: LoggingConfig) -> int:
    """Level of the technical console sink.

    Without -v  → WARNING (human events go through their own sink)
    -v          → INFO
    -vv and up  → DEBUG

    An explicit ``level`` of debug/info/warn/error wins when it is more
    verbose than what -v gives.
    """
    by_verbose = {0: logging.WARNING, 1: logging.INFO}.get(config.verbose, logging.DEBUG)
    configured = _LEVELS[config.level]
    if configured == HUMAN:
        return by_verbose
    return min(by_verbose, configured)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a structured logger.

    Args:
        name: Logger name (usually __name__)
    """
    return structlog.get_logger(name)
