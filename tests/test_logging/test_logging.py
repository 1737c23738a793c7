"""
Tests for the logging system: HUMAN level, HumanFormatter, HumanLogHandler,
HumanLog and configure_logging.
"""

import io
import json
import logging

import pytest
import structlog

from telepipe.config.schema import LoggingConfig
from telepipe.logging import HUMAN, HumanFormatter, HumanLog, HumanLogHandler, configure_logging
from telepipe.logging.setup import _console_level


@pytest.fixture
def restore_logging():
    handlers = list(logging.root.handlers)
    level = logging.root.level
    yield
    for handler in logging.root.handlers:
        if handler not in handlers:
            handler.close()
    logging.root.handlers[:] = handlers
    logging.root.setLevel(level)
    structlog.reset_defaults()


def human_logger(name: str) -> tuple[logging.Logger, io.StringIO]:
    stream = io.StringIO()
    logger = logging.getLogger(name)
    logger.handlers.clear()
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    logger.addHandler(HumanLogHandler(stream=stream))
    return logger, stream


# -- Tests: level ------------------------------------------------------------


class TestHumanLevel:
    def test_between_info_and_warning(self):
        assert logging.INFO < HUMAN < logging.WARNING
        assert logging.getLevelName(HUMAN) == "HUMAN"


# -- Tests: HumanFormatter ---------------------------------------------------


class TestHumanFormatter:
    def setup_method(self):
        self.fmt = HumanFormatter()

    def test_pipeline_built(self):
        line = self.fmt.format_event(
            "pipeline.built",
            pipeline="traces",
            receivers=["otlp"],
            processors=[],
            exporters=["debug", "otlp_http"],
        )
        assert line == "pipeline traces: otlp → - → debug, otlp_http"

    def test_receiver_listening(self):
        line = self.fmt.format_event("receiver.listening", component="otlp", endpoint="0.0.0.0:4318")
        assert line == "  ▸ receiver otlp listening on 0.0.0.0:4318"

    def test_exporter_retry(self):
        line = self.fmt.format_event(
            "exporter.retry", component="otlp_http", attempt=2, wait_seconds=4.0, error="HTTP 503"
        )
        assert line == "  exporter otlp_http: retry #2 in 4.0s (HTTP 503)"

    def test_collector_stopped_skips_zero_counters(self):
        text = self.fmt.format_event(
            "collector.stopped",
            stats={
                "exporter/debug": {"sent": 12, "send_failed": 0},
                "receiver/otlp": {"accepted": 0, "refused": 0},
            },
        )
        lines = text.splitlines()
        assert lines[1] == "■ collector stopped"
        assert len(lines) == 3
        assert lines[2].split() == ["exporter/debug", "sent=12"]

    def test_file_replayed(self):
        assert self.fmt.format_event("receiver.file.replayed", path="a.jsonl", lines=3, skipped=0) == (
            "  ▸ replayed 3 lines from a.jsonl"
        )
        assert self.fmt.format_event(
            "receiver.file.replayed", path="a.jsonl", lines=3, skipped=1
        ).endswith(", 1 skipped")

    def test_unknown_event(self):
        assert self.fmt.format_event("processor.batch.flushed", items=3) is None


# -- Tests: HumanLogHandler / HumanLog ----------------------------------------


class TestHumanLogHandler:
    def test_typed_helper(self):
        logger, stream = human_logger("telepipe.test.helper")
        HumanLog(logger).collector_running(pipelines=2, components=5)
        assert stream.getvalue() == "✓ collector running (2 pipelines, 5 components)\n"

    def test_extra_fields(self):
        logger, stream = human_logger("telepipe.test.extra")
        logger.log(HUMAN, "receiver.refused", extra={"component": "otlp", "items": 7})
        assert "receiver otlp: refused 7 items" in stream.getvalue()

    def test_other_levels_ignored(self):
        logger, stream = human_logger("telepipe.test.levels")
        logger.warning({"event": "collector.running", "pipelines": 1, "components": 1})
        logger.info("collector.running")
        assert stream.getvalue() == ""

    def test_unknown_event_not_written(self):
        logger, stream = human_logger("telepipe.test.unknown")
        logger.log(HUMAN, {"event": "something.else"})
        assert stream.getvalue() == ""


# -- Tests: configure_logging ------------------------------------------------


class TestConsoleLevel:
    @pytest.mark.parametrize(
        "level, verbose, expected",
        [
            ("human", 0, logging.WARNING),
            ("human", 1, logging.INFO),
            ("human", 3, logging.DEBUG),
            ("debug", 0, logging.DEBUG),
            ("info", 0, logging.INFO),
            ("warn", 1, logging.INFO),
        ],
    )
    def test_levels(self, level, verbose, expected):
        assert _console_level(LoggingConfig(level=level, verbose=verbose)) == expected


class TestConfigureLogging:
    def test_human_sink(self, restore_logging, capsys):
        configure_logging(LoggingConfig())
        HumanLog(logging.getLogger("telepipe.test.configured")).shutdown_requested("SIGTERM")
        err = capsys.readouterr().err
        assert "SIGTERM received, draining pipelines..." in err
        assert err.count("SIGTERM") == 1

    def test_human_sink_off_above_human_level(self, restore_logging):
        configure_logging(LoggingConfig(level="warn"))
        assert not any(isinstance(h, HumanLogHandler) for h in logging.root.handlers)

    def test_quiet(self, restore_logging, capsys):
        configure_logging(LoggingConfig(), quiet=True)
        assert logging.root.handlers == []
        HumanLog(logging.getLogger("telepipe.test.quiet")).collector_running(1, 1)
        assert capsys.readouterr().err == ""

    def test_json_file(self, restore_logging, tmp_path):
        log_file = tmp_path / "logs" / "telepipe.jsonl"
        configure_logging(LoggingConfig(file=log_file), quiet=True)
        structlog.get_logger("telepipe.test.file").info("exporter.started", component="debug")

        [line] = log_file.read_text(encoding="utf-8").splitlines()
        entry = json.loads(line)
        assert entry["event"] == "exporter.started"
        assert entry["component"] == "debug"
        assert entry["level"] == "info"
        assert "timestamp" in entry
