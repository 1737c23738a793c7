"""
Tests for configuration loading: deep merge, env expansion, precedence
and schema validation.
"""

from pathlib import Path

import pytest
from pydantic import ValidationError

from telepipe.config import CollectorConfig, deep_merge, expand_env, load_config
from telepipe.config.loader import apply_cli_overrides, load_env_overrides, load_yaml_config

MINIMAL_YAML = """\
receivers:
  otlp:
    endpoint: 127.0.0.1:4318
processors:
  batch:
exporters:
  debug:
    verbosity: ${env:DEBUG_VERBOSITY:-basic}
service:
  pipelines:
    traces:
      receivers: [otlp]
      processors: [batch]
      exporters: [debug]
"""


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("TELEPIPE_LOG_LEVEL", "TELEPIPE_LOG_FILE", "TELEPIPE_TELEMETRY_ENABLED"):
        monkeypatch.delenv(name, raising=False)


def write_config(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "telepipe.yaml"
    path.write_text(text, encoding="utf-8")
    return path


# -- Tests: deep_merge -------------------------------------------------------


class TestDeepMerge:
    def test_nested_keys_preserved(self):
        base = {"a": {"b": 1, "c": 2}, "d": 3}
        assert deep_merge(base, {"a": {"b": 99}, "e": 4}) == {
            "a": {"b": 99, "c": 2},
            "d": 3,
            "e": 4,
        }

    def test_base_not_mutated(self):
        base = {"a": {"b": 1}}
        deep_merge(base, {"a": {"b": 2}})
        assert base == {"a": {"b": 1}}

    def test_non_dict_override_replaces(self):
        assert deep_merge({"a": {"b": 1}}, {"a": [1]}) == {"a": [1]}


# -- Tests: expand_env -------------------------------------------------------


class TestExpandEnv:
    def test_reference_forms(self):
        env = {"HOST": "collector", "PORT": "4318"}
        assert expand_env("${env:HOST}:${PORT}", env) == "collector:4318"

    def test_whole_value_reparsed(self):
        assert expand_env({"port": "${env:PORT}"}, {"PORT": "4318"}) == {"port": 4318}
        assert expand_env("${env:ON}", {"ON": "true"}) is True

    def test_default(self):
        assert expand_env("${env:MISSING:-fallback}", {}) == "fallback"

    def test_unset_without_default_is_empty(self):
        assert expand_env("x-${env:MISSING}", {}) == "x-"

    def test_lists_and_nested(self):
        assert expand_env({"a": ["${A}", 1]}, {"A": "z"}) == {"a": ["z", 1]}

    def test_plain_values_untouched(self):
        assert expand_env(5, {}) == 5
        assert expand_env("$HOME", {}) == "$HOME"

    def test_values_that_are_not_yaml_stay_strings(self):
        headers = expand_env({"authorization": "${env:TOKEN}"}, {"TOKEN": "@abc123"})
        assert headers == {"authorization": "@abc123"}
        assert expand_env("${env:ANCHOR}", {"ANCHOR": "*x"}) == "*x"
        assert expand_env("${env:FLOW}", {"FLOW": "[a"}) == "[a"


# -- Tests: loading ----------------------------------------------------------


class TestLoadConfig:
    def test_minimal_file(self, tmp_path, monkeypatch):
        monkeypatch.delenv("DEBUG_VERBOSITY", raising=False)
        config = load_config(write_config(tmp_path, MINIMAL_YAML))
        assert config.receivers["otlp"]["endpoint"] == "127.0.0.1:4318"
        assert config.processors["batch"] == {}
        assert config.exporters["debug"]["verbosity"] == "basic"
        assert config.service.pipelines["traces"].exporters == ["debug"]
        assert config.logging.level == "human"

    def test_env_expansion_in_file(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DEBUG_VERBOSITY", "detailed")
        config = load_config(write_config(tmp_path, MINIMAL_YAML))
        assert config.exporters["debug"]["verbosity"] == "detailed"

    def test_no_file_gives_defaults(self):
        config = load_config()
        assert config.service.pipelines == {}
        assert not config.service.telemetry.enabled

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "missing.yaml")

    def test_empty_file(self, tmp_path):
        assert load_yaml_config(write_config(tmp_path, "")) == {}

    def test_root_must_be_mapping(self, tmp_path):
        with pytest.raises(ValueError, match="mapping"):
            load_yaml_config(write_config(tmp_path, "- a\n- b\n"))

    def test_precedence_yaml_env_cli(self, tmp_path, monkeypatch):
        path = write_config(tmp_path, "logging:\n  level: info\n")
        assert load_config(path).logging.level == "info"

        monkeypatch.setenv("TELEPIPE_LOG_LEVEL", "ERROR")
        assert load_config(path).logging.level == "error"

        config = load_config(path, cli_args={"log_level": "debug"})
        assert config.logging.level == "debug"


class TestOverrides:
    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("TELEPIPE_LOG_FILE", "/tmp/telepipe.jsonl")
        monkeypatch.setenv("TELEPIPE_TELEMETRY_ENABLED", "yes")
        assert load_env_overrides() == {
            "logging": {"file": "/tmp/telepipe.jsonl"},
            "service": {"telemetry": {"enabled": True}},
        }

    def test_cli_overrides_ignore_unset(self):
        base = {"logging": {"level": "info"}}
        assert apply_cli_overrides(base, {"log_level": None, "self_trace": None}) == base

    def test_cli_self_trace_false_is_applied(self):
        result = apply_cli_overrides({}, {"self_trace": False, "verbose": 2})
        assert result == {
            "logging": {"verbose": 2},
            "service": {"telemetry": {"enabled": False}},
        }


# -- Tests: schema -----------------------------------------------------------


class TestSchema:
    def test_unknown_top_level_key_rejected(self):
        with pytest.raises(ValidationError):
            CollectorConfig(extensions={})

    def test_unknown_pipeline_key_rejected(self):
        with pytest.raises(ValidationError):
            CollectorConfig(service={"pipelines": {"traces": {"receiver": ["otlp"]}}})

    @pytest.mark.parametrize("pipeline_id", ["traces", "metrics/internal", "logs/a"])
    def test_valid_pipeline_ids(self, pipeline_id):
        CollectorConfig(service={"pipelines": {pipeline_id: {}}})

    @pytest.mark.parametrize("pipeline_id", ["spans", "traces/", "profiles/x"])
    def test_invalid_pipeline_ids(self, pipeline_id):
        with pytest.raises(ValidationError):
            CollectorConfig(service={"pipelines": {pipeline_id: {}}})

    def test_empty_sections(self):
        config = CollectorConfig(receivers=None, processors={"batch": None})
        assert config.receivers == {}
        assert config.section("processor") == {"batch": {}}

    def test_telemetry_exporter_choices(self):
        with pytest.raises(ValidationError):
            CollectorConfig(service={"telemetry": {"exporter": "zipkin"}})
