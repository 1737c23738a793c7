"""
Configuration loader with deep merge.

Precedence (lowest to highest):
1. Defaults (defined in the Pydantic schemas)
2. YAML file (with ${env:VAR} expansion)
3. Environment variables
4. CLI arguments

The merge is recursive so every key is preserved at every level.
"""

import os
import re
from pathlib import Path
from typing import Any

import structlog
import yaml

from .schema import CollectorConfig

logger = structlog.get_logger()

# ${env:NAME}, ${NAME}, and either with a ":-default" suffix
_ENV_REF_RE = re.compile(r"\$\{(?:env:)?([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursive dictionary merge.

    Args:
        base: Base dictionary
        override: Dictionary whose values win on leaf conflicts

    Returns:
        New merged dictionary.

    Example:
        >>> deep_merge({"a": {"b": 1, "c": 2}, "d": 3}, {"a": {"b": 99}, "e": 4})
        {'a': {'b': 99, 'c': 2}, 'd': 3, 'e': 4}
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def expand_env(value: Any, environ: dict[str, str] | None = None) -> Any:
    """Expand ``${env:NAME}`` references in every string of a YAML tree.

    ``${env:NAME:-default}`` falls back to ``default``. An unset variable
    without default expands to an empty string and logs a warning.
    A string that is exactly one reference to a numeric or boolean value is
    re-parsed as YAML so ``port: ${env:PORT}`` stays an int.
    """
    environ = os.environ if environ is None else environ

    if isinstance(value, dict):
        return {k: expand_env(v, environ) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env(v, environ) for v in value]
    if not isinstance(value, str) or "${" not in value:
        return value

    def replacer(match: re.Match[str]) -> str:
        name, default = match.group(1), match.group(2)
        if name in environ:
            return environ[name]
        if default is not None:
            return default
        logger.warning("config.env_var_unset", variable=name)
        return ""

    expanded = _ENV_REF_RE.sub(replacer, value)
    if _ENV_REF_RE.fullmatch(value) and expanded:
        try:
            parsed = yaml.safe_load(expanded)
        except yaml.YAMLError:
            # Tokens such as "@abc" or "*x" are plain strings, not YAML
            return expanded
        if isinstance(parsed, (int, float, bool)):
            return parsed
    return expanded


def load_yaml_config(config_path: Path | None) -> dict[str, Any]:
    """Load configuration from a YAML file.

    Args:
        config_path: Path to the YAML file, or None to skip

    Returns:
        Dictionary with the configuration, or an empty dict if there is no file

    Raises:
        FileNotFoundError: If the path does not exist
    """
    if not config_path:
        return {}

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if not data:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration root must be a mapping: {config_path}")
    return expand_env(data)


def load_env_overrides() -> dict[str, Any]:
    """Load overrides from environment variables.

    Supported variables:
        TELEPIPE_LOG_LEVEL: overrides logging.level
        TELEPIPE_LOG_FILE: overrides logging.file
        TELEPIPE_TELEMETRY_ENABLED: overrides service.telemetry.enabled

    Returns:
        Dictionary with overrides from env vars
    """
    overrides: dict[str, Any] = {}

    if log_level := os.environ.get("TELEPIPE_LOG_LEVEL"):
        overrides.setdefault("logging", {})["level"] = log_level.lower()

    if log_file := os.environ.get("TELEPIPE_LOG_FILE"):
        overrides.setdefault("logging", {})["file"] = log_file

    if telemetry := os.environ.get("TELEPIPE_TELEMETRY_ENABLED"):
        overrides.setdefault("service", {}).setdefault("telemetry", {})["enabled"] = (
            telemetry.lower() in ("1", "true", "yes")
        )

    return overrides


def apply_cli_overrides(config_dict: dict[str, Any], cli_args: dict[str, Any]) -> dict[str, Any]:
    """Apply overrides from CLI arguments.

    Args:
        config_dict: Base configuration (already merged with YAML and env)
        cli_args: Dictionary with CLI arguments

    Returns:
        Configuration with CLI overrides applied
    """
    overrides: dict[str, Any] = {}

    if cli_args.get("log_level"):
        overrides.setdefault("logging", {})["level"] = cli_args["log_level"]

    if cli_args.get("log_file"):
        overrides.setdefault("logging", {})["file"] = cli_args["log_file"]

    if cli_args.get("verbose"):
        overrides.setdefault("logging", {})["verbose"] = cli_args["verbose"]

    if cli_args.get("self_trace") is not None:
        overrides.setdefault("service", {}).setdefault("telemetry", {})["enabled"] = cli_args["self_trace"]

    return deep_merge(config_dict, overrides)


def load_config(
    config_path: Path | None = None,
    cli_args: dict[str, Any] | None = None,
) -> CollectorConfig:
    """Load and validate the full collector configuration.

    Steps:
    1. Pydantic defaults
    2. Merge with YAML (if any)
    3. Merge with env vars
    4. Merge with CLI args
    5. Validate with Pydantic

    Args:
        config_path: Path to the YAML configuration file
        cli_args: Dictionary with CLI arguments

    Returns:
        Validated CollectorConfig

    Raises:
        FileNotFoundError: If config_path does not exist
        ValidationError: If the final configuration is not valid
    """
    cli_args = cli_args or {}

    yaml_config = load_yaml_config(config_path)
    merged = deep_merge(yaml_config, load_env_overrides())
    merged = apply_cli_overrides(merged, cli_args)

    return CollectorConfig(**merged)
