"""Settings resolution: defaults, file, environment, config dict and overrides."""

import json
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from ._logging import get_logger, redact_config
from .errors import SettingsError
from .settings import RunSettings

LOGGER = get_logger("config")
_NESTED_SEPARATOR = "__"


def _read_prefixed_env(prefix: str) -> dict[str, Any]:
    """Read environment keys matching <PREFIX>_* into a nested mapping.

    ``FEEDER_INGEST__BATCH_SIZE=50`` becomes ``{"ingest": {"batch_size": "50"}}``.
    """
    prefix_token = f"{prefix.upper()}_"
    values: dict[str, Any] = {}

    for key, value in os.environ.items():
        if not key.startswith(prefix_token):
            continue
        path = key.removeprefix(prefix_token).lower().split(_NESTED_SEPARATOR)
        node = values
        for part in path[:-1]:
            child = node.setdefault(part, {})
            if not isinstance(child, dict):
                raise SettingsError(f"Environment key {key} conflicts with {prefix_token}{part.upper()}")
            node = child
        node[path[-1]] = value

    LOGGER.info("Loaded %s settings sections from environment prefix %s", len(values), prefix_token)
    return values


def _validate_root(data: Any, origin: str) -> dict[str, Any]:
    if isinstance(data, dict):
        return data
    raise SettingsError(f"Settings from {origin} must contain a key-value object at the root")


def read_settings_file(file_path: str | Path | None) -> dict[str, Any]:
    """Read a JSON or YAML settings file, or return an empty mapping when no path is given."""
    if not file_path:
        LOGGER.info("No settings file path provided")
        return {}

    path = Path(file_path)
    if not path.exists():
        LOGGER.error("Settings file not found: %s", file_path)
        raise FileNotFoundError(f"Settings file not found: {file_path}")

    content = path.read_text(encoding="utf-8")
    suffix = path.suffix.lower()
    try:
        if suffix == ".json":
            data = json.loads(content)
        elif suffix in {".yaml", ".yml"}:
            data = yaml.safe_load(content)
        else:
            raise SettingsError("Unsupported settings format. Use JSON (.json) or YAML (.yaml/.yml).")
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise SettingsError(f"Cannot parse settings file {file_path}: {exc}") from exc

    LOGGER.info("Loaded settings from %s", file_path)
    return _validate_root(data, str(file_path))


def _not_none_values(values: dict[str, Any] | None) -> dict[str, Any]:
    """Drop keys with None values to avoid overriding previous layers."""
    if not values:
        return {}
    return {key: value for key, value in values.items() if value is not None}


def merge_settings_layers(layers: list[dict[str, Any]]) -> dict[str, Any]:
    """Merge settings dictionaries in order where the last layer wins, recursing into sections."""
    merged: dict[str, Any] = {}
    for layer in layers:
        for key, value in layer.items():
            if isinstance(value, dict) and isinstance(merged.get(key), dict):
                merged[key] = merge_settings_layers([merged[key], value])
            else:
                merged[key] = value
    return merged


def load_settings(
    config: dict[str, Any] | None = None,
    *,
    file_path: str | Path | None = None,
    env_prefix: str | None = "FEEDER",
    defaults: dict[str, Any] | None = None,
    overrides: dict[str, Any] | None = None,
) -> RunSettings:
    """Resolve and validate run settings from all configuration layers."""
    LOGGER.info("Loading settings with env_prefix=%s, file_path=%s", env_prefix, file_path)
    env_config = _read_prefixed_env(env_prefix) if env_prefix else {}
    merged = merge_settings_layers(
        [
            defaults or {},
            read_settings_file(file_path),
            env_config,
            config or {},
            _not_none_values(overrides),
        ]
    )

    try:
        settings = RunSettings.model_validate(merged)
    except ValidationError as exc:
        LOGGER.error("Settings validation failed with %s errors", exc.error_count())
        raise SettingsError(f"Invalid settings: {exc}") from exc

    LOGGER.info("Settings resolved: %s", redact_config(merged))
    return settings
