"""Configuration layering shared by connectors that accept external credentials."""

import json
import os
import re
from pathlib import Path
from typing import Any

from ._logging import get_logger, redact_config

LOGGER = get_logger("connectors.config")

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])([A-Z])")


def to_snake_case(key: str) -> str:
    """Convert camelCase keys (``filePath``) to snake_case (``file_path``)."""
    return _CAMEL_BOUNDARY.sub(r"_\1", key).lower()


def normalize_keys(values: dict[str, Any] | None) -> dict[str, Any]:
    """Return a copy of a mapping with snake_case keys, recursing into nested maps."""
    if not values:
        return {}

    normalized: dict[str, Any] = {}
    for key, value in values.items():
        if isinstance(value, dict):
            value = normalize_keys(value)
        elif isinstance(value, list):
            value = [normalize_keys(item) if isinstance(item, dict) else item for item in value]
        normalized[to_snake_case(str(key))] = value
    return normalized


def _read_prefixed_env(prefix: str) -> dict[str, Any]:
    """Read environment keys matching <PREFIX>_* and normalize key names."""
    prefix_token = f"{prefix.upper()}_"
    values: dict[str, Any] = {}

    for key, value in os.environ.items():
        if key.startswith(prefix_token):
            normalized_key = key.removeprefix(prefix_token).lower()
            values[normalized_key] = value

    LOGGER.debug("Loaded %s config keys from environment prefix %s", len(values), prefix_token)
    return values


def _read_json_file(file_path: str | None) -> dict[str, Any]:
    """Read JSON config file when provided, otherwise return an empty mapping."""
    if not file_path:
        return {}

    path = Path(file_path)
    if not path.exists():
        LOGGER.error("Config file not found: %s", file_path)
        raise FileNotFoundError(f"Config file not found: {file_path}")

    raw_data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw_data, dict):
        raise ValueError("Config file must contain a JSON object at the root")
    LOGGER.info("Loaded JSON config from %s", file_path)
    return normalize_keys(raw_data)


def _not_empty_values(values: dict[str, Any] | None) -> dict[str, Any]:
    """Drop keys with None or empty-string values to avoid masking lower layers."""
    if not values:
        return {}
    return {key: value for key, value in values.items() if value not in (None, "")}


def load_connection_config(
    config: dict[str, Any] | None = None,
    *,
    file_path: str | None = None,
    env_prefix: str | None = None,
    defaults: dict[str, Any] | None = None,
    overrides: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Resolve connection parameters from defaults, file, env, config, and overrides.

    Later layers win. Empty values in the explicit ``config`` layer do not hide
    values supplied by the environment, so secrets such as passwords can live
    in ``<PREFIX>_PASSWORD`` while the rest of the connection is declared inline.
    """
    env_config = _read_prefixed_env(env_prefix) if env_prefix else {}
    merged: dict[str, Any] = {}
    for layer in (
        normalize_keys(defaults),
        _read_json_file(file_path),
        env_config,
        _not_empty_values(normalize_keys(config)),
        _not_empty_values(overrides),
    ):
        merged.update(layer)

    LOGGER.debug("Connection config resolved: %s", redact_config(merged))
    return merged
