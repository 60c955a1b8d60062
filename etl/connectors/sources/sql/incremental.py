"""Delta sync cursor plumbing between runs of a database connector."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from ..._config import normalize_keys
from ..._logging import get_logger
from ..data_contract import ConnectorConfig, ExecutionResult
from .config import DeltaConfig, DatabaseOptions

LOGGER = get_logger("connectors.sources.sql.incremental")

WatermarkValue = int | float | str | datetime | date | Decimal | None


def delta_settings(config: ConnectorConfig) -> DeltaConfig | None:
    """Return the active delta configuration, or None when delta sync is off."""
    try:
        options = DatabaseOptions.model_validate(normalize_keys(config.options))
    except ValueError:
        return None
    return options.delta_config if options.delta_active else None


def with_last_value(config: ConnectorConfig, last_value: WatermarkValue) -> ConnectorConfig:
    """Copy of ``config`` whose delta cursor starts after ``last_value``.

    An explicit ``last_value`` already present in the configuration wins, so a
    caller can always force a resync point.
    """
    delta = delta_settings(config)
    if delta is None or last_value is None or delta.last_value is not None:
        return config

    options = normalize_keys(config.options)
    delta_config = dict(options.get("delta_config") or {})
    if "tracking_column" in options and not delta_config:
        options["last_value"] = last_value
    else:
        delta_config["last_value"] = last_value
        options["delta_config"] = delta_config

    LOGGER.info("Resuming delta sync for %s after %s=%s", config.id, delta.tracking_column, last_value)
    return config.model_copy(update={"options": options})


def cursor_from_result(result: ExecutionResult) -> WatermarkValue:
    """Highest tracking value seen by a successful run, if any."""
    if not result.success:
        return None
    delta = result.metadata.get("delta") or {}
    return delta.get("last_value")
