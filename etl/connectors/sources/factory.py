"""Connector registry keyed by type tag, plus config-file loading."""

import json
from pathlib import Path
from typing import Any, Callable

from .._logging import get_logger, redact_config
from .base_connector import BaseConnector
from .data_contract import ConnectorConfig
from .errors import DuplicateConnectorError, UnknownConnectorTypeError

logger = get_logger("sources.factory")

ConnectorFactory = Callable[[ConnectorConfig], BaseConnector]


class ConnectorRegistry:
    """Maps type tags to connector factories.

    A registry is an explicit value: build one with ``build_default_registry``
    (or an empty one for tests) and pass it to whatever creates connectors.
    """

    def __init__(self) -> None:
        self._factories: dict[str, ConnectorFactory] = {}

    def register(self, type_tag: str, factory: ConnectorFactory, *, replace: bool = False) -> None:
        key = type_tag.strip().lower()
        if not key:
            raise ValueError("Connector type tag must be a non-empty string.")
        if key in self._factories and not replace:
            raise DuplicateConnectorError(key)
        self._factories[key] = factory
        logger.debug("Registered connector type=%s factory=%s", key, getattr(factory, "__name__", factory))

    def is_registered(self, type_tag: str) -> bool:
        return type_tag.strip().lower() in self._factories

    def available_types(self) -> list[str]:
        return sorted(self._factories)

    def describe(self, type_tag: str) -> dict[str, Any]:
        """Display metadata for a tag; class attributes when the factory is a connector class."""
        factory = self._lookup(type_tag)
        return {
            "type": type_tag.strip().lower(),
            "display_name": getattr(factory, "display_name", "") or type_tag,
            "description": getattr(factory, "description", ""),
            "category": getattr(factory, "category", ""),
            "capabilities": sorted(getattr(factory, "capabilities", ())),
        }

    def create(self, config: ConnectorConfig | dict[str, Any]) -> BaseConnector:
        resolved = config if isinstance(config, ConnectorConfig) else ConnectorConfig.model_validate(config)
        factory = self._lookup(resolved.type)
        logger.info(
            "Creating connector type=%s id=%s connection=%s",
            resolved.type,
            resolved.id,
            redact_config(resolved.connection),
        )
        return factory(resolved)

    def _lookup(self, type_tag: str) -> ConnectorFactory:
        key = (type_tag or "").strip().lower()
        try:
            return self._factories[key]
        except KeyError:
            raise UnknownConnectorTypeError(type_tag, self.available_types()) from None


def build_default_registry() -> ConnectorRegistry:
    """Registry holding every built-in connector."""
    from .file import CSVConnector, ExcelConnector, JSONConnector
    from .mock import MockConnector
    from .script import ScriptConnector
    from .sql import MSSQLConnector, ODBCConnector, OracleConnector, PostgresConnector, SQLiteConnector

    registry = ConnectorRegistry()
    for connector_class in (
        CSVConnector,
        JSONConnector,
        ExcelConnector,
        SQLiteConnector,
        PostgresConnector,
        MSSQLConnector,
        OracleConnector,
        ODBCConnector,
        ScriptConnector,
        MockConnector,
    ):
        registry.register(connector_class.type_tag, connector_class)
    return registry


def load_connector_config(config: dict[str, Any] | str | Path) -> dict[str, Any]:
    """Load connector config from dict, JSON file, or YAML file."""
    if isinstance(config, dict):
        return config

    config_path = Path(config)
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    suffix = config_path.suffix.lower()
    content = config_path.read_text(encoding="utf-8")

    if suffix == ".json":
        data = json.loads(content)
    elif suffix in {".yaml", ".yml"}:
        try:
            import yaml  # type: ignore
        except ImportError as exc:
            raise RuntimeError("PyYAML is not installed. Add it to requirements to use YAML config files.") from exc

        data = yaml.safe_load(content)
    else:
        raise ValueError("Unsupported config format. Use JSON (.json) or YAML (.yaml/.yml).")

    if not isinstance(data, dict):
        raise ValueError("Connector configuration must be a key-value object.")

    return data


def create_connector(
    config: ConnectorConfig | dict[str, Any] | str | Path,
    registry: ConnectorRegistry | None = None,
) -> BaseConnector:
    """Instantiate the connector named by the config's ``type`` field."""
    registry = registry or build_default_registry()
    if isinstance(config, ConnectorConfig):
        return registry.create(config)
    return registry.create(load_connector_config(config))


__all__ = [
    "ConnectorFactory",
    "ConnectorRegistry",
    "build_default_registry",
    "load_connector_config",
    "create_connector",
]
