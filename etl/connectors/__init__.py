"""Public entrypoints for connector creation, engine lookup and cache cleanup."""

from pathlib import Path
from typing import Any

from sqlalchemy.engine import Engine

from ._engine_cache import dispose_all_engines
from .sources.data_contract import ConnectorConfig, TestConnectionResult
from .sources.factory import ConnectorRegistry, build_default_registry, create_connector, load_connector_config
from .sources.sql.mssql import get_mssql_engine
from .sources.sql.oracle import get_oracle_engine
from .sources.sql.postgres import get_postgres_engine
from .sources.sql.sqlite import get_sqlite_engine


def get_connection(source: str, **kwargs) -> Engine:
    """Return a SQLAlchemy engine for the requested database alias."""
    source_key = source.strip().lower()

    if source_key in {"mssql", "sqlserver", "sql_server"}:
        return get_mssql_engine(**kwargs)

    if source_key in {"oracle", "oracle_db"}:
        return get_oracle_engine(**kwargs)

    if source_key in {"postgres", "pgsql", "postgresql"}:
        return get_postgres_engine(**kwargs)

    if source_key in {"sqlite", "sqlite3"}:
        return get_sqlite_engine(**kwargs)

    raise ValueError(f"Unsupported source '{source}'. Use one of: mssql, oracle, postgres, sqlite")


def test_connection(
    config: ConnectorConfig | dict[str, Any] | str | Path,
    registry: ConnectorRegistry | None = None,
) -> TestConnectionResult:
    """Build the configured connector, check its source and release it."""
    connector = create_connector(config, registry)
    try:
        return connector.test_connection()
    finally:
        connector.dispose()


test_connection.__test__ = False


def close_all_connections() -> None:
    """Dispose all cached engines."""
    dispose_all_engines()


__all__ = [
    "ConnectorRegistry",
    "build_default_registry",
    "create_connector",
    "load_connector_config",
    "get_connection",
    "test_connection",
    "close_all_connections",
    "dispose_all_engines",
    "get_mssql_engine",
    "get_oracle_engine",
    "get_postgres_engine",
    "get_sqlite_engine",
]
