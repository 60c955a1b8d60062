from pathlib import Path
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from ..._config import load_connection_config
from ..._engine_cache import get_or_create_engine
from ..._logging import get_logger, redact_config
from ..base_connector import validation_error
from ..data_contract import ValidationError
from .config import SQLiteConfig
from .database_connector import DatabaseConnector

LOGGER = get_logger("connectors.sources.sql.sqlite")


def _build_sqlite_url(config: SQLiteConfig) -> str:
    if config.in_memory or config.file_path == ":memory:":
        return "sqlite+pysqlite:///:memory:"

    resolved_path = Path(config.file_path).expanduser().resolve()
    return f"sqlite+pysqlite:///{resolved_path}"


def get_sqlite_engine(
    config: dict | None = None,
    *,
    file_path: str | None = None,
    env_prefix: str = "SQLITE",
    reuse: bool = True,
) -> Engine:
    merged_config = load_connection_config(config, file_path=file_path, env_prefix=env_prefix)
    validated_config = SQLiteConfig.model_validate(merged_config)
    LOGGER.info("Creating SQLite engine with config=%s", redact_config(validated_config.model_dump()))

    def factory() -> Engine:
        return create_engine(_build_sqlite_url(validated_config))

    return get_or_create_engine("sqlite", validated_config.model_dump(), factory, reuse=reuse)


class SQLiteConnector(DatabaseConnector):
    type_tag = "sqlite"
    display_name = "SQLite Database"
    description = "Embedded SQLite database file"
    dialect = "sqlite"
    env_prefix = "SQLITE"

    def _validate_connection(self, connection: dict[str, Any]) -> list[ValidationError]:
        file_path = connection.get("file_path")
        if connection.get("in_memory") or file_path == ":memory:":
            return []
        if not file_path:
            return [
                validation_error(
                    "connection.file_path",
                    "MISSING_FILE_PATH",
                    "Database file path is required unless in_memory is set",
                )
            ]
        if not Path(str(file_path)).expanduser().is_file():
            return [validation_error("connection.file_path", "FILE_NOT_FOUND", f"Database file not found: {file_path}")]
        return []

    def build_engine(self) -> Engine:
        connection = self.resolve_connection()
        return get_sqlite_engine(connection, env_prefix=self.env_prefix, reuse=connection.get("reuse_engine", True))

    def server_version(self) -> str | None:
        row = self.execute_query("SELECT sqlite_version() AS version")
        return row[0]["version"] if row else None
