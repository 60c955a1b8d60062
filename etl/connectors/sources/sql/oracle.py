from typing import Any
from urllib.parse import quote_plus

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from ..._config import load_connection_config
from ..._engine_cache import get_or_create_engine
from ..._logging import get_logger, redact_config
from ..data_contract import ValidationError
from .config import OracleConfig
from .database_connector import DatabaseConnector

LOGGER = get_logger("connectors.sources.sql.oracle")


def _build_oracle_url(config: OracleConfig) -> str:
    username = quote_plus(config.username)
    password = quote_plus(config.password)
    service_name = quote_plus(config.service_name)
    return f"oracle+oracledb://{username}:{password}@{config.host}:{config.port}/?service_name={service_name}"


def get_oracle_engine(
    config: dict | None = None,
    *,
    file_path: str | None = None,
    env_prefix: str = "ORACLE",
    reuse: bool = True,
) -> Engine:
    merged_config = load_connection_config(config, file_path=file_path, env_prefix=env_prefix, defaults={"port": 1521})
    validated_config = OracleConfig.model_validate(merged_config)
    LOGGER.info("Creating Oracle engine with config=%s", redact_config(validated_config.model_dump()))

    def factory() -> Engine:
        return create_engine(
            _build_oracle_url(validated_config),
            pool_pre_ping=True,
            pool_size=5,
            max_overflow=10,
        )

    return get_or_create_engine("oracle", validated_config.model_dump(), factory, reuse=reuse)


class OracleConnector(DatabaseConnector):
    type_tag = "oracle"
    display_name = "Oracle Database"
    description = "Oracle database through python-oracledb"
    dialect = "oracle"
    env_prefix = "ORACLE"
    connection_defaults = {"port": 1521}
    test_query = "SELECT 1 AS test_connection FROM dual"

    def _validate_connection(self, connection: dict[str, Any]) -> list[ValidationError]:
        # service_name stands in for the database name
        if connection.get("service_name") and not connection.get("database"):
            connection = {**connection, "database": connection["service_name"]}
        return super()._validate_connection(connection)

    def build_engine(self) -> Engine:
        connection = self.resolve_connection()
        return get_oracle_engine(connection, env_prefix=self.env_prefix, reuse=connection.get("reuse_engine", True))
