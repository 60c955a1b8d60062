from urllib.parse import quote_plus

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from ..._config import load_connection_config
from ..._engine_cache import get_or_create_engine
from ..._logging import get_logger, redact_config
from .config import MSSQLConfig
from .database_connector import DatabaseConnector

LOGGER = get_logger("connectors.sources.sql.mssql")


def _build_mssql_url(config: MSSQLConfig) -> str:
    username = quote_plus(config.username)
    password = quote_plus(config.password)
    database = quote_plus(config.database)
    driver = quote_plus(config.driver)
    return (
        f"mssql+pyodbc://{username}:{password}@{config.host}:{config.port}/{database}?"
        f"driver={driver}&TrustServerCertificate={config.trust_server_certificate}"
    )


def get_mssql_engine(
    config: dict | None = None,
    *,
    file_path: str | None = None,
    env_prefix: str = "MSSQL",
    reuse: bool = True,
) -> Engine:
    merged_config = load_connection_config(config, file_path=file_path, env_prefix=env_prefix, defaults={"port": 1433})
    validated_config = MSSQLConfig.model_validate(merged_config)
    LOGGER.info("Creating SQL Server engine with config=%s", redact_config(validated_config.model_dump()))

    def factory() -> Engine:
        return create_engine(
            _build_mssql_url(validated_config),
            pool_pre_ping=True,
            pool_size=5,
            max_overflow=10,
            connect_args={"timeout": validated_config.connection_timeout},
        )

    return get_or_create_engine("mssql", validated_config.model_dump(), factory, reuse=reuse)


class MSSQLConnector(DatabaseConnector):
    type_tag = "mssql"
    display_name = "SQL Server"
    description = "Microsoft SQL Server through pyodbc"
    dialect = "mssql"
    env_prefix = "MSSQL"
    connection_defaults = {"port": 1433}
    test_query = "SELECT 1 AS test_connection"

    def build_engine(self) -> Engine:
        connection = self.resolve_connection()
        return get_mssql_engine(connection, env_prefix=self.env_prefix, reuse=connection.get("reuse_engine", True))
