from urllib.parse import quote_plus

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from ..._config import load_connection_config
from ..._engine_cache import get_or_create_engine
from ..._logging import get_logger, redact_config
from .config import PostgresConfig
from .database_connector import DatabaseConnector

LOGGER = get_logger("connectors.sources.sql.postgres")


def _build_postgres_url(config: PostgresConfig) -> str:
    username = quote_plus(config.username)
    password = quote_plus(config.password)
    database = quote_plus(config.database)
    url = f"postgresql+psycopg://{username}:{password}@{config.host}:{config.port}/{database}"
    if config.ssl:
        url += "?sslmode=require"
    return url


def get_postgres_engine(
    config: dict | None = None,
    *,
    file_path: str | None = None,
    env_prefix: str = "PG",
    reuse: bool = True,
) -> Engine:
    merged_config = load_connection_config(config, file_path=file_path, env_prefix=env_prefix, defaults={"port": 5432})
    validated_config = PostgresConfig.model_validate(merged_config)
    LOGGER.info("Creating Postgres engine with config=%s", redact_config(validated_config.model_dump()))

    def factory() -> Engine:
        connect_args = {"connect_timeout": validated_config.connection_timeout}
        if validated_config.schema_name:
            connect_args["options"] = f"-csearch_path={validated_config.schema_name}"
        return create_engine(
            _build_postgres_url(validated_config),
            pool_pre_ping=True,
            pool_size=5,
            max_overflow=10,
            connect_args=connect_args,
        )

    return get_or_create_engine("postgresql", validated_config.model_dump(), factory, reuse=reuse)


class PostgresConnector(DatabaseConnector):
    type_tag = "postgresql"
    display_name = "PostgreSQL"
    description = "PostgreSQL database through psycopg"
    dialect = "postgresql"
    env_prefix = "PG"
    connection_defaults = {"port": 5432}

    def build_engine(self) -> Engine:
        connection = self.resolve_connection()
        return get_postgres_engine(connection, env_prefix=self.env_prefix, reuse=connection.get("reuse_engine", True))
