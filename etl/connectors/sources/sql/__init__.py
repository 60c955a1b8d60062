from .config import DatabaseOptions, DeltaConfig, MSSQLConfig, ODBCConfig, OracleConfig, PostgresConfig, SQLiteConfig
from .database_connector import DatabaseConnector
from .incremental import cursor_from_result, delta_settings, with_last_value
from .mssql import MSSQLConnector, get_mssql_engine
from .odbc import ODBCConnector, build_odbc_connection_string
from .oracle import OracleConnector, get_oracle_engine
from .postgres import PostgresConnector, get_postgres_engine
from .query_builder import ExtractionQuery, build_extraction_query
from .sqlite import SQLiteConnector, get_sqlite_engine

__all__ = [
    "SQLiteConfig",
    "PostgresConfig",
    "MSSQLConfig",
    "OracleConfig",
    "ODBCConfig",
    "DatabaseOptions",
    "DeltaConfig",
    "DatabaseConnector",
    "SQLiteConnector",
    "PostgresConnector",
    "MSSQLConnector",
    "OracleConnector",
    "ODBCConnector",
    "ExtractionQuery",
    "build_extraction_query",
    "build_odbc_connection_string",
    "get_sqlite_engine",
    "get_postgres_engine",
    "get_mssql_engine",
    "get_oracle_engine",
    "cursor_from_result",
    "delta_settings",
    "with_last_value",
]
