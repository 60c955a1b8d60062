"""Generic ODBC connector on top of pyodbc.

pyodbc needs a native driver manager, so it is imported lazily: without it
validation reports a warning and connecting fails with ``DRIVER_UNAVAILABLE``.
"""

import re
from typing import Any

from ..._logging import redact_connection_string
from ..base_connector import validation_error
from ..data_contract import ColumnInfo, ConnectorConfig, Record, TableInfo, ValidationError
from ..errors import ConnectorConnectionError, ConnectorError, ErrorCode
from .config import ODBCConfig
from .database_connector import DatabaseConnector

_NAMED_PARAM = re.compile(r"(?<![:\w]):([A-Za-z_]\w*)")
_STRING_LITERAL = re.compile(r"'(?:[^']|'')*'")


def load_pyodbc():
    try:
        import pyodbc  # type: ignore
    except ImportError as exc:
        raise ConnectorError(
            "pyodbc is not installed. Install it with the 'odbc' extra and an ODBC driver manager.",
            code=ErrorCode.DRIVER_UNAVAILABLE,
        ) from exc
    return pyodbc


def build_odbc_connection_string(config: ODBCConfig) -> str:
    """Explicit connection string, else DSN, else DRIVER/SERVER components."""
    if config.connection_string:
        return config.connection_string

    credentials = f"UID={config.username or ''};PWD={config.password or ''}"
    if config.dsn:
        return f"DSN={config.dsn};{credentials}"

    parts = [f"DRIVER={{{config.driver}}}"]
    if config.host:
        parts.append(f"SERVER={config.host}{',' + str(config.port) if config.port else ''}")
    parts.append(f"DATABASE={config.database or ''}")
    parts.append(credentials)
    parts.extend(f"{key}={value}" for key, value in config.odbc_options.items())
    return ";".join(parts) + ";"


def map_odbc_type(type_name: str | None) -> str:
    upper = (type_name or "").upper()
    if "INT" in upper or "SERIAL" in upper:
        return "integer"
    if "CHAR" in upper or "TEXT" in upper:
        return "string"
    if any(token in upper for token in ("DECIMAL", "NUMERIC", "MONEY", "FLOAT", "DOUBLE", "REAL")):
        return "decimal"
    if "DATE" in upper or "TIME" in upper:
        return "datetime"
    if "BOOL" in upper or "BIT" in upper:
        return "boolean"
    if any(token in upper for token in ("BLOB", "BINARY", "IMAGE")):
        return "binary"
    if "JSON" in upper:
        return "json"
    if "XML" in upper:
        return "xml"
    return "string"


def to_qmark(sql: str, params: dict[str, Any] | None) -> tuple[str, list[Any]]:
    """Rewrite ``:name`` placeholders to ``?`` and order the values to match."""
    if not params:
        return sql, []

    values: list[Any] = []
    pieces: list[str] = []
    position = 0
    for literal in _STRING_LITERAL.finditer(sql):
        pieces.append(_replace_named(sql[position : literal.start()], params, values))
        pieces.append(literal.group(0))
        position = literal.end()
    pieces.append(_replace_named(sql[position:], params, values))
    return "".join(pieces), values


def _replace_named(fragment: str, params: dict[str, Any], values: list[Any]) -> str:
    def replace(match: re.Match) -> str:
        name = match.group(1)
        if name not in params:
            return match.group(0)
        values.append(params[name])
        return "?"

    return _NAMED_PARAM.sub(replace, fragment)


class ODBCConnector(DatabaseConnector):
    type_tag = "odbc"
    display_name = "ODBC Database"
    description = "Any ODBC compliant database (Access, DB2, Informix and others)"
    dialect = "odbc"
    env_prefix = "ODBC"

    def __init__(self, config):
        super().__init__(config)
        self._odbc = None

    def odbc_config(self) -> ODBCConfig:
        return ODBCConfig.model_validate(self.resolve_connection())

    def _validate_connection(self, connection: dict[str, Any]) -> list[ValidationError]:
        if connection.get("connection_string"):
            return []

        errors: list[ValidationError] = []
        if not connection.get("dsn") and not connection.get("driver"):
            errors.append(
                validation_error("connection.driver", "MISSING_DRIVER_OR_DSN", "Either ODBC driver name or DSN is required")
            )
        if not connection.get("database") and not connection.get("dsn"):
            errors.append(
                validation_error("connection.database", "MISSING_DATABASE", "Database name is required when not using DSN")
            )
        if not connection.get("username"):
            errors.append(validation_error("connection.username", "MISSING_USERNAME", "Username is required"))
        port = connection.get("port")
        if port not in (None, ""):
            try:
                valid_port = 0 < int(port) <= 65535
            except (TypeError, ValueError):
                valid_port = False
            if not valid_port:
                errors.append(validation_error("connection.port", "INVALID_PORT", "Valid port number is required"))
        return errors

    def _connection_warnings(self, config: ConnectorConfig) -> list[str]:
        try:
            load_pyodbc()
        except ConnectorError as exc:
            return [f"{ErrorCode.DRIVER_UNAVAILABLE.value}: {exc.message}"]
        return []

    def build_engine(self):
        raise NotImplementedError("ODBC connections are opened through pyodbc directly")

    def open_connection(self) -> None:
        if self._odbc is not None:
            return
        pyodbc = load_pyodbc()
        config = self.odbc_config()
        connection_string = build_odbc_connection_string(config)
        self.logger.info("Connecting to ODBC database: %s", redact_connection_string(connection_string))
        try:
            self._odbc = pyodbc.connect(connection_string, timeout=config.connection_timeout)
        except Exception as exc:
            raise ConnectorConnectionError(f"Failed to connect to ODBC database: {exc}") from exc

    def close_connection(self) -> None:
        if self._odbc is None:
            return
        try:
            self._odbc.close()
            self.logger.debug("ODBC connection closed")
        finally:
            self._odbc = None

    def execute_query(self, sql: str, params: dict[str, Any] | None = None) -> list[Record]:
        if self._odbc is None:
            self.open_connection()
        statement, values = to_qmark(sql, params)
        cursor = self._odbc.cursor()
        try:
            cursor.execute(statement, *values)
            if cursor.description is None:
                return []
            columns = [column[0] for column in cursor.description]
            return [dict(zip(columns, row)) for row in cursor.fetchall()]
        finally:
            cursor.close()

    def get_table_list(self) -> list[TableInfo]:
        schema = self.odbc_config().schema_name
        cursor = self._odbc.cursor()
        try:
            rows = list(cursor.tables(schema=schema, tableType="TABLE,VIEW"))
        finally:
            cursor.close()
        return [
            TableInfo(
                name=row.table_name,
                schema_name=getattr(row, "table_schem", None) or schema,
                type="view" if "view" in str(row.table_type).lower() else "table",
                description=getattr(row, "remarks", None) or None,
            )
            for row in rows
        ]

    def get_table_columns(self, table_name: str) -> list[ColumnInfo]:
        schema = self.odbc_config().schema_name
        cursor = self._odbc.cursor()
        try:
            primary_keys = {row.column_name for row in cursor.primaryKeys(table_name, schema=schema)}
            columns = list(cursor.columns(table=table_name, schema=schema))
        finally:
            cursor.close()
        return [
            ColumnInfo(
                name=column.column_name,
                type=map_odbc_type(column.type_name),
                nullable=column.nullable == 1,
                primary_key=column.column_name in primary_keys,
                default_value=getattr(column, "column_def", None),
                description=getattr(column, "remarks", None) or None,
            )
            for column in columns
        ]

    def server_version(self) -> str | None:
        if self._odbc is None:
            return None
        pyodbc = load_pyodbc()
        try:
            return str(self._odbc.getinfo(pyodbc.SQL_DBMS_VER))
        except Exception:
            self.logger.debug("ODBC driver did not report a DBMS version", exc_info=True)
            return None

    def _release(self) -> None:
        self.close_connection()
