"""SQLAlchemy backed connector base shared by the relational sources."""

from abc import abstractmethod
from typing import Any, ClassVar, Iterator

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import inspect, text, types
from sqlalchemy.engine import Connection, Engine

from ..._config import load_connection_config, normalize_keys
from ..._engine_cache import is_cached
from ..base_connector import BaseConnector, RunTracker, pydantic_errors, validation_error
from ..data_contract import ColumnInfo, ConnectorConfig, ForeignKeyRef, Record, TableInfo, ValidationError
from ..errors import ConnectorConnectionError
from ..type_inference import column_types
from .config import DatabaseOptions
from .query_builder import (
    build_base_query,
    build_extraction_query,
    build_page_query,
    build_preview_query,
    sql_dialect,
    validate_select_query,
)

TRACKING_TYPES = {"timestamp", "integer", "version"}


def semantic_type(column_type: Any) -> str:
    """Collapse a SQLAlchemy column type into the connector type vocabulary."""
    if isinstance(column_type, types.Boolean):
        return "boolean"
    if isinstance(column_type, types.Integer):
        return "integer"
    if isinstance(column_type, (types.Numeric, types.Float)):
        return "decimal"
    if isinstance(column_type, (types.DateTime, types.Date, types.Time)):
        return "datetime"
    if isinstance(column_type, types.JSON):
        return "json"
    if isinstance(column_type, types.LargeBinary):
        return "binary"
    if isinstance(column_type, types.String):
        return "string"
    return str(column_type).lower()


def validate_database_options(options: dict[str, Any]) -> list[ValidationError]:
    errors: list[ValidationError] = []
    if not options.get("query") and not options.get("table_name"):
        errors.append(
            validation_error("options", "MISSING_QUERY_OR_TABLE", "Either a query or a table_name must be provided")
        )

    batch_size = options.get("batch_size")
    if batch_size is not None:
        try:
            invalid_batch = int(batch_size) <= 0
        except (TypeError, ValueError):
            invalid_batch = True
        if invalid_batch:
            errors.append(validation_error("options.batch_size", "INVALID_BATCH_SIZE", "Batch size must be greater than 0"))

    query = options.get("query")
    if query:
        problem = validate_select_query(str(query))
        if problem:
            errors.append(validation_error("options.query", "INVALID_QUERY", problem))

    delta = dict(options.get("delta_config") or {})
    if "tracking_column" in options:
        delta.setdefault("enabled", True)
        delta.setdefault("tracking_column", options.get("tracking_column"))
        delta.setdefault("tracking_type", options.get("tracking_type"))
    if delta.get("enabled"):
        if not delta.get("tracking_column"):
            errors.append(
                validation_error(
                    "options.delta_config.tracking_column",
                    "MISSING_TRACKING_COLUMN",
                    "Tracking column is required for delta sync",
                )
            )
        tracking_type = delta.get("tracking_type")
        if tracking_type is not None and tracking_type not in TRACKING_TYPES:
            errors.append(
                validation_error(
                    "options.delta_config.tracking_type",
                    "INVALID_TRACKING_TYPE",
                    f"Tracking type must be one of: {', '.join(sorted(TRACKING_TYPES))}",
                )
            )
    return errors


def _max_value(current: Any, candidate: Any) -> Any:
    if candidate is None:
        return current
    if current is None:
        return candidate
    try:
        return candidate if candidate > current else current
    except TypeError:
        return candidate if str(candidate) > str(current) else current


class DatabaseConnector(BaseConnector):
    """Relational source: connection lifecycle, catalog and paged extraction.

    Variants provide ``build_engine`` and the connection checks that apply to
    them. Extraction pages through the base query with a fixed page size
    (``batch_size``) until a short page comes back, so each batch is one
    round trip and cancellation is honoured between pages.
    """

    category = "database"
    capabilities = frozenset({"preview_data", "list_available_tables", "get_table_schema"})
    dialect: ClassVar[str] = "generic"
    env_prefix: ClassVar[str | None] = None
    connection_defaults: ClassVar[dict[str, Any]] = {}
    test_query: ClassVar[str] = "SELECT 1 AS test_connection"

    def __init__(self, config):
        super().__init__(config)
        self._engine: Engine | None = None
        self._connection: Connection | None = None

    # -- configuration -----------------------------------------------------

    def resolve_connection(self, config: ConnectorConfig | None = None) -> dict[str, Any]:
        """Connection values after layering defaults and prefixed environment variables."""
        target = config or self.config
        return load_connection_config(
            normalize_keys(target.connection),
            env_prefix=self.env_prefix,
            defaults=self.connection_defaults,
        )

    def extraction_options(self) -> DatabaseOptions:
        return DatabaseOptions.model_validate(self.options)

    @property
    def sql_dialect(self):
        return sql_dialect(self.dialect)

    def _validate_connection(self, connection: dict[str, Any]) -> list[ValidationError]:
        errors: list[ValidationError] = []
        if not connection.get("host"):
            errors.append(validation_error("connection.host", "MISSING_HOST", "Database host is required"))

        try:
            port = int(connection.get("port") or 0)
        except (TypeError, ValueError):
            port = 0
        if not 0 < port <= 65535:
            errors.append(validation_error("connection.port", "INVALID_PORT", "Valid port number is required"))

        if not connection.get("database"):
            errors.append(validation_error("connection.database", "MISSING_DATABASE", "Database name is required"))
        if not connection.get("username"):
            errors.append(validation_error("connection.username", "MISSING_USERNAME", "Username is required"))
        return errors

    def _validate(self, config: ConnectorConfig) -> tuple[list[ValidationError], list[str]]:
        errors = self._validate_connection(self.resolve_connection(config))
        options = normalize_keys(config.options)
        option_errors = validate_database_options(options)
        if not option_errors:
            try:
                DatabaseOptions.model_validate(options)
            except PydanticValidationError as exc:
                option_errors = pydantic_errors(exc, "options", "INVALID_OPTION")
        return errors + option_errors, self._connection_warnings(config)

    def _connection_warnings(self, config: ConnectorConfig) -> list[str]:
        return []

    # -- connection lifecycle ---------------------------------------------

    @abstractmethod
    def build_engine(self) -> Engine:
        """Return the SQLAlchemy engine for this source."""

    def open_connection(self) -> None:
        if self._connection is not None:
            return
        try:
            if self._engine is None:
                self._engine = self.build_engine()
            self._connection = self._engine.connect()
        except Exception as exc:
            raise ConnectorConnectionError(f"Could not connect to {self.display_name or self.dialect}: {exc}") from exc
        self.logger.debug("Opened %s connection for %s", self.dialect, self.config.id)

    def close_connection(self) -> None:
        if self._connection is None:
            return
        try:
            self._connection.close()
        finally:
            self._connection = None
            self.logger.debug("Closed %s connection for %s", self.dialect, self.config.id)

    def execute_query(self, sql: str, params: dict[str, Any] | None = None) -> list[Record]:
        if self._connection is None:
            self.open_connection()
        result = self._connection.execute(text(sql), params or {})
        return [dict(row._mapping) for row in result]

    def get_table_list(self) -> list[TableInfo]:
        schema = self.resolve_connection().get("schema") or None
        inspector = inspect(self._connection)
        tables = [TableInfo(name=name, schema_name=schema, type="table") for name in inspector.get_table_names(schema=schema)]
        tables.extend(TableInfo(name=name, schema_name=schema, type="view") for name in inspector.get_view_names(schema=schema))
        return tables

    def get_table_columns(self, table_name: str) -> list[ColumnInfo]:
        schema, _, name = table_name.rpartition(".")
        schema = schema or self.resolve_connection().get("schema") or None
        inspector = inspect(self._connection)
        primary_keys = set(inspector.get_pk_constraint(name, schema=schema).get("constrained_columns") or [])
        foreign_keys: dict[str, ForeignKeyRef] = {}
        for foreign_key in inspector.get_foreign_keys(name, schema=schema):
            for local, remote in zip(foreign_key["constrained_columns"], foreign_key["referred_columns"]):
                foreign_keys[local] = ForeignKeyRef(table=foreign_key["referred_table"], column=remote)

        return [
            ColumnInfo(
                name=column["name"],
                type=semantic_type(column["type"]),
                nullable=bool(column.get("nullable", True)),
                primary_key=column["name"] in primary_keys,
                foreign_key=foreign_keys.get(column["name"]),
                default_value=column.get("default"),
                description=column.get("comment"),
            )
            for column in inspector.get_columns(name, schema=schema)
        ]

    def server_version(self) -> str | None:
        info = getattr(self._connection.dialect, "server_version_info", None) if self._connection else None
        return ".".join(str(part) for part in info) if info else None

    def _open(self) -> None:
        self.open_connection()

    def _close(self) -> None:
        self.close_connection()

    def _connection_check(self) -> str | None:
        self.open_connection()
        self.execute_query(self.test_query)
        version = self.server_version()
        self.close_connection()
        return version

    def _release(self) -> None:
        if self._engine is not None and not is_cached(self._engine):
            self._engine.dispose()
        self._engine = None

    # -- capabilities ------------------------------------------------------

    def list_available_tables(self) -> list[TableInfo]:
        self.open_connection()
        try:
            return self.get_table_list()
        finally:
            self.close_connection()

    def get_table_schema(self, table_name: str) -> TableInfo:
        self.open_connection()
        try:
            columns = self.get_table_columns(table_name)
        finally:
            self.close_connection()
        return TableInfo(name=table_name, type="table", columns=columns)

    def preview_data(self, limit: int = 10, table_name: str | None = None) -> list[Record]:
        options = self.extraction_options()
        if not table_name and not options.query and not options.table_name:
            raise ValueError("No query or table name specified for preview")
        query = build_preview_query(options, self.sql_dialect, limit, table_name)
        self.open_connection()
        try:
            return self.execute_query(query.sql, query.params)
        finally:
            self.close_connection()

    # -- extraction --------------------------------------------------------

    def _iter_batches(self, run: RunTracker) -> Iterator[list[Record]]:
        options = self.extraction_options()
        delta = options.delta_config
        last_value = delta.last_value if options.delta_active else None
        run.set_totals(total_records=options.limit)
        self._describe_source(run, options)

        if options.streaming:
            base = build_base_query(options, self.sql_dialect)
            run.metadata["query"] = base.sql
            run.log("debug", f"Streaming query in pages of {options.batch_size}: {base.sql}")
            offset = options.offset
            remaining = options.limit
            while remaining is None or remaining > 0:
                page_size = options.batch_size if remaining is None else min(options.batch_size, remaining)
                page = build_page_query(options, self.sql_dialect, page_size, offset)
                rows = self.execute_query(page.sql, page.params)
                if rows:
                    last_value = self._observe(run, rows, options, last_value)
                    yield rows
                if len(rows) < page_size:
                    break
                offset += len(rows)
                if remaining is not None:
                    remaining -= len(rows)
        else:
            query = build_extraction_query(options, self.sql_dialect)
            run.metadata["query"] = query.sql
            rows = self.execute_query(query.sql, query.params)
            run.set_totals(total_records=len(rows))
            if rows:
                last_value = self._observe(run, rows, options, last_value)
            for start in range(0, len(rows), options.batch_size):
                yield rows[start : start + options.batch_size]

        if options.delta_active:
            run.metadata["delta"] = {
                "tracking_column": delta.tracking_column,
                "tracking_type": delta.tracking_type,
                "last_value": last_value,
            }

    def _describe_source(self, run: RunTracker, options: DatabaseOptions) -> None:
        if not (options.table_name and options.include_schema):
            return
        try:
            columns = self.get_table_columns(options.table_name)
        except Exception as exc:
            run.log("warn", f"Failed to get table info for {options.table_name}", str(exc))
            return
        run.metadata["table_info"] = TableInfo(name=options.table_name, columns=columns).model_dump()
        run.metadata["column_types"] = {column.name: column.type for column in columns}

    def _observe(self, run: RunTracker, rows: list[Record], options: DatabaseOptions, last_value: Any) -> Any:
        if "columns" not in run.metadata:
            run.metadata["columns"] = list(rows[0].keys())
            run.metadata.setdefault("column_types", column_types(rows))
        if options.delta_active:
            column = options.delta_config.tracking_column
            for row in rows:
                last_value = _max_value(last_value, row.get(column))
        return last_value


__all__ = ["DatabaseConnector", "semantic_type", "validate_database_options"]
