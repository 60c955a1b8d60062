import re
import sys
import tempfile
import types
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

from sqlalchemy import create_engine, text

ROOT = Path(__file__).resolve().parents[1]
ETL_PATH = ROOT / "etl"
if str(ETL_PATH) not in sys.path:
    sys.path.insert(0, str(ETL_PATH))

from connectors._engine_cache import dispose_all_engines  # noqa: E402
from connectors.sources.data_contract import ConnectorConfig, ExecutionContext, ExecutionResult  # noqa: E402
from connectors.sources.sql import (  # noqa: E402
    MSSQLConnector,
    ODBCConnector,
    OracleConnector,
    PostgresConnector,
    SQLiteConnector,
    build_odbc_connection_string,
    cursor_from_result,
    delta_settings,
    with_last_value,
)
from connectors.sources.sql.config import DatabaseOptions, ODBCConfig, PostgresConfig  # noqa: E402
from connectors.sources.sql.database_connector import validate_database_options  # noqa: E402
from connectors.sources.sql.odbc import map_odbc_type, to_qmark  # noqa: E402
from connectors.sources.sql.postgres import _build_postgres_url  # noqa: E402
from connectors.sources.sql.query_builder import (  # noqa: E402
    build_base_query,
    build_extraction_query,
    build_page_query,
    build_preview_query,
    has_clause,
    paginate,
    quote_identifier,
    sql_dialect,
    validate_select_query,
)

ORDERS = [
    (1, "acme", 10.5, "2024-01-01T00:00:00"),
    (2, "globex", 99.0, "2024-01-02T00:00:00"),
    (3, "initech", 5.25, "2024-01-03T00:00:00"),
    (4, "acme", 42.0, "2024-01-04T00:00:00"),
    (5, "umbrella", 7.0, "2024-01-05T00:00:00"),
]


def _seed_database(path: Path, rows=ORDERS) -> None:
    engine = create_engine(f"sqlite:///{path}")
    with engine.begin() as connection:
        connection.execute(
            text(
                "CREATE TABLE IF NOT EXISTS customers (name TEXT PRIMARY KEY)"
            )
        )
        connection.execute(
            text(
                "CREATE TABLE IF NOT EXISTS orders ("
                "id INTEGER PRIMARY KEY, customer TEXT NOT NULL REFERENCES customers(name), "
                "amount REAL, updated_at TEXT)"
            )
        )
        connection.execute(
            text("INSERT INTO orders (id, customer, amount, updated_at) VALUES (:id, :customer, :amount, :updated_at)"),
            [{"id": r[0], "customer": r[1], "amount": r[2], "updated_at": r[3]} for r in rows],
        )
    engine.dispose()


def _run(connector):
    batches = []
    context = ExecutionContext(
        execution_id="exec-sql",
        data_source_id=connector.config.id,
        project_id="proj",
        on_batch=batches.append,
    )
    return connector.run(context), batches


def _sqlite_config(path, **options):
    return {"id": "ds-sqlite", "type": "sqlite", "connection": {"filePath": str(path)}, "options": options}


class SQLiteConnectorTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.db_path = Path(self._tmp.name) / "shop.db"
        _seed_database(self.db_path)

    def tearDown(self):
        dispose_all_engines()
        self._tmp.cleanup()

    def test_table_extraction_in_pages(self):
        connector = SQLiteConnector(_sqlite_config(self.db_path, tableName="orders", batchSize=2))

        result, batches = _run(connector)
        connector.dispose()

        self.assertTrue(result.success, result.error)
        self.assertEqual(result.records_processed, 5)
        self.assertEqual([len(batch) for batch in batches], [2, 2, 1])
        self.assertEqual(batches[0][0]["customer"], "acme")
        self.assertEqual(result.metadata["columns"], ["id", "customer", "amount", "updated_at"])
        self.assertEqual(result.metadata["column_types"]["id"], "integer")
        self.assertEqual(result.metadata["column_types"]["amount"], "decimal")
        self.assertEqual(result.metadata["table_info"]["name"], "orders")

    def test_non_streamed_extraction_with_limit(self):
        connector = SQLiteConnector(_sqlite_config(self.db_path, tableName="orders", streaming=False, limit=3, orderBy="id"))

        result, batches = _run(connector)

        self.assertEqual(result.records_processed, 3)
        self.assertEqual([row["id"] for row in batches[0]], [1, 2, 3])

    def test_query_with_custom_where(self):
        options = {"query": "SELECT id, amount FROM orders WHERE amount > 6", "custom_where_clause": "customer = 'acme'"}
        connector = SQLiteConnector(_sqlite_config(self.db_path, **options))

        result, batches = _run(connector)

        self.assertEqual([row["id"] for batch in batches for row in batch], [1, 4])

    def test_derived_table_query_with_custom_where(self):
        options = {
            "query": "SELECT * FROM (SELECT * FROM orders WHERE amount > 6) x",
            "customWhereClause": "customer = 'acme'",
            "orderBy": "id",
        }
        connector = SQLiteConnector(_sqlite_config(self.db_path, **options))

        result, batches = _run(connector)

        self.assertTrue(result.success, result.error)
        self.assertEqual([row["id"] for batch in batches for row in batch], [1, 4])

    def test_schema_qualified_table_in_pages(self):
        connector = SQLiteConnector(_sqlite_config(self.db_path, tableName="main.orders", batchSize=2, offset=1))

        result, batches = _run(connector)

        self.assertTrue(result.success, result.error)
        self.assertEqual([row["id"] for batch in batches for row in batch], [2, 3, 4, 5])

    def test_delta_sync_reads_only_new_rows(self):
        options = {"tableName": "orders", "trackingColumn": "id", "trackingType": "integer", "lastValue": 2}
        connector = SQLiteConnector(_sqlite_config(self.db_path, **options))

        result, batches = _run(connector)

        self.assertEqual([row["id"] for batch in batches for row in batch], [3, 4, 5])
        self.assertEqual(result.metadata["delta"]["last_value"], 5)
        self.assertEqual(cursor_from_result(result), 5)

    def test_delta_sync_with_persisted_cursor(self):
        options = {"tableName": "orders", "deltaConfig": {"enabled": True, "trackingColumn": "updated_at"}}
        config = ConnectorConfig.model_validate(_sqlite_config(self.db_path, **options))

        resumed = with_last_value(config, "2024-01-04T00:00:00")
        result, batches = _run(SQLiteConnector(resumed))

        self.assertEqual([row["id"] for batch in batches for row in batch], [5])
        self.assertEqual(delta_settings(resumed).last_value, "2024-01-04T00:00:00")

    def test_explicit_last_value_wins_over_cursor(self):
        options = {"tableName": "orders", "trackingColumn": "id", "lastValue": 4}
        config = ConnectorConfig.model_validate(_sqlite_config(self.db_path, **options))

        self.assertIs(with_last_value(config, 1), config)

    def test_missing_file_path(self):
        result = SQLiteConnector({"id": "x", "type": "sqlite", "options": {"tableName": "orders"}}).validate_config()

        self.assertIn("MISSING_FILE_PATH", result.codes())

    def test_missing_database_file(self):
        config = _sqlite_config(Path(self._tmp.name) / "nope.db", tableName="orders")

        self.assertIn("FILE_NOT_FOUND", SQLiteConnector(config).validate_config().codes())

    def test_in_memory_needs_no_file(self):
        config = {"id": "x", "type": "sqlite", "connection": {"inMemory": True}, "options": {"query": "SELECT 1 AS one"}}

        self.assertTrue(SQLiteConnector(config).validate_config().is_valid)

    def test_invalid_query_is_rejected(self):
        for query in ("DELETE FROM orders", "SELECT 1; DROP TABLE orders"):
            with self.subTest(query=query):
                connector = SQLiteConnector(_sqlite_config(self.db_path, query=query))
                self.assertIn("INVALID_QUERY", connector.validate_config().codes())

                result, batches = _run(connector)
                self.assertEqual(result.error.code, "CONFIG_VALIDATION_ERROR")
                self.assertEqual(batches, [])

    def test_catalog_and_preview(self):
        connector = SQLiteConnector(_sqlite_config(self.db_path, tableName="orders"))

        tables = {table.name for table in connector.list_available_tables()}
        schema = connector.get_table_schema("orders")
        preview = connector.preview_data(limit=2)
        by_name = {column.name: column for column in schema.columns}

        self.assertEqual(tables, {"orders", "customers"})
        self.assertTrue(by_name["id"].primary_key)
        self.assertFalse(by_name["customer"].nullable)
        self.assertEqual(by_name["customer"].foreign_key.table, "customers")
        self.assertEqual(len(preview), 2)

    def test_test_connection_reports_version(self):
        result = SQLiteConnector(_sqlite_config(self.db_path, tableName="orders")).test_connection()

        self.assertTrue(result.success)
        self.assertTrue(result.version)


class NetworkDatabaseValidationTests(unittest.TestCase):
    def test_postgres_missing_fields(self):
        config = {"id": "pg", "type": "postgresql", "connection": {"port": "abc"}, "options": {}}

        codes = PostgresConnector(config).validate_config().codes()

        for code in ("MISSING_HOST", "INVALID_PORT", "MISSING_DATABASE", "MISSING_USERNAME", "MISSING_QUERY_OR_TABLE"):
            self.assertIn(code, codes)

    def test_postgres_default_port_and_env_password(self):
        config = {
            "id": "pg",
            "type": "postgresql",
            "connection": {"host": "db", "database": "shop", "username": "etl"},
            "options": {"tableName": "orders"},
        }
        connector = PostgresConnector(config)

        with patch.dict("os.environ", {"PG_PASSWORD": "from-env"}):
            resolved = connector.resolve_connection()
            result = connector.validate_config()

        self.assertTrue(result.is_valid, result.errors)
        self.assertEqual(resolved["port"], 5432)
        self.assertEqual(resolved["password"], "from-env")

    def test_postgres_url_escapes_credentials(self):
        url = _build_postgres_url(PostgresConfig(host="db", database="shop", username="etl", password="p@ss"))

        self.assertTrue(url.startswith("postgresql+psycopg://etl:"))
        self.assertIn("@db:5432/shop", url)

    def test_oracle_service_name_counts_as_database(self):
        config = {
            "id": "ora",
            "type": "oracle",
            "connection": {"host": "ora", "serviceName": "ORCLPDB1", "username": "etl"},
            "options": {"tableName": "orders"},
        }

        self.assertTrue(OracleConnector(config).validate_config().is_valid)

    def test_mssql_connection_failure_is_reported(self):
        config = {
            "id": "ms",
            "type": "mssql",
            "connection": {"host": "db", "database": "shop", "username": "sa"},
            "options": {"tableName": "orders"},
        }
        connector = MSSQLConnector(config)

        with patch.object(MSSQLConnector, "build_engine", side_effect=RuntimeError("no route to host")):
            result, _ = _run(connector)
            connection_check = connector.test_connection()

        self.assertEqual(result.error.code, "CONNECTION_ERROR")
        self.assertFalse(connection_check.success)
        self.assertIn("no route to host", connection_check.error)

    def test_tracking_validation(self):
        errors = validate_database_options({"table_name": "t", "delta_config": {"enabled": True}})
        bad_type = validate_database_options({"table_name": "t", "tracking_column": "id", "tracking_type": "uuid"})
        bad_batch = validate_database_options({"table_name": "t", "batch_size": 0})

        self.assertEqual([error.code for error in errors], ["MISSING_TRACKING_COLUMN"])
        self.assertEqual([error.code for error in bad_type], ["INVALID_TRACKING_TYPE"])
        self.assertEqual([error.code for error in bad_batch], ["INVALID_BATCH_SIZE"])


def _flat(sql: str) -> str:
    return " ".join(sql.split())


PG = sql_dialect("postgresql")
LITE = sql_dialect("sqlite")
MSSQL = sql_dialect("mssql")
ORACLE = sql_dialect("oracle")


class QueryBuilderTests(unittest.TestCase):
    def assertParamsBound(self, query):
        for name in re.findall(r"(?<![:\w]):(\w+)", query.sql):
            self.assertIn(name, query.params)

    def test_table_query_with_delta_filter(self):
        options = DatabaseOptions.model_validate(
            {"table_name": "events", "tracking_column": "updated_at", "last_value": "2024-01-01"}
        )

        query = build_base_query(options, PG)

        self.assertEqual(_flat(query.sql), "SELECT * FROM events WHERE updated_at > :last_value ORDER BY updated_at")
        self.assertEqual(query.params, {"last_value": "2024-01-01"})

    def test_integer_cursor_is_cast(self):
        options = DatabaseOptions.model_validate(
            {"table_name": "events", "tracking_column": "id", "tracking_type": "integer", "last_value": "41"}
        )

        self.assertEqual(build_extraction_query(options, LITE).params, {"last_value": 41})

    def test_table_window_is_bound(self):
        options = DatabaseOptions.model_validate({"table_name": "orders", "order_by": "id"})
        query = build_page_query(options, LITE, 10, 20)

        engine = create_engine("sqlite://")
        with engine.begin() as connection:
            connection.execute(text("CREATE TABLE orders (id INTEGER)"))
            connection.execute(text("INSERT INTO orders (id) VALUES (:id)"), [{"id": i} for i in range(1, 36)])
            rows = connection.execute(text(query.sql), query.params).scalars().all()
        engine.dispose()

        self.assertParamsBound(query)
        self.assertEqual(rows, list(range(21, 31)))

    def test_mssql_table_window_gets_an_order(self):
        options = DatabaseOptions.model_validate({"table_name": "dbo.orders", "limit": 10, "offset": 5})

        query = build_extraction_query(options, MSSQL)

        self.assertIn("FROM dbo.orders", _flat(query.sql))
        self.assertIn("ORDER BY (SELECT NULL)", query.sql)
        self.assertIn("FETCH", query.sql)
        self.assertParamsBound(query)

    def test_oracle_table_window(self):
        options = DatabaseOptions.model_validate({"table_name": "orders", "limit": 10})

        query = build_extraction_query(options, ORACLE)

        self.assertIn("FETCH FIRST", query.sql)
        self.assertNotIn("LIMIT", query.sql)
        self.assertParamsBound(query)

    def test_reserved_table_name_is_quoted(self):
        options = DatabaseOptions.model_validate({"table_name": "order"})

        self.assertEqual(_flat(build_base_query(options, PG).sql), 'SELECT * FROM "order"')
        self.assertEqual(_flat(build_base_query(options, MSSQL).sql), "SELECT * FROM [order]")

    def test_existing_placeholder_is_not_duplicated(self):
        options = DatabaseOptions.model_validate(
            {"query": "SELECT * FROM t WHERE id > :last_value", "tracking_column": "id", "last_value": 3}
        )

        query = build_extraction_query(options, PG)

        self.assertEqual(query.sql.count(":last_value"), 1)
        self.assertEqual(query.params["last_value"], "3")

    def test_custom_where_joins_existing_where(self):
        options = DatabaseOptions.model_validate({"query": "SELECT * FROM t WHERE a = 1", "custom_where_clause": "b = 2"})

        self.assertEqual(build_extraction_query(options, PG).sql, "SELECT * FROM t WHERE a = 1 AND b = 2")

    def test_where_inside_derived_table_is_not_top_level(self):
        options = DatabaseOptions.model_validate(
            {"query": "SELECT * FROM (SELECT * FROM t WHERE a > 0) x", "custom_where_clause": "b = 1"}
        )

        sql = build_extraction_query(options, LITE).sql

        self.assertEqual(sql, "SELECT * FROM (SELECT * FROM t WHERE a > 0) x WHERE b = 1")
        self.assertFalse(has_clause("SELECT * FROM (SELECT a FROM t ORDER BY a) x", "order by"))
        self.assertTrue(has_clause("SELECT a FROM t WHERE a IN (SELECT 1) ORDER BY a", "order by"))

    def test_grouped_query_is_wrapped_before_filtering(self):
        options = DatabaseOptions.model_validate(
            {"query": "SELECT customer, COUNT(*) AS n FROM orders GROUP BY customer", "custom_where_clause": "n > 1"}
        )

        sql = build_extraction_query(options, LITE).sql

        self.assertEqual(sql, "SELECT * FROM (SELECT customer, COUNT(*) AS n FROM orders GROUP BY customer) src WHERE n > 1")

    def test_raw_query_delta_column_is_quoted_for_dialect(self):
        options = DatabaseOptions.model_validate(
            {"query": "SELECT * FROM t", "tracking_column": "UpdatedAt", "last_value": "2024-01-01"}
        )

        self.assertEqual(
            build_base_query(options, PG).sql,
            'SELECT * FROM t WHERE "UpdatedAt" > :last_value ORDER BY "UpdatedAt"',
        )
        self.assertIn("[UpdatedAt] > :last_value", build_base_query(options, MSSQL).sql)

    def test_raw_query_pagination(self):
        self.assertEqual(paginate("SELECT * FROM t", 10, 0, ORACLE), "SELECT * FROM t OFFSET 0 ROWS FETCH NEXT 10 ROWS ONLY")
        self.assertEqual(
            paginate("SELECT * FROM t", 10, 5, MSSQL),
            "SELECT * FROM t ORDER BY (SELECT NULL) OFFSET 5 ROWS FETCH NEXT 10 ROWS ONLY",
        )
        self.assertEqual(paginate("SELECT * FROM t", None, 5, LITE), "SELECT * FROM t LIMIT -1 OFFSET 5")
        self.assertEqual(paginate("SELECT * FROM t LIMIT 3", 2, 0, LITE), "SELECT * FROM (SELECT * FROM t LIMIT 3) src LIMIT 2")
        self.assertEqual(paginate("SELECT * FROM (SELECT * FROM t LIMIT 3) x", 2, 0, LITE), "SELECT * FROM (SELECT * FROM t LIMIT 3) x LIMIT 2")
        self.assertEqual(paginate("SELECT * FROM t", None, 0, LITE), "SELECT * FROM t")

    def test_preview_query(self):
        options = DatabaseOptions.model_validate({"table_name": "orders"})
        raw = DatabaseOptions.model_validate({"query": "SELECT id FROM orders"})

        table_preview = build_preview_query(options, PG, 5)
        other_preview = build_preview_query(options, PG, 5, "other")

        self.assertTrue(_flat(table_preview.sql).startswith("SELECT * FROM orders LIMIT"))
        self.assertParamsBound(table_preview)
        self.assertTrue(_flat(other_preview.sql).startswith("SELECT * FROM other"))
        self.assertEqual(build_preview_query(raw, PG, 5).sql, "SELECT id FROM orders LIMIT 5")

    def test_select_validation(self):
        self.assertIsNone(validate_select_query("WITH x AS (SELECT 1) SELECT * FROM x;"))
        self.assertIsNone(validate_select_query("SELECT ';' AS semicolon"))
        self.assertIsNotNone(validate_select_query("UPDATE t SET a = 1"))
        self.assertIsNotNone(validate_select_query("SELECT 1; SELECT 2"))
        self.assertIsNotNone(validate_select_query("   "))

    def test_quote_identifier(self):
        self.assertEqual(quote_identifier("orders", PG), "orders")
        self.assertEqual(quote_identifier("Sales.order", PG), '"Sales"."order"')
        self.assertEqual(quote_identifier("a]b", MSSQL), "[a]]b]")


class ODBCConnectorTests(unittest.TestCase):
    def _config(self, **connection):
        values = {"driver": "ODBC Driver 18 for SQL Server", "host": "db", "port": 1433, "database": "shop", "username": "sa", "password": "secret"}
        values.update(connection)
        return {"id": "odbc", "type": "odbc", "connection": values, "options": {"query": "SELECT id, name FROM items"}}

    def _fake_pyodbc(self, rows=((1, "a"), (2, "b"))):
        cursor = MagicMock()
        cursor.description = [("id", int), ("name", str)]
        cursor.fetchall.return_value = [tuple(row) for row in rows]
        connection = MagicMock()
        connection.cursor.return_value = cursor
        connection.getinfo.return_value = "16.0"
        module = types.ModuleType("pyodbc")
        module.connect = MagicMock(return_value=connection)
        module.SQL_DBMS_VER = 18
        return module, connection, cursor

    def test_connection_string_variants(self):
        components = build_odbc_connection_string(ODBCConfig(driver="X", host="h", port=1, database="d", username="u", password="p", odbc_options={"Encrypt": "yes"}))
        dsn = build_odbc_connection_string(ODBCConfig(dsn="Warehouse", username="u", password="p"))
        explicit = build_odbc_connection_string(ODBCConfig(connection_string="DSN=Raw"))

        self.assertEqual(components, "DRIVER={X};SERVER=h,1;DATABASE=d;UID=u;PWD=p;Encrypt=yes;")
        self.assertEqual(dsn, "DSN=Warehouse;UID=u;PWD=p")
        self.assertEqual(explicit, "DSN=Raw")

    def test_validation_codes(self):
        connector = ODBCConnector({"id": "o", "type": "odbc", "connection": {"port": 70000}, "options": {"table_name": "t"}})
        codes = connector.validate_config().codes()

        self.assertEqual(codes, ["MISSING_DRIVER_OR_DSN", "MISSING_DATABASE", "MISSING_USERNAME", "INVALID_PORT"])

    def test_connection_string_skips_component_checks(self):
        connector = ODBCConnector({"id": "o", "type": "odbc", "connection": {"connectionString": "DSN=x"}, "options": {"table_name": "t"}})

        with patch.dict(sys.modules, {"pyodbc": self._fake_pyodbc()[0]}):
            self.assertTrue(connector.validate_config().is_valid)

    def test_run_with_fake_driver(self):
        module, connection, cursor = self._fake_pyodbc()
        connector = ODBCConnector(self._config())

        with patch.dict(sys.modules, {"pyodbc": module}):
            result, batches = _run(connector)

        self.assertTrue(result.success, result.error)
        self.assertEqual(batches, [[{"id": 1, "name": "a"}, {"id": 2, "name": "b"}]])
        connection_string = module.connect.call_args.args[0]
        self.assertIn("PWD=secret", connection_string)
        self.assertEqual(module.connect.call_args.kwargs, {"timeout": 30})
        connection.close.assert_called()

    def test_test_connection_reports_dbms_version(self):
        module, _, _ = self._fake_pyodbc(rows=[(1, "x")])
        with patch.dict(sys.modules, {"pyodbc": module}):
            result = ODBCConnector(self._config()).test_connection()

        self.assertTrue(result.success, result.error)
        self.assertEqual(result.version, "16.0")

    def test_missing_driver_fails_closed(self):
        connector = ODBCConnector(self._config())

        with patch.dict(sys.modules, {"pyodbc": None}):
            validation = connector.validate_config()
            result, _ = _run(connector)

        self.assertTrue(validation.is_valid)
        self.assertTrue(validation.warnings[0].startswith("DRIVER_UNAVAILABLE"))
        self.assertFalse(result.success)
        self.assertEqual(result.error.code, "DRIVER_UNAVAILABLE")

    def test_to_qmark_preserves_literals(self):
        sql, values = to_qmark("SELECT ':skip' AS s FROM t WHERE a > :a AND b = :b", {"a": 1, "b": "x"})

        self.assertEqual(sql, "SELECT ':skip' AS s FROM t WHERE a > ? AND b = ?")
        self.assertEqual(values, [1, "x"])

    def test_map_odbc_type(self):
        self.assertEqual(map_odbc_type("BIGINT"), "integer")
        self.assertEqual(map_odbc_type("NVARCHAR"), "string")
        self.assertEqual(map_odbc_type("MONEY"), "decimal")
        self.assertEqual(map_odbc_type("DATETIME2"), "datetime")
        self.assertEqual(map_odbc_type("BIT"), "boolean")


class IncrementalTests(unittest.TestCase):
    def test_cursor_from_failed_result_is_none(self):
        self.assertIsNone(cursor_from_result(ExecutionResult(success=False, metadata={"delta": {"last_value": 3}})))

    def test_delta_settings_off_without_tracking_column(self):
        config = ConnectorConfig(id="x", type="sqlite", options={"table_name": "t"})

        self.assertIsNone(delta_settings(config))


if __name__ == "__main__":
    unittest.main()
