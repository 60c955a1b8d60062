"""SQL construction for extraction, pagination and delta filtering.

Table extractions are SQLAlchemy Core selects compiled for the source's
dialect. A raw query is kept verbatim and its extra clauses are appended as
text, checking only its top level for clauses it already has.
"""

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from functools import lru_cache
from typing import Any

from sqlalchemy import bindparam, column, literal_column, select, table, text
from sqlalchemy.dialects import mssql, oracle, postgresql, sqlite
from sqlalchemy.engine import Dialect
from sqlalchemy.engine.default import DefaultDialect
from sqlalchemy.sql import Select

from .config import DatabaseOptions

LAST_VALUE_PARAM = "last_value"

_STRING_LITERAL = re.compile(r"'(?:[^']|'')*'")
_LINE_COMMENT = re.compile(r"--[^\n]*")
_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)
_WRAP_TRIGGERS = re.compile(r"\b(group\s+by|order\s+by|having|limit|fetch|offset|union|intersect|except)\b", re.I)
_FETCH_DIALECTS = {"mssql", "oracle"}
_DIALECT_FACTORIES = {
    "sqlite": sqlite.dialect,
    "postgresql": postgresql.dialect,
    "mssql": mssql.dialect,
    "oracle": oracle.dialect,
}


@dataclass
class ExtractionQuery:
    sql: str
    params: dict[str, Any] = field(default_factory=dict)


@lru_cache(maxsize=None)
def sql_dialect(name: str) -> Dialect:
    """Dialect rendering SQL text with ``:name`` bind parameters."""
    factory = _DIALECT_FACTORIES.get(name, DefaultDialect)
    return factory(paramstyle="named")


def _strip_literals(sql: str) -> str:
    """Blank out string literals and comments so keyword checks ignore them."""
    sql = _BLOCK_COMMENT.sub(" ", sql)
    sql = _LINE_COMMENT.sub(" ", sql)
    return _STRING_LITERAL.sub("''", sql)


def _top_level(sql: str) -> str:
    """``sql`` with literals, comments and everything inside parentheses blanked."""
    depth = 0
    kept = []
    for char in _strip_literals(sql):
        if char == "(":
            depth += 1
        elif char == ")":
            depth = max(depth - 1, 0)
            char = " "
        kept.append(char if depth == 0 else " ")
    return "".join(kept)


def has_clause(sql: str, keyword: str) -> bool:
    """True when ``keyword`` appears in ``sql`` outside any subquery."""
    pattern = r"\b" + r"\s+".join(keyword.split()) + r"\b"
    return re.search(pattern, _top_level(sql), re.IGNORECASE) is not None


def validate_select_query(sql: str) -> str | None:
    """Return an error message when ``sql`` is not a single read-only statement."""
    stripped = _strip_literals(sql).strip().rstrip(";").strip()
    if not stripped:
        return "Query is empty"
    first_word = stripped.split(None, 1)[0].lower()
    if first_word not in {"select", "with"}:
        return "Only SELECT queries are allowed"
    if ";" in stripped:
        return "Only a single statement is allowed"
    return None


def quote_identifier(name: str, dialect: Dialect) -> str:
    """Quote a possibly schema-qualified identifier where ``dialect`` requires it."""
    preparer = dialect.identifier_preparer
    return ".".join(preparer.quote(part) for part in name.split(".") if part)


def format_delta_value(value: Any, tracking_type: str) -> Any:
    """Normalize a stored cursor value to the type of its tracking column."""
    if value is None:
        return None
    if tracking_type in {"integer", "version"}:
        return int(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def compile_statement(statement: Select, dialect: Dialect) -> ExtractionQuery:
    compiled = statement.compile(dialect=dialect, compile_kwargs={"render_postcompile": True})
    sql = str(compiled)
    params = {name: value for name, value in compiled.params.items() if f":{name}" in sql}
    return ExtractionQuery(sql=sql, params=params)


def _table_source(name: str):
    schema, _, table_name = name.rpartition(".")
    return table(table_name, schema=schema or None)


def build_table_select(
    options: DatabaseOptions,
    dialect: Dialect,
    limit: int | None = None,
    offset: int = 0,
) -> Select:
    """``SELECT *`` over ``options.table_name`` with delta filter, custom WHERE, ordering and window."""
    statement = select(literal_column("*")).select_from(_table_source(options.table_name or ""))

    delta = options.delta_config
    if options.delta_active and delta.last_value is not None:
        value = format_delta_value(delta.last_value, delta.tracking_type)
        statement = statement.where(column(delta.tracking_column) > bindparam(LAST_VALUE_PARAM, value))
    if options.custom_where_clause:
        statement = statement.where(text(options.custom_where_clause.strip()))

    if options.order_by:
        statement = statement.order_by(text(options.order_by))
    elif options.delta_active:
        statement = statement.order_by(column(delta.tracking_column))
    elif offset and dialect.name == "mssql":
        # OFFSET/FETCH needs an ORDER BY
        statement = statement.order_by(text("(SELECT NULL)"))

    if limit is not None:
        statement = statement.limit(limit)
    if offset:
        statement = statement.offset(offset)
    return statement


def paginate(sql: str, limit: int | None, offset: int, dialect: Dialect) -> str:
    """Append a LIMIT/OFFSET (or OFFSET/FETCH) window to a raw query."""
    if limit is None and not offset:
        return sql
    if has_clause(sql, "limit") or has_clause(sql, "fetch") or has_clause(sql, "offset"):
        sql = f"SELECT * FROM ({sql}) src"

    if dialect.name in _FETCH_DIALECTS:
        if dialect.name == "mssql" and not has_clause(sql, "order by"):
            sql += " ORDER BY (SELECT NULL)"
        window = f" OFFSET {int(offset)} ROWS"
        if limit is not None:
            window += f" FETCH NEXT {int(limit)} ROWS ONLY"
        return sql + window

    if limit is None:
        # SQLite needs a LIMIT before OFFSET
        prefix = " LIMIT -1" if dialect.name == "sqlite" else ""
        return sql + f"{prefix} OFFSET {int(offset)}"
    window = f" LIMIT {int(limit)}"
    if offset:
        window += f" OFFSET {int(offset)}"
    return sql + window


def _raw_query(options: DatabaseOptions, dialect: Dialect) -> ExtractionQuery:
    sql = (options.query or "").strip().rstrip(";").strip()
    params: dict[str, Any] = {}

    conditions: list[str] = []
    delta = options.delta_config
    if options.delta_active and delta.last_value is not None:
        params[LAST_VALUE_PARAM] = format_delta_value(delta.last_value, delta.tracking_type)
        if f":{LAST_VALUE_PARAM}" not in sql:
            conditions.append(f"{quote_identifier(delta.tracking_column, dialect)} > :{LAST_VALUE_PARAM}")
    if options.custom_where_clause:
        conditions.append(options.custom_where_clause.strip())

    if conditions:
        if _WRAP_TRIGGERS.search(_top_level(sql)):
            sql = f"SELECT * FROM ({sql}) src"
        keyword = " AND " if has_clause(sql, "where") else " WHERE "
        sql += keyword + " AND ".join(conditions)

    order_by = options.order_by
    if not order_by and options.delta_active:
        order_by = quote_identifier(delta.tracking_column, dialect)
    if order_by and not has_clause(sql, "order by"):
        sql += f" ORDER BY {order_by}"

    return ExtractionQuery(sql=sql, params=params)


def build_base_query(options: DatabaseOptions, dialect: Dialect) -> ExtractionQuery:
    """Base query with delta filter, custom WHERE and ORDER BY, without paging."""
    if options.query:
        return _raw_query(options, dialect)
    return compile_statement(build_table_select(options, dialect), dialect)


def build_page_query(options: DatabaseOptions, dialect: Dialect, limit: int | None, offset: int) -> ExtractionQuery:
    """Base query restricted to one ``limit``/``offset`` window."""
    if options.query:
        base = _raw_query(options, dialect)
        return ExtractionQuery(sql=paginate(base.sql, limit, offset, dialect), params=base.params)
    return compile_statement(build_table_select(options, dialect, limit, offset), dialect)


def build_extraction_query(options: DatabaseOptions, dialect: Dialect) -> ExtractionQuery:
    """Full extraction query: base query plus the configured LIMIT/OFFSET window."""
    return build_page_query(options, dialect, options.limit, options.offset)


def build_preview_query(
    options: DatabaseOptions,
    dialect: Dialect,
    limit: int,
    table_name: str | None = None,
) -> ExtractionQuery:
    if table_name or not options.query:
        statement = select(literal_column("*")).select_from(_table_source(table_name or options.table_name or ""))
        return compile_statement(statement.limit(limit), dialect)
    raw = options.query.strip().rstrip(";").strip()
    return ExtractionQuery(sql=paginate(raw, limit, 0, dialect))


__all__ = [
    "ExtractionQuery",
    "LAST_VALUE_PARAM",
    "build_base_query",
    "build_extraction_query",
    "build_page_query",
    "build_preview_query",
    "build_table_select",
    "compile_statement",
    "format_delta_value",
    "has_clause",
    "paginate",
    "quote_identifier",
    "sql_dialect",
    "validate_select_query",
]
