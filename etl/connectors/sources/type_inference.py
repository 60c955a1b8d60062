"""Heuristic column type inference over sampled record values.

The rules are deliberately simple and order dependent: a sample that is all
numeric is ``integer`` or ``decimal`` (so ``"1"``/``"0"`` columns are numbers,
not booleans), then boolean tokens, then ISO-like or ``dd/mm/yyyy`` dates,
otherwise ``string``. Only the first ``SAMPLE_SIZE`` non-null values are
inspected, so a late outlier does not change the result.
"""

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable

from .data_contract import ColumnInfo, Record

SAMPLE_SIZE = 100
BOOLEAN_TOKENS = {"true", "false", "1", "0", "yes", "no", "y", "n"}
_DATE_PATTERN = re.compile(r"\d{4}-\d{2}-\d{2}|\d{2}/\d{2}/\d{4}")
_DATE_FORMATS = ("%d/%m/%Y", "%m/%d/%Y")


def _is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float, Decimal)):
        return True
    try:
        Decimal(str(value).strip())
    except InvalidOperation:
        return False
    return str(value).strip().lower() not in {"nan", "inf", "-inf", "infinity", "-infinity"}


def _has_fraction(value: Any) -> bool:
    if isinstance(value, float):
        return not value.is_integer() or "." in str(value)
    return "." in str(value)


def _is_boolean(value: Any) -> bool:
    return isinstance(value, bool) or str(value).strip().lower() in BOOLEAN_TOKENS


def parse_datetime(value: Any) -> datetime | None:
    """Parse ISO-like and slash separated dates; return None when not a date."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)

    text = str(value).strip()
    if not _DATE_PATTERN.search(text):
        return None
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text[:10], fmt)
        except ValueError:
            continue
    return None


def infer_type(values: Iterable[Any]) -> str:
    sample = []
    for value in values:
        if _is_missing(value):
            continue
        sample.append(value)
        if len(sample) >= SAMPLE_SIZE:
            break

    if not sample:
        return "string"
    if all(isinstance(value, bool) for value in sample):
        return "boolean"
    if all(_is_number(value) for value in sample):
        return "decimal" if any(_has_fraction(value) for value in sample) else "integer"
    if all(_is_boolean(value) for value in sample):
        return "boolean"
    if all(parse_datetime(value) is not None for value in sample):
        return "datetime"
    return "string"


def infer_columns(records: list[Record]) -> list[ColumnInfo]:
    """Describe every column seen in ``records``; nullable when any record lacks a value."""
    if not records:
        return []

    names: list[str] = []
    for record in records:
        for key in record:
            if key not in names:
                names.append(key)

    columns = []
    for name in names:
        values = [record.get(name) for record in records]
        columns.append(
            ColumnInfo(
                name=name,
                type=infer_type(values),
                nullable=any(_is_missing(value) for value in values),
            )
        )
    return columns


def column_types(records: list[Record]) -> dict[str, str]:
    return {column.name: column.type for column in infer_columns(records)}


__all__ = ["infer_type", "infer_columns", "column_types", "parse_datetime", "BOOLEAN_TOKENS"]
