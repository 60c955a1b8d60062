"""Synthetic record generator driven by a field list and a seeded RNG."""

import random
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Iterator

from pydantic import ValidationError as PydanticValidationError

from ..._config import normalize_keys
from ..base_connector import BaseConnector, RunTracker, pydantic_errors, validation_error
from ..data_contract import ConnectorConfig, Record, ValidationError
from .config import MockConnection, MockField, MockOptions

FIELD_TYPES = {
    "id",
    "name",
    "email",
    "phone",
    "address",
    "company",
    "date",
    "datetime",
    "number",
    "decimal",
    "boolean",
    "text",
    "uuid",
    "url",
    "currency",
    "percentage",
    "enum",
}
MAX_BATCH_SIZE = 1000

FIRST_NAMES = [
    "John", "Jane", "Michael", "Sarah", "David", "Emma", "Chris", "Lisa", "Robert", "Maria",
    "James", "Anna", "William", "Jennifer", "Richard", "Jessica", "Thomas", "Ashley", "Daniel", "Amanda",
]
LAST_NAMES = [
    "Smith", "Johnson", "Williams", "Brown", "Jones", "Garcia", "Miller", "Davis", "Rodriguez", "Martinez",
    "Hernandez", "Lopez", "Gonzalez", "Wilson", "Anderson", "Thomas", "Taylor", "Moore", "Jackson", "Martin",
]
COMPANIES = [
    "Acme Corp", "Global Tech", "Innovative Solutions", "Digital Systems", "Smart Industries",
    "Future Enterprises", "Alpha Technologies", "Beta Dynamics", "Gamma Solutions", "Delta Corp",
    "Epsilon Ltd", "Zeta Systems", "Theta Innovations", "Kappa Group", "Lambda Solutions",
]
DOMAINS = ["gmail.com", "yahoo.com", "outlook.com", "company.com", "example.org", "test.net", "demo.co", "sample.io"]
STREETS = [
    "Main St", "Oak Ave", "Park Rd", "First St", "Second Ave", "Third St", "Elm St",
    "Maple Ave", "Pine Rd", "Cedar St", "Washington Ave", "Lincoln Blvd", "Jefferson St", "Adams Ave",
]
CITIES = [
    "New York", "Los Angeles", "Chicago", "Houston", "Phoenix", "Philadelphia", "San Antonio",
    "San Diego", "Dallas", "San Jose", "Austin", "Jacksonville", "Fort Worth", "Columbus", "Charlotte",
]
STATES = ["NY", "CA", "TX", "FL", "IL", "PA", "OH", "GA", "NC", "MI", "NJ", "VA", "WA", "AZ", "MA"]
WORDS = [
    "lorem", "ipsum", "dolor", "sit", "amet", "consectetur", "adipiscing", "elit", "sed", "do",
    "eiusmod", "tempor", "incididunt", "ut", "labore", "et", "dolore", "magna", "aliqua",
]

# Fixed window so a seed always reproduces the same dates.
DATE_START = datetime(2020, 1, 1, tzinfo=timezone.utc)
DATE_END = datetime(2025, 12, 31, 23, 59, 59, tzinfo=timezone.utc)

_FIELD_SIZES = {
    "id": 20, "name": 30, "email": 40, "phone": 15, "address": 80, "company": 30, "date": 10,
    "datetime": 25, "number": 8, "decimal": 12, "boolean": 5, "uuid": 36, "url": 50,
    "currency": 10, "percentage": 5, "enum": 15,
}


def format_date(value: datetime, pattern: str) -> str:
    """Render ``YYYY``, ``MM``, ``DD`` (and unpadded ``M``/``D``) tokens."""
    result = pattern.replace("YYYY", f"{value.year:04d}").replace("MM", f"{value.month:02d}").replace("DD", f"{value.day:02d}")
    return result.replace("M", str(value.month), 1).replace("D", str(value.day), 1)


def estimate_mock_record_size(fields: list[MockField]) -> int:
    size = 0
    for field in fields:
        if field.type == "text":
            size += (field.options.length or 8) * 6
        else:
            size += _FIELD_SIZES.get(field.type, 10)
        size += len(field.name) + 4
    return size


class RecordGenerator:
    """Deterministic record factory; one instance per run or preview."""

    def __init__(self, fields: list[MockField], seed: int):
        self.fields = fields
        self.rng = random.Random(seed)

    def record(self, index: int) -> Record:
        record: Record = {}
        for field in self.fields:
            options = field.options
            if options.nullable and options.null_probability and self.rng.random() < options.null_probability:
                record[field.name] = None
                continue
            record[field.name] = self.value(field, index)
        return record

    def records(self, count: int, start: int = 0) -> list[Record]:
        return [self.record(start + offset) for offset in range(count)]

    def _pick(self, values: list[Any]) -> Any:
        return values[self.rng.randrange(len(values))]

    def _moment(self) -> datetime:
        span = (DATE_END - DATE_START).total_seconds()
        return DATE_START + timedelta(seconds=self.rng.random() * span)

    def value(self, field: MockField, index: int) -> Any:
        options = field.options
        kind = field.type

        if kind == "id":
            return f"{options.prefix}{index + 1}{options.suffix}"
        if kind == "name":
            return f"{self._pick(FIRST_NAMES)} {self._pick(LAST_NAMES)}"
        if kind == "email":
            return f"{self._pick(FIRST_NAMES).lower()}.{self._pick(LAST_NAMES).lower()}@{self._pick(DOMAINS)}"
        if kind == "phone":
            return f"({self.rng.randint(200, 999)}) {self.rng.randint(200, 999)}-{self.rng.randint(1000, 9999)}"
        if kind == "address":
            return (
                f"{self.rng.randint(1, 9999)} {self._pick(STREETS)}, {self._pick(CITIES)}, "
                f"{self._pick(STATES)} {self.rng.randint(10000, 99999)}"
            )
        if kind == "company":
            return self._pick(COMPANIES)
        if kind == "date":
            moment = self._moment()
            return format_date(moment, options.format) if options.format else moment.date().isoformat()
        if kind == "datetime":
            return self._moment().isoformat()
        if kind == "number":
            low = int(options.min if options.min is not None else 0)
            high = int(options.max if options.max is not None else 100)
            return self.rng.randint(low, high)
        if kind == "decimal":
            low = options.min if options.min is not None else 0
            high = options.max if options.max is not None else 100
            return round(low + self.rng.random() * (high - low), options.decimals)
        if kind == "boolean":
            return self.rng.random() < 0.5
        if kind == "text":
            count = options.length or self.rng.randint(3, 12)
            return " ".join(self._pick(WORDS) for _ in range(count))
        if kind == "uuid":
            return self._uuid()
        if kind == "url":
            scheme = "https" if self.rng.random() < 0.8 else "http"
            subdomain = "www." if self.rng.random() < 0.3 else ""
            host = self._pick(COMPANIES).lower().replace(" ", "")
            return f"{scheme}://{subdomain}{host}.{self._pick(['com', 'org', 'net', 'io', 'co'])}"
        if kind == "currency":
            low = int(options.min if options.min is not None else 100)
            high = int(options.max if options.max is not None else 10000)
            return f"${self.rng.randint(low, high) / 100:.2f}"
        if kind == "percentage":
            return f"{self.rng.randint(0, 100)}%"
        if kind == "enum":
            return self._pick(options.enum_values)
        raise ValueError(f"Unsupported field type: {kind}")

    def _uuid(self) -> str:
        digits = []
        for char in "xxxxxxxx-xxxx-4xxx-yxxx-xxxxxxxxxxxx":
            if char == "x":
                digits.append(format(self.rng.randrange(16), "x"))
            elif char == "y":
                digits.append(format(self.rng.randrange(16) & 0x3 | 0x8, "x"))
            else:
                digits.append(char)
        return "".join(digits)


class MockConnector(BaseConnector):
    type_tag = "mock"
    display_name = "Mock Data Generator"
    description = "Generate realistic fake data for testing and development"
    category = "synthetic"

    def __init__(self, config):
        super().__init__(config)
        self._default_seed = int(time.time() * 1000)

    def _validate(self, config: ConnectorConfig) -> tuple[list[ValidationError], list[str]]:
        connection = normalize_keys(config.connection)
        options = normalize_keys(config.options)
        errors: list[ValidationError] = []

        if not _positive_int(connection.get("record_count")):
            errors.append(validation_error("connection.record_count", "INVALID_RECORD_COUNT", "Record count must be greater than 0"))
        batch_size = connection.get("batch_size")
        if batch_size is not None and not _positive_int(batch_size):
            errors.append(validation_error("connection.batch_size", "INVALID_BATCH_SIZE", "Batch size must be greater than 0"))

        fields = options.get("fields") or []
        if not fields:
            errors.append(validation_error("options.fields", "NO_FIELDS_DEFINED", "At least one field must be defined"))
        for index, field in enumerate(fields):
            errors.extend(_validate_field(index, field if isinstance(field, dict) else {}))

        if not errors:
            try:
                MockConnection.model_validate(connection)
                MockOptions.model_validate(options)
            except PydanticValidationError as exc:
                errors.extend(pydantic_errors(exc, "config", "INVALID_OPTION"))
        return errors, []

    def _settings(self) -> tuple[MockConnection, MockOptions, int]:
        connection = MockConnection.model_validate(self.connection)
        options = MockOptions.model_validate(self.options)
        seed = connection.seed if connection.seed is not None else self._default_seed
        return connection, options, seed

    def _connection_check(self) -> str | None:
        _, options, seed = self._settings()
        RecordGenerator(options.fields, seed).record(0)
        return None

    def _iter_batches(self, run: RunTracker) -> Iterator[list[Record]]:
        connection, options, seed = self._settings()
        total = connection.record_count
        batch_size = min(connection.batch_size or MAX_BATCH_SIZE, MAX_BATCH_SIZE, total)
        generator = RecordGenerator(options.fields, seed)

        run.set_totals(total_records=total, total_bytes=total * estimate_mock_record_size(options.fields))
        run.metadata.update(
            {
                "seed": seed,
                "columns": [field.name for field in options.fields],
                "column_types": {field.name: field.type for field in options.fields},
            }
        )
        run.log("info", f"Generating {total} mock records in batches of {batch_size}")

        for start in range(0, total, batch_size):
            yield generator.records(min(batch_size, total - start), start)

    def preview_data(self, limit: int = 10, table_name: str | None = None) -> list[Record]:
        connection, options, seed = self._settings()
        return RecordGenerator(options.fields, seed).records(min(limit, connection.record_count))


def _positive_int(value: Any) -> bool:
    try:
        return value is not None and not isinstance(value, bool) and int(value) > 0
    except (TypeError, ValueError):
        return False


def _validate_field(index: int, field: dict[str, Any]) -> list[ValidationError]:
    errors: list[ValidationError] = []
    prefix = f"options.fields[{index}]"
    if not field.get("name"):
        errors.append(validation_error(f"{prefix}.name", "MISSING_FIELD_NAME", "Field name is required"))

    field_type = field.get("type")
    if not field_type:
        errors.append(validation_error(f"{prefix}.type", "MISSING_FIELD_TYPE", "Field type is required"))
    elif field_type not in FIELD_TYPES:
        errors.append(validation_error(f"{prefix}.type", "INVALID_FIELD_TYPE", f"Unsupported field type: {field_type}"))

    options = field.get("options") or {}
    if field_type == "enum" and not options.get("enum_values"):
        errors.append(
            validation_error(f"{prefix}.options.enum_values", "MISSING_ENUM_VALUES", "Enum fields must have enum_values defined")
        )
    if field_type in {"number", "decimal", "currency"}:
        low, high = options.get("min"), options.get("max")
        if low is not None and high is not None and low > high:
            errors.append(validation_error(f"{prefix}.options", "INVALID_RANGE", "Minimum value cannot be greater than maximum"))
    return errors
