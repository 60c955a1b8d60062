import json
from pathlib import Path
from typing import Any

from ..base_connector import validation_error
from ..data_contract import Record, ValidationError
from ..errors import ConnectorError
from .base import FileConnector
from .config import JsonOptions

COMMON_ARRAY_KEYS = ("data", "results", "items", "records", "rows", "list")
ARRAY_HANDLING = {"stringify", "first", "count", "ignore"}
_NDJSON_EXTENSIONS = {".jsonl", ".ndjson"}


def looks_like_ndjson(text: str) -> bool:
    """At least two non-blank lines and the first three each parse as a JSON object."""
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    if len(lines) < 2:
        return False
    for line in lines[:3]:
        try:
            if not isinstance(json.loads(line), dict):
                return False
        except json.JSONDecodeError:
            return False
    return True


def resolve_root_path(data: Any, root_path: str) -> Any:
    """Follow a ``$.a.b`` style path; numeric segments index into lists."""
    current = data
    for segment in root_path.lstrip("$").strip(".").split("."):
        if not segment:
            continue
        if isinstance(current, dict) and segment in current:
            current = current[segment]
        elif isinstance(current, list) and segment.isdigit() and int(segment) < len(current):
            current = current[int(segment)]
        else:
            raise ConnectorError(f"Root path '{root_path}' not found in document", code="INVALID_JSONPATH")
    return current


def flatten_record(record: Record, max_depth: int = 3, array_handling: str = "stringify") -> Record:
    """Flatten nested objects into ``parent.child`` keys down to ``max_depth`` levels."""
    flat: Record = {}

    def visit(value: Any, prefix: str, depth: int) -> None:
        if isinstance(value, dict) and depth < max_depth:
            for key, child in value.items():
                visit(child, f"{prefix}.{key}" if prefix else str(key), depth + 1)
            return
        if isinstance(value, dict):
            flat[prefix] = json.dumps(value, default=str)
            return
        if isinstance(value, list):
            if array_handling == "ignore":
                return
            if array_handling == "count":
                flat[prefix] = len(value)
            elif array_handling == "first":
                if value:
                    visit(value[0], prefix, depth)
                else:
                    flat[prefix] = None
            else:
                flat[prefix] = json.dumps(value, default=str)
            return
        flat[prefix] = value

    for key, value in record.items():
        visit(value, str(key), 1)
    return flat


class JSONConnector(FileConnector):
    type_tag = "json"
    display_name = "JSON File"
    description = "JSON documents or newline delimited JSON from a local path or URL"
    extensions = (".json", ".jsonl", ".ndjson")
    options_model = JsonOptions

    def _validate_options(self, options: dict[str, Any]) -> list[ValidationError]:
        errors = []
        root_path = options.get("root_path")
        if root_path and not str(root_path).startswith("$"):
            errors.append(
                validation_error("options.root_path", "INVALID_JSONPATH", "Root path must be a JSONPath starting with $")
            )
        array_handling = options.get("array_handling")
        if array_handling is not None and array_handling not in ARRAY_HANDLING:
            errors.append(
                validation_error(
                    "options.array_handling",
                    "INVALID_ARRAY_HANDLING",
                    f"array_handling must be one of: {', '.join(sorted(ARRAY_HANDLING))}",
                )
            )
        return errors

    def _read_records(self, path: Path, options: JsonOptions) -> list[Record]:
        text = path.read_text(encoding=options.encoding)
        if path.suffix.lower() in _NDJSON_EXTENSIONS or looks_like_ndjson(text):
            items = self._parse_lines(text, options)
        else:
            try:
                document = json.loads(text) if text.strip() else []
            except json.JSONDecodeError as exc:
                raise ConnectorError(f"Invalid JSON in {path.name}: {exc}") from exc
            items = self._select_items(document, options)

        records = [item if isinstance(item, dict) else {"value": item} for item in items]
        if options.flatten_nested:
            records = [flatten_record(record, options.max_depth, options.array_handling) for record in records]
        return records

    def _parse_lines(self, text: str, options: JsonOptions) -> list[Any]:
        items = []
        for number, line in enumerate(text.splitlines(), start=1):
            if not line.strip():
                continue
            try:
                items.append(json.loads(line))
            except json.JSONDecodeError as exc:
                if not options.skip_invalid_records:
                    raise ConnectorError(f"Invalid JSON on line {number}: {exc}", details={"line": number}) from exc
                self.logger.warning("Skipping invalid JSON line %s", number)
        return items

    def _select_items(self, document: Any, options: JsonOptions) -> list[Any]:
        if options.root_path:
            document = resolve_root_path(document, options.root_path)

        if isinstance(document, list):
            return document
        if isinstance(document, dict) and not options.root_path:
            for key in COMMON_ARRAY_KEYS:
                if isinstance(document.get(key), list):
                    self.logger.debug("Using array under '%s' as record source", key)
                    return document[key]
        if document is None:
            return []
        return [document]
