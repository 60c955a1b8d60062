"""Shared behaviour of file backed connectors (local path or downloaded URL)."""

import os
import tempfile
from abc import abstractmethod
from pathlib import Path
from typing import Any, ClassVar, Iterator
from urllib.parse import urlparse

import requests
from pydantic import ValidationError as PydanticValidationError

from ..._config import normalize_keys
from ..._logging import redact_config
from ..base_connector import BaseConnector, RunTracker, pydantic_errors, validation_error
from ..data_contract import ConnectorConfig, Record, ValidationError
from ..errors import ConnectorConnectionError, ConnectorError
from ..row_expression import ExpressionEvaluationError, RowExpression, apply_transform, compile_transform
from ..type_inference import infer_columns, parse_datetime
from .config import FileOptions, FileSourceConfig

_TRUE_TOKENS = {"true", "1", "yes", "y"}


def coerce_number(value: Any) -> int | float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    text = str(value).strip().replace(",", "")
    if not text:
        return None
    try:
        number = float(text)
    except ValueError:
        return None
    if number.is_integer() and "." not in text and "e" not in text.lower():
        return int(number)
    return number


def coerce_boolean(value: Any) -> bool | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE_TOKENS


def _write_temp_file(response: requests.Response, suffix: str) -> Path:
    """Stream ``response`` into a new temp file; the file is removed if the stream breaks."""
    handle, name = tempfile.mkstemp(prefix="ingest_", suffix=suffix)
    try:
        with os.fdopen(handle, "wb") as target:
            for chunk in response.iter_content(chunk_size=64 * 1024):
                if chunk:
                    target.write(chunk)
    except Exception:
        Path(name).unlink(missing_ok=True)
        raise
    return Path(name)


class FileConnector(BaseConnector):
    """Base for connectors reading one file; subclasses parse it into records."""

    category = "file"
    extensions: ClassVar[tuple[str, ...]] = ()
    options_model: ClassVar[type[FileOptions]] = FileOptions

    def __init__(self, config):
        super().__init__(config)
        self._downloaded: Path | None = None

    @abstractmethod
    def _read_records(self, path: Path, options: Any) -> list[Record]:
        """Parse the whole file into raw records."""

    def _validate_options(self, options: dict[str, Any]) -> list[ValidationError]:
        return []

    def _validate(self, config: ConnectorConfig) -> tuple[list[ValidationError], list[str]]:
        connection = normalize_keys(config.connection)
        options = normalize_keys(config.options)
        errors: list[ValidationError] = []
        warnings: list[str] = []

        file_path = connection.get("file_path")
        url = connection.get("url")
        if not file_path and not url:
            errors.append(validation_error("connection", "MISSING_SOURCE", "Either file_path or url must be provided"))

        if file_path:
            if Path(str(file_path)).suffix.lower() not in self.extensions:
                errors.append(
                    validation_error(
                        "connection.file_path",
                        "INVALID_FILE_TYPE",
                        f"File must have one of the extensions: {', '.join(self.extensions)}",
                    )
                )
            elif not Path(str(file_path)).expanduser().is_file():
                errors.append(validation_error("connection.file_path", "FILE_NOT_FOUND", f"File not found: {file_path}"))

        if url:
            parsed = urlparse(str(url))
            if parsed.scheme not in {"http", "https"} or not parsed.netloc:
                errors.append(validation_error("connection.url", "INVALID_URL", f"Invalid URL: {url}"))
            elif not file_path and Path(parsed.path).suffix.lower() not in self.extensions:
                warnings.append(f"URL does not end with {', '.join(self.extensions)}; content is parsed as {self.type_tag}")

        transform = options.get("transform")
        if transform:
            if not isinstance(transform, dict):
                errors.append(
                    validation_error("options.transform", "INVALID_TRANSFORM", "Transform must map column names to expressions")
                )
            else:
                try:
                    compile_transform(transform)
                except ValueError as exc:
                    errors.append(validation_error("options.transform", "INVALID_TRANSFORM", str(exc)))

        errors.extend(self._validate_options(options))
        if not errors:
            try:
                self.options_model.model_validate(options)
            except PydanticValidationError as exc:
                errors.extend(pydantic_errors(exc, "options", "INVALID_OPTION"))

        return errors, warnings

    # -- source resolution -------------------------------------------------

    def _source(self) -> FileSourceConfig:
        return FileSourceConfig.model_validate(self.connection)

    def _resolve_path(self) -> Path:
        source = self._source()
        if source.file_path:
            path = Path(source.file_path).expanduser()
            if not path.is_file():
                raise ConnectorError(f"File not found: {source.file_path}", code="FILE_NOT_FOUND")
            return path

        if self._downloaded is not None and self._downloaded.exists():
            return self._downloaded
        self._downloaded = self._download(source)
        return self._downloaded

    def _download(self, source: FileSourceConfig) -> Path:
        self.logger.info("Downloading %s source config=%s", self.type_tag, redact_config(source.model_dump()))
        suffix = Path(urlparse(source.url).path).suffix or self.extensions[0]
        try:
            with requests.get(source.url, headers=source.headers, timeout=source.timeout_seconds, stream=True) as response:
                response.raise_for_status()
                path = _write_temp_file(response, suffix)
        except requests.RequestException as exc:
            raise ConnectorConnectionError(f"Failed to download {source.url}: {exc}") from exc
        self.logger.debug("Downloaded %s to %s", source.url, path)
        return path

    def _open(self) -> None:
        self._resolve_path()

    def _connection_check(self) -> str | None:
        path = self._resolve_path()
        with path.open("rb") as handle:
            handle.read(1)
        return None

    def _release(self) -> None:
        if self._downloaded is not None:
            self._downloaded.unlink(missing_ok=True)
            self._downloaded = None

    # -- extraction --------------------------------------------------------

    def _iter_batches(self, run: RunTracker) -> Iterator[list[Record]]:
        options = self.options_model.model_validate(self.options)
        path = self._resolve_path()
        run.log("info", f"Reading {self.type_tag} source {path.name}")
        run.set_totals(total_bytes=path.stat().st_size)

        records = self._read_records(path, options)
        run.set_totals(total_records=len(records))
        columns = infer_columns(records)
        run.metadata.update(
            {
                "file_name": path.name,
                "file_size": path.stat().st_size,
                "columns": [column.name for column in columns],
                "column_types": {column.name: column.type for column in columns},
            }
        )

        expressions = compile_transform(options.transform) if options.transform else {}
        batch: list[Record] = []
        skipped = 0
        for index, record in enumerate(records):
            try:
                batch.append(self._process(record, index, options, expressions))
            except ExpressionEvaluationError as exc:
                if not options.skip_invalid_records:
                    raise ConnectorError(f"Transform failed on record {index}: {exc}", details={"index": index}) from exc
                skipped += 1
                run.log("warn", f"Skipping record {index}: {exc}")
                continue
            if len(batch) >= options.batch_size:
                yield batch
                batch = []
        if batch:
            yield batch
        run.metadata["skipped_records"] = skipped

    def _process(
        self,
        record: Record,
        index: int,
        options: FileOptions,
        expressions: dict[str, RowExpression],
    ) -> Record:
        processed = dict(record)
        for column in options.number_columns:
            if column in processed:
                processed[column] = coerce_number(processed[column])
        for column in options.boolean_columns:
            if column in processed:
                processed[column] = coerce_boolean(processed[column])
        for column in options.date_columns:
            if column in processed and processed[column] is not None:
                processed[column] = parse_datetime(processed[column])
        if expressions:
            processed = apply_transform(processed, expressions, index)
        return processed
