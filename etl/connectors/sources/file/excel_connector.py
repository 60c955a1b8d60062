import re
from pathlib import Path
from typing import Any

import fastexcel
import polars as pl

from ..base_connector import validation_error
from ..data_contract import Record, TableInfo, ValidationError
from ..type_inference import infer_columns
from .base import FileConnector
from .config import ExcelOptions

_RANGE_PATTERN = re.compile(r"^([A-Za-z]+)(\d+):([A-Za-z]+)(\d+)$")


def parse_range(cell_range: str) -> tuple[str, int, int]:
    """Split ``A1:D10`` into (``A:D``, first row, last row)."""
    match = _RANGE_PATTERN.match(cell_range.strip())
    if match is None:
        raise ValueError(f"Invalid cell range: {cell_range}")
    start_col, start_row, end_col, end_row = match.groups()
    if int(end_row) < int(start_row):
        raise ValueError(f"Invalid cell range: {cell_range}")
    return f"{start_col.upper()}:{end_col.upper()}", int(start_row), int(end_row)


class ExcelConnector(FileConnector):
    type_tag = "excel"
    display_name = "Excel Workbook"
    description = "Worksheets from .xlsx, .xlsm or .xls workbooks"
    extensions = (".xlsx", ".xlsm", ".xls")
    options_model = ExcelOptions
    capabilities = frozenset({"preview_data", "list_available_tables", "get_table_schema"})

    def _validate_options(self, options: dict[str, Any]) -> list[ValidationError]:
        cell_range = options.get("range")
        if not cell_range:
            return []
        try:
            parse_range(str(cell_range))
        except ValueError as exc:
            return [validation_error("options.range", "INVALID_RANGE", str(exc))]
        return []

    def _read_records(self, path: Path, options: ExcelOptions) -> list[Record]:
        return self._read_sheet(path, options, options.sheet_name)

    def _read_sheet(self, path: Path, options: ExcelOptions, sheet_name: str | None) -> list[Record]:
        read_options: dict[str, Any] = {"header_row": options.header_row - 1}
        if options.range:
            columns, first_row, last_row = parse_range(options.range)
            read_options.update({"use_columns": columns, "header_row": first_row - 1, "n_rows": last_row - first_row})

        frame = pl.read_excel(
            path,
            sheet_name=sheet_name,
            engine="calamine",
            read_options=read_options,
            drop_empty_rows=options.skip_empty_rows,
            raise_if_empty=False,
        )
        self.logger.debug("Read sheet %s with %s rows from %s", sheet_name or "<first>", frame.height, path.name)
        return frame.to_dicts()

    def list_available_tables(self) -> list[TableInfo]:
        path = self._resolve_path()
        reader = fastexcel.read_excel(str(path))
        return [TableInfo(name=name, type="table") for name in reader.sheet_names]

    def get_table_schema(self, table_name: str) -> TableInfo:
        path = self._resolve_path()
        options = ExcelOptions.model_validate(self.options)
        records = self._read_sheet(path, options, table_name)
        return TableInfo(name=table_name, record_count=len(records), columns=infer_columns(records))
