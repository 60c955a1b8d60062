from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class FileSourceConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    file_path: str | None = None
    url: str | None = None
    timeout_seconds: int = Field(default=30, ge=1)
    headers: dict[str, str] = Field(default_factory=dict)


class FileOptions(BaseModel):
    model_config = ConfigDict(extra="ignore")

    batch_size: int = Field(default=1000, ge=1)
    date_columns: list[str] = Field(default_factory=list)
    number_columns: list[str] = Field(default_factory=list)
    boolean_columns: list[str] = Field(default_factory=list)
    transform: dict[str, str] = Field(default_factory=dict)
    skip_invalid_records: bool = False


class CsvOptions(FileOptions):
    delimiter: str = Field(default=",", min_length=1, max_length=1)
    quote_char: str | None = '"'
    header: bool = True
    encoding: str = Field(default="utf-8", min_length=1)
    skip_empty_lines: bool = True
    skip_lines_with_error: bool = False
    columns: list[str] | None = None


class JsonOptions(FileOptions):
    encoding: str = Field(default="utf-8", min_length=1)
    root_path: str | None = None
    flatten_nested: bool = False
    max_depth: int = Field(default=3, ge=1)
    array_handling: Literal["stringify", "first", "count", "ignore"] = "stringify"


class ExcelOptions(FileOptions):
    sheet_name: str | None = None
    header_row: int = Field(default=1, ge=1)
    range: str | None = None
    skip_empty_rows: bool = True
