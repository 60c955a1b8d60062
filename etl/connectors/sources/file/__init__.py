from .base import FileConnector
from .config import CsvOptions, ExcelOptions, FileOptions, FileSourceConfig, JsonOptions
from .csv_connector import CSVConnector
from .excel_connector import ExcelConnector
from .json_connector import JSONConnector

__all__ = [
    "FileConnector",
    "FileSourceConfig",
    "FileOptions",
    "CsvOptions",
    "JsonOptions",
    "ExcelOptions",
    "CSVConnector",
    "JSONConnector",
    "ExcelConnector",
]
