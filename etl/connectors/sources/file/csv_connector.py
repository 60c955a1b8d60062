import io
from pathlib import Path

import polars as pl

from ..data_contract import Record
from .base import FileConnector
from .config import CsvOptions

_UTF8_NAMES = {"utf-8", "utf8"}


class CSVConnector(FileConnector):
    type_tag = "csv"
    display_name = "CSV File"
    description = "Delimited text files from a local path or URL"
    extensions = (".csv",)
    options_model = CsvOptions

    def _read_records(self, path: Path, options: CsvOptions) -> list[Record]:
        # Polars only decodes UTF-8, other encodings are transcoded in memory.
        source: Path | io.BytesIO = path
        if options.encoding.lower() not in _UTF8_NAMES:
            source = io.BytesIO(path.read_bytes().decode(options.encoding).encode("utf-8"))

        frame = pl.read_csv(
            source,
            separator=options.delimiter,
            quote_char=options.quote_char,
            has_header=options.header,
            infer_schema_length=0,
            raise_if_empty=False,
            truncate_ragged_lines=options.skip_lines_with_error,
        )

        if options.columns:
            names = list(options.columns[: frame.width])
            names.extend(f"Column{index + 1}" for index in range(len(names), frame.width))
            frame = frame.rename(dict(zip(frame.columns, names)))
        elif not options.header:
            frame = frame.rename({name: f"Column{index + 1}" for index, name in enumerate(frame.columns)})

        if options.skip_empty_lines and frame.width:
            frame = frame.filter(~pl.all_horizontal(pl.all().is_null() | (pl.all().str.strip_chars() == "")))

        self.logger.debug("Parsed %s rows and %s columns from %s", frame.height, frame.width, path.name)
        return frame.to_dicts()
