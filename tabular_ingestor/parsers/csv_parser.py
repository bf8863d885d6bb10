"""Streaming CSV parser backed by pandas chunked reads."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from typing import Any

import pandas as pd

from ..exceptions import InvalidFileError, TooManyRowsError
from .base import ParsedTable, TabularParser

_READ_OPTIONS: dict[str, Any] = {
    "dtype": str,
    "keep_default_na": False,
    "encoding": "utf-8-sig",
    "skip_blank_lines": True,
}


class CSVParser(TabularParser):
    """CSV files are read in chunks so the row ceiling aborts early."""

    extensions = (".csv",)
    file_type = "csv"

    def __init__(self, *args: Any, chunk_rows: int = 5000, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.chunk_rows = chunk_rows

    def read_header(self, path: str | Path) -> list[str]:
        try:
            # header=None keeps duplicate names intact instead of pandas' "a.1" mangling.
            frame = pd.read_csv(path, header=None, nrows=1, **_READ_OPTIONS)
        except pd.errors.EmptyDataError:
            return []
        except (pd.errors.ParserError, UnicodeDecodeError, OSError) as exc:
            raise InvalidFileError(f"Failed to parse CSV: {exc}") from exc
        if frame.empty:
            return []
        return ["" if pd.isna(cell) else str(cell) for cell in frame.iloc[0].tolist()]

    def iter_rows(self, path: str | Path, columns: list[str]) -> Iterator[dict[str, Any]]:
        """Yield row maps keyed by ``columns``; raises once ``max_rows`` is exceeded.

        The header line fixes the field count, so a data row with more fields
        than the header is a parse error instead of being truncated. Short rows
        are padded with empty cells.
        """

        max_rows = self.limits.max_rows
        count = 0
        try:
            with pd.read_csv(
                path,
                header=None,
                chunksize=self.chunk_rows,
                **_READ_OPTIONS,
            ) as reader:
                header_pending = True
                for chunk in reader:
                    rows = chunk.fillna("").itertuples(index=False, name=None)
                    if header_pending:
                        next(rows, None)
                        header_pending = False
                    for values in rows:
                        count += 1
                        if count > max_rows:
                            raise TooManyRowsError(max_rows)
                        yield {
                            column: self.trim_cell(value)
                            for column, value in zip(columns, values, strict=True)
                        }
        except pd.errors.EmptyDataError:
            return
        except (pd.errors.ParserError, UnicodeDecodeError, ValueError) as exc:
            raise InvalidFileError(f"Failed to parse CSV: {exc}") from exc

    def parse(self, path: str | Path) -> ParsedTable:
        raw_header = self.read_header(path)
        columns = self.finalize_columns(raw_header)
        if len(columns) != len(raw_header):
            raise InvalidFileError("Header contains blank column names.")
        rows = list(self.iter_rows(path, columns))
        return ParsedTable(columns=columns, rows=rows, file_type=self.file_type)
