"""Spreadsheet parser reading the first sheet with pandas."""

from __future__ import annotations

import zipfile
from datetime import date, datetime, time
from pathlib import Path
from typing import Any

import pandas as pd
from openpyxl.utils.exceptions import InvalidFileException
from xlrd import XLRDError

from ..exceptions import InvalidFileError, TooManyRowsError
from .base import MISSING_CELL, ParsedTable, TabularParser


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


class ExcelParser(TabularParser):
    """Reads the first worksheet fully; blank cells become ``"-"``."""

    extensions = (".xlsx", ".xls")
    file_type = "xlsx"

    def _read_frame(self, path: str | Path, *, nrows: int | None = None) -> pd.DataFrame:
        try:
            return pd.read_excel(path, sheet_name=0, header=None, dtype=object, nrows=nrows)
        except (
            ValueError,
            KeyError,
            OSError,
            zipfile.BadZipFile,
            InvalidFileException,
            XLRDError,
        ) as exc:
            raise InvalidFileError(f"Failed to parse spreadsheet: {exc}") from exc

    def read_header(self, path: str | Path) -> list[str]:
        frame = self._read_frame(path, nrows=1)
        if frame.empty:
            return []
        return ["" if _is_blank(cell) else str(cell) for cell in frame.iloc[0].tolist()]

    def _normalize_cell(self, value: Any) -> Any:
        if _is_blank(value):
            return MISSING_CELL
        if isinstance(value, pd.Timestamp):
            return value.isoformat()
        if isinstance(value, datetime | date | time):
            return value.isoformat()
        if hasattr(value, "item"):
            # numpy scalar
            value = value.item()
        return self.trim_cell(value)

    def parse(self, path: str | Path) -> ParsedTable:
        frame = self._read_frame(path)
        if frame.empty:
            raise InvalidFileError("Missing header columns.")

        header_cells = frame.iloc[0].tolist()
        declared = [
            (position, str(cell).strip())
            for position, cell in enumerate(header_cells)
            if not _is_blank(cell)
        ]
        columns = self.finalize_columns(name for _, name in declared)
        declared_positions = {position for position, _ in declared}

        body = frame.iloc[1:].dropna(how="all")
        if len(body) > self.limits.max_rows:
            raise TooManyRowsError(self.limits.max_rows)

        rows: list[dict[str, Any]] = []
        for values in body.itertuples(index=False, name=None):
            record = {
                name: self._normalize_cell(values[position]) for position, name in declared
            }
            for position, value in enumerate(values):
                # Cells under a blank header surface as extra keys for schema scoring.
                if position not in declared_positions and not _is_blank(value):
                    record[f"Unnamed: {position}"] = self._normalize_cell(value)
            rows.append(record)

        file_type = "xls" if Path(path).suffix.lower() == ".xls" else self.file_type
        return ParsedTable(columns=columns, rows=rows, file_type=file_type)
