"""Tests for the chunked CSV parser."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from tabular_ingestor.exceptions import (
    InvalidFileError,
    TooManyRowsError,
    UnsupportedFormatError,
)
from tabular_ingestor.parsers import get_parser
from tabular_ingestor.parsers.csv_parser import CSVParser
from tabular_ingestor.parsers.excel_parser import ExcelParser
from tabular_ingestor.utils.config import UploadLimits


def test_registry_resolves_by_extension() -> None:
    assert isinstance(get_parser("data.CSV"), CSVParser)
    assert isinstance(get_parser("book.xlsx"), ExcelParser)
    assert isinstance(get_parser("legacy.xls"), ExcelParser)


def test_registry_rejects_unknown_extension() -> None:
    with pytest.raises(UnsupportedFormatError) as exc_info:
        get_parser("notes.txt")

    assert exc_info.value.extension == ".txt"
    assert "Only CSV and Excel" in str(exc_info.value)


class TestCSVParser:
    def test_parse_rows_as_strings(
        self, tmp_path: Path, write_file: Callable[..., Path], sales_csv: str
    ) -> None:
        path = write_file(tmp_path / "sales.csv", sales_csv)

        table = CSVParser().parse(path)

        assert table.columns == ["region", "revenue", "units"]
        assert table.row_count == 3
        assert table.rows[0] == {"region": "north", "revenue": "100", "units": "4"}
        assert table.file_type == "csv"

    def test_header_is_trimmed_and_bom_removed(
        self, tmp_path: Path, write_file: Callable[..., Path]
    ) -> None:
        path = write_file(tmp_path / "bom.csv", "\ufeff region , revenue\nnorth,1\n")

        table = CSVParser().parse(path)

        assert table.columns == ["region", "revenue"]
        assert table.rows == [{"region": "north", "revenue": "1"}]

    def test_empty_cells_stay_empty_strings(
        self, tmp_path: Path, write_file: Callable[..., Path]
    ) -> None:
        path = write_file(tmp_path / "gaps.csv", "a,b\n1,\n,2\n")

        table = CSVParser().parse(path)

        assert table.rows == [{"a": "1", "b": ""}, {"a": "", "b": "2"}]

    def test_read_header_keeps_duplicates(
        self, tmp_path: Path, write_file: Callable[..., Path]
    ) -> None:
        path = write_file(tmp_path / "dup.csv", "a,b,a\n1,2,3\n")

        assert CSVParser().read_header(path) == ["a", "b", "a"]

    def test_duplicate_columns_rejected(
        self, tmp_path: Path, write_file: Callable[..., Path]
    ) -> None:
        path = write_file(tmp_path / "dup.csv", "a,b,A\n1,2,3\n")

        with pytest.raises(InvalidFileError, match="Duplicate column names: A."):
            CSVParser().parse(path)

    def test_blank_header_cell_rejected(
        self, tmp_path: Path, write_file: Callable[..., Path]
    ) -> None:
        path = write_file(tmp_path / "blank.csv", "a,,c\n1,2,3\n")

        with pytest.raises(InvalidFileError, match="blank column names"):
            CSVParser().parse(path)

    def test_empty_file_has_no_header(
        self, tmp_path: Path, write_file: Callable[..., Path]
    ) -> None:
        path = write_file(tmp_path / "empty.csv", "")

        assert CSVParser().read_header(path) == []
        with pytest.raises(InvalidFileError, match="Missing header columns."):
            CSVParser().parse(path)

    def test_header_only_file_has_no_rows(
        self, tmp_path: Path, write_file: Callable[..., Path]
    ) -> None:
        path = write_file(tmp_path / "header.csv", "a,b\n")

        table = CSVParser().parse(path)

        assert table.columns == ["a", "b"]
        assert table.rows == []

    def test_row_ceiling(self, tmp_path: Path, write_file: Callable[..., Path]) -> None:
        body = "".join(f"{index}\n" for index in range(6))
        path = write_file(tmp_path / "many.csv", f"n\n{body}")

        parser = CSVParser(UploadLimits(max_rows=5), chunk_rows=2)

        with pytest.raises(TooManyRowsError, match=r"Too many rows \(max 5\)."):
            parser.parse(path)

    def test_column_ceiling(self, tmp_path: Path, write_file: Callable[..., Path]) -> None:
        path = write_file(tmp_path / "wide.csv", "a,b,c\n1,2,3\n")

        with pytest.raises(InvalidFileError, match=r"Too many columns \(max 2\)."):
            CSVParser(UploadLimits(max_columns=2)).parse(path)

    def test_long_cells_are_truncated(
        self, tmp_path: Path, write_file: Callable[..., Path]
    ) -> None:
        path = write_file(tmp_path / "long.csv", f"note\n{'x' * 20}\n")

        table = CSVParser(UploadLimits(max_cell_length=5)).parse(path)

        assert table.rows == [{"note": "xxxxx"}]

    def test_row_wider_than_header_is_rejected(
        self, tmp_path: Path, write_file: Callable[..., Path]
    ) -> None:
        path = write_file(tmp_path / "ragged.csv", "a,b\n1,2,3\n4,5\n")

        with pytest.raises(InvalidFileError, match="Failed to parse CSV"):
            CSVParser().parse(path)

    def test_wide_row_in_later_chunk_is_rejected(
        self, tmp_path: Path, write_file: Callable[..., Path]
    ) -> None:
        path = write_file(tmp_path / "ragged.csv", "a,b\n1,2\n3,4\n5,6\n7,8,9\n")

        with pytest.raises(InvalidFileError, match="Failed to parse CSV"):
            CSVParser(chunk_rows=2).parse(path)

    def test_short_rows_are_padded(
        self, tmp_path: Path, write_file: Callable[..., Path]
    ) -> None:
        path = write_file(tmp_path / "short.csv", "a,b,c\n1\n2,3,4\n")

        table = CSVParser().parse(path)

        assert table.rows == [
            {"a": "1", "b": "", "c": ""},
            {"a": "2", "b": "3", "c": "4"},
        ]
