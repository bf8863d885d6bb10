"""Tests for name-pattern matching and path normalization."""

import pytest

from tabular_ingestor.utils.patterns import (
    file_extension,
    matches_pattern,
    normalize_extensions,
    normalize_list,
    normalize_remote_path,
    sanitize_file_name,
)


class TestNormalizeList:
    def test_delimited_string(self):
        assert normalize_list("a, b;c\r\nd\n\n") == ["a", "b", "c", "d"]

    def test_iterables_and_scalars(self):
        assert normalize_list(["x ", "", None, 3]) == ["x", "None", "3"]
        assert normalize_list(None) == []
        assert normalize_list(5) == ["5"]


def test_normalize_extensions_falls_back_to_default():
    assert normalize_extensions("CSV; .xlsx, csv", [".xls"]) == [".csv", ".xlsx"]
    assert normalize_extensions("", [".xls"]) == [".xls"]


@pytest.mark.parametrize(
    ("name", "pattern", "expected"),
    [
        ("sales.csv", None, True),
        ("sales.csv", "  ", True),
        ("sales.csv", "*", True),
        ("sales.csv", "sales*", True),
        ("SALES_2024.CSV", "sales_????.csv", True),
        ("sales_24.csv", "sales_????.csv", False),
        ("stock.xlsx", "sales*; stock*", True),
        ("notes.txt", "*.csv,*.xlsx", False),
        ("a+b.csv", "a+b.csv", True),
    ],
)
def test_matches_pattern(name, pattern, expected):
    assert matches_pattern(name, pattern) is expected


def test_file_extension():
    assert file_extension("Report.XLSX") == ".xlsx"
    assert file_extension("archive.tar.gz") == ".gz"
    assert file_extension("README") == ""


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (".\\reports\\sales.csv", "reports/sales.csv"),
        ("/srv//exports/q1.csv", "srv/exports/q1.csv"),
        ("  ./a/b.csv ", "a/b.csv"),
        ("C:\\data\\x.csv", "C:/data/x.csv"),
    ],
)
def test_normalize_remote_path(raw, expected):
    assert normalize_remote_path(raw) == expected


def test_sanitize_file_name():
    assert sanitize_file_name("Q1 sales (final).csv") == "Q1_sales_final_.csv"
    assert sanitize_file_name("../../etc/passwd") == "etc_passwd"
    assert sanitize_file_name("...") == "file"
    assert len(sanitize_file_name("x" * 300)) == 120
