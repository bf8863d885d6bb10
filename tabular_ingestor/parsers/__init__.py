"""Parser registry keyed by file extension."""

from __future__ import annotations

from pathlib import PurePath

from ..exceptions import UnsupportedFormatError
from ..utils.config import UploadLimits
from .base import MISSING_CELL, ParsedTable, TabularParser
from .csv_parser import CSVParser
from .excel_parser import ExcelParser

_PARSER_REGISTRY: dict[str, type[TabularParser]] = {}


def register_parser(parser_class: type[TabularParser]) -> None:
    """Register a parser class for each extension it declares."""

    for extension in parser_class.extensions:
        _PARSER_REGISTRY[extension.lower()] = parser_class


def get_parser(file_name: str, limits: UploadLimits | None = None) -> TabularParser:
    """Return a parser instance for ``file_name``.

    Raises:
        UnsupportedFormatError: If no parser handles the extension.
    """

    extension = PurePath(file_name).suffix.lower()
    parser_class = _PARSER_REGISTRY.get(extension)
    if parser_class is None:
        raise UnsupportedFormatError(extension)
    return parser_class(limits)


register_parser(CSVParser)
register_parser(ExcelParser)

__all__ = [
    "MISSING_CELL",
    "ParsedTable",
    "TabularParser",
    "get_parser",
    "register_parser",
]
