"""Base parser abstraction for tabular formats."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, ClassVar

from ..exceptions import InvalidFileError
from ..utils.config import UploadLimits

MISSING_CELL = "-"


@dataclass(slots=True)
class ParsedTable:
    """Ordered header plus row maps extracted from one file."""

    columns: list[str]
    rows: list[dict[str, Any]] = field(default_factory=list)
    file_type: str = "csv"

    @property
    def row_count(self) -> int:
        return len(self.rows)


class TabularParser(ABC):
    """Turns a file on disk into a :class:`ParsedTable`.

    Subclasses declare the extensions they handle and implement header
    extraction separately from full parsing so push ingress can run template
    checks before reading every row.
    """

    extensions: ClassVar[tuple[str, ...]] = ()
    file_type: ClassVar[str] = ""

    def __init__(self, limits: UploadLimits | None = None) -> None:
        self.limits = limits or UploadLimits()

    @abstractmethod
    def read_header(self, path: str | Path) -> list[str]:
        """Return the raw header cells of the first row/sheet."""

    @abstractmethod
    def parse(self, path: str | Path) -> ParsedTable:
        """Parse header and rows, enforcing configured limits."""

    def finalize_columns(self, raw_columns: Iterable[Any]) -> list[str]:
        """Trim header names and reject empty, duplicate or oversized headers."""

        columns = [str(name).strip() for name in raw_columns]
        columns = [name for name in columns if name]
        if not columns:
            raise InvalidFileError("Missing header columns.")

        seen: set[str] = set()
        duplicates: list[str] = []
        for name in columns:
            key = name.lower()
            if key in seen and name not in duplicates:
                duplicates.append(name)
            seen.add(key)
        if duplicates:
            raise InvalidFileError(f"Duplicate column names: {', '.join(duplicates)}.")

        if len(columns) > self.limits.max_columns:
            raise InvalidFileError(f"Too many columns (max {self.limits.max_columns}).")
        return columns

    def trim_cell(self, value: Any) -> Any:
        if isinstance(value, str) and len(value) > self.limits.max_cell_length:
            return value[: self.limits.max_cell_length]
        return value
