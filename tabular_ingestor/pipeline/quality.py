"""Data-quality scoring over parsed rows.

``compute_quality`` is pure: the same columns and rows always produce the
same report, and every rate lies in ``[0, 1]``.
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

NUMERIC_COLUMN_THRESHOLD = 0.7

WEIGHT_MISSING = 0.4
WEIGHT_DUPLICATE = 0.2
WEIGHT_INVALID = 0.2
WEIGHT_SCHEMA = 0.2

HIGH_TRUST_MIN = 80.0
MEDIUM_TRUST_MIN = 50.0

_BLANK_TOKENS = frozenset({"", "-", "null", "nan", "n/a"})


class TrustLevel(str, Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


@dataclass(frozen=True, slots=True)
class QualityReport:
    score: float
    trust_level: TrustLevel
    missing_rate: float
    duplicate_rate: float
    invalid_rate: float
    schema_inconsistency_rate: float
    total_rows: int
    total_columns: int

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["trust_level"] = self.trust_level.value
        return payload


def is_missing(value: Any) -> bool:
    """Blank-like values: None, empty strings and the ``-``/null/nan/n/a sentinels."""

    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return str(value).strip().lower() in _BLANK_TOKENS


def is_numeric(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int | float):
        return math.isfinite(value)
    text = str(value).strip().replace(",", "")
    if not text:
        return False
    try:
        return math.isfinite(float(text))
    except ValueError:
        return False


def _signature_value(value: Any) -> str:
    return "" if is_missing(value) else str(value).strip().lower()


def trust_level_for(score: float) -> TrustLevel:
    if score >= HIGH_TRUST_MIN:
        return TrustLevel.HIGH
    if score >= MEDIUM_TRUST_MIN:
        return TrustLevel.MEDIUM
    return TrustLevel.LOW


def _round_half_up(value: float, digits: int) -> float:
    factor = 10**digits
    return math.floor(value * factor + 0.5) / factor


def compute_quality(
    columns: Sequence[str],
    rows: Sequence[Mapping[str, Any]],
) -> QualityReport:
    """Score a table by missing, duplicate, invalid and schema-inconsistency rates."""

    total_rows = len(rows)
    total_columns = len(columns)
    if total_rows == 0 or total_columns == 0:
        return QualityReport(
            score=0.0,
            trust_level=TrustLevel.LOW,
            missing_rate=1.0,
            duplicate_rate=0.0,
            invalid_rate=0.0,
            schema_inconsistency_rate=0.0,
            total_rows=total_rows,
            total_columns=total_columns,
        )

    declared = set(columns)
    non_missing = dict.fromkeys(columns, 0)
    numeric = dict.fromkeys(columns, 0)
    missing_cells = 0
    seen_signatures: set[str] = set()
    duplicate_rows = 0
    inconsistent_rows = 0

    for row in rows:
        if any(key not in declared for key in row):
            inconsistent_rows += 1

        signature_parts: list[str] = []
        for column in columns:
            value = row.get(column)
            signature_parts.append(_signature_value(value))
            if is_missing(value):
                missing_cells += 1
                continue
            non_missing[column] += 1
            if is_numeric(value):
                numeric[column] += 1

        signature = "|".join(signature_parts)
        if signature in seen_signatures:
            duplicate_rows += 1
        else:
            seen_signatures.add(signature)

    numeric_columns = [
        column
        for column in columns
        if non_missing[column] > 0
        and numeric[column] / non_missing[column] >= NUMERIC_COLUMN_THRESHOLD
    ]
    invalid_cells = sum(non_missing[column] - numeric[column] for column in numeric_columns)
    numeric_cell_count = len(numeric_columns) * total_rows

    missing_rate = missing_cells / (total_rows * total_columns)
    duplicate_rate = duplicate_rows / total_rows
    invalid_rate = invalid_cells / numeric_cell_count if numeric_cell_count else 0.0
    schema_rate = inconsistent_rows / total_rows

    penalty = (
        WEIGHT_MISSING * missing_rate
        + WEIGHT_DUPLICATE * duplicate_rate
        + WEIGHT_INVALID * invalid_rate
        + WEIGHT_SCHEMA * schema_rate
    )
    score = min(100.0, max(0.0, _round_half_up(100 - penalty * 100, 1)))

    return QualityReport(
        score=score,
        trust_level=trust_level_for(score),
        missing_rate=missing_rate,
        duplicate_rate=duplicate_rate,
        invalid_rate=invalid_rate,
        schema_inconsistency_rate=schema_rate,
        total_rows=total_rows,
        total_columns=total_columns,
    )
