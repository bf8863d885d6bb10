"""Per-source template rules: file-name pattern plus required header columns."""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..exceptions import TemplateMismatchError
from ..utils.patterns import matches_pattern, normalize_list

_PATTERN_KEYS = ("fileNamePattern", "filenamePattern", "file_name_pattern", "pattern")
_COLUMN_KEYS = ("requiredColumns", "required_columns", "columns", "headers")


@dataclass(frozen=True, slots=True)
class TemplateRule:
    file_name_pattern: str | None = None
    required_columns: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.file_name_pattern and not self.required_columns


class MismatchReason(str, Enum):
    NAME_PATTERN = "name_pattern"
    MISSING_COLUMNS = "missing_columns"


@dataclass(frozen=True, slots=True)
class TemplateVerdict:
    passed: bool
    reason: MismatchReason | None = None
    message: str | None = None
    missing_columns: tuple[str, ...] = ()

    def raise_for_failure(self) -> None:
        if not self.passed:
            raise TemplateMismatchError(
                self.message or "Template rule mismatch.",
                missing_columns=list(self.missing_columns),
            )


PASS = TemplateVerdict(passed=True)


def _first(mapping: Mapping[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        if key in mapping and mapping[key] not in (None, ""):
            return mapping[key]
    return None


def parse_template_rule(raw: str | Mapping[str, Any] | None) -> TemplateRule | None:
    """Parse a stored template rule.

    Accepts a JSON object (or mapping) with a name pattern and required
    columns. Any other non-empty string is treated as a bare name pattern.
    """

    if raw is None:
        return None

    payload: Any = raw
    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            return None
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            return TemplateRule(file_name_pattern=text)
        if isinstance(payload, str):
            return TemplateRule(file_name_pattern=payload.strip() or None)

    if not isinstance(payload, Mapping):
        return None

    pattern = _first(payload, _PATTERN_KEYS)
    columns = normalize_list(_first(payload, _COLUMN_KEYS))
    rule = TemplateRule(
        file_name_pattern=str(pattern).strip() if pattern else None,
        required_columns=tuple(columns),
    )
    return None if rule.is_empty else rule


def evaluate_template(
    rule: TemplateRule | None,
    file_name: str,
    header_columns: Iterable[str],
) -> TemplateVerdict:
    """Check the name pattern first, then the required columns (case-insensitive)."""

    if rule is None or rule.is_empty:
        return PASS

    if rule.file_name_pattern and not matches_pattern(file_name, rule.file_name_pattern):
        return TemplateVerdict(
            passed=False,
            reason=MismatchReason.NAME_PATTERN,
            message=(
                f"Template rule mismatch: file name '{file_name}' does not match "
                f"pattern '{rule.file_name_pattern}'."
            ),
        )

    present = {str(column).strip().lower() for column in header_columns}
    missing = tuple(
        column for column in rule.required_columns if column.strip().lower() not in present
    )
    if missing:
        return TemplateVerdict(
            passed=False,
            reason=MismatchReason.MISSING_COLUMNS,
            message=f"Template rule mismatch: missing required column(s): {', '.join(missing)}.",
            missing_columns=missing,
        )

    return PASS
