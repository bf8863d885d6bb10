"""Tests for template rule parsing and evaluation."""

from __future__ import annotations

import pytest

from tabular_ingestor.exceptions import TemplateMismatchError
from tabular_ingestor.pipeline.templates import (
    MismatchReason,
    TemplateRule,
    evaluate_template,
    parse_template_rule,
)


class TestParseTemplateRule:
    def test_json_object(self) -> None:
        rule = parse_template_rule(
            '{"fileNamePattern": "sales_*.csv", "requiredColumns": ["region", "revenue"]}'
        )

        assert rule == TemplateRule(
            file_name_pattern="sales_*.csv", required_columns=("region", "revenue")
        )

    def test_columns_as_delimited_string(self) -> None:
        rule = parse_template_rule({"required_columns": "region; revenue,units"})

        assert rule is not None
        assert rule.required_columns == ("region", "revenue", "units")

    def test_bare_string_is_a_pattern(self) -> None:
        rule = parse_template_rule("report_*.xlsx")

        assert rule == TemplateRule(file_name_pattern="report_*.xlsx")

    def test_json_string_literal_is_a_pattern(self) -> None:
        rule = parse_template_rule('"report_*.xlsx"')

        assert rule == TemplateRule(file_name_pattern="report_*.xlsx")

    @pytest.mark.parametrize("raw", [None, "", "   ", "{}", "[1, 2]"])
    def test_empty_rules_parse_to_none(self, raw: str | None) -> None:
        assert parse_template_rule(raw) is None


class TestEvaluateTemplate:
    def test_no_rule_passes(self) -> None:
        assert evaluate_template(None, "anything.csv", []).passed

    def test_name_pattern_mismatch(self) -> None:
        rule = TemplateRule(file_name_pattern="sales_*.csv")

        verdict = evaluate_template(rule, "inventory.csv", ["region"])

        assert not verdict.passed
        assert verdict.reason is MismatchReason.NAME_PATTERN
        assert "inventory.csv" in (verdict.message or "")

    def test_missing_columns_are_named(self) -> None:
        rule = TemplateRule(required_columns=("region", "revenue"))

        verdict = evaluate_template(rule, "sales.csv", ["region", "units"])

        assert not verdict.passed
        assert verdict.reason is MismatchReason.MISSING_COLUMNS
        assert verdict.missing_columns == ("revenue",)
        assert verdict.message == (
            "Template rule mismatch: missing required column(s): revenue."
        )

    def test_column_match_is_case_insensitive(self) -> None:
        rule = TemplateRule(file_name_pattern="SALES_*", required_columns=("Revenue",))

        verdict = evaluate_template(rule, "sales_q1.csv", [" revenue ", "region"])

        assert verdict.passed

    def test_raise_for_failure(self) -> None:
        verdict = evaluate_template(
            TemplateRule(required_columns=("revenue",)), "sales.csv", ["region"]
        )

        with pytest.raises(TemplateMismatchError) as exc_info:
            verdict.raise_for_failure()

        assert exc_info.value.missing_columns == ["revenue"]
