"""Tests for filter validation, SQL rendering and in-memory evaluation."""

import pandas as pd
import pytest

from datasetflow.exceptions import UnsupportedOperatorError, ValidationError
from datasetflow.models import FilterCondition
from datasetflow.query.filters import (
    OPERATORS,
    apply_filters,
    build_predicate,
    is_null,
    row_matches,
    validate_filter,
    validate_filters,
    value_matches,
)
from datasetflow.query.sql_builder import ParamBinder


def test_operator_set():
    assert OPERATORS == {
        "equals",
        "not_equals",
        "contains",
        "starts_with",
        "ends_with",
        "greater_than",
        "less_than",
        "greater_equal",
        "less_equal",
        "in",
        "not_in",
        "is_null",
        "is_not_null",
    }


class TestValidation:
    def test_unknown_operator(self):
        with pytest.raises(UnsupportedOperatorError) as exc_info:
            validate_filter({"column": "a", "operator": "like", "value": "x"})
        assert exc_info.value.operator == "like"
        assert exc_info.value.field == "a"

    def test_missing_column(self):
        with pytest.raises(ValidationError, match="column"):
            validate_filter({"operator": "equals", "value": 1})

    @pytest.mark.parametrize("operator", ["is_null", "is_not_null"])
    def test_null_operators_need_no_value(self, operator):
        condition = validate_filter({"column": "a", "operator": operator})
        assert condition == FilterCondition("a", operator, None)

    @pytest.mark.parametrize("operator", ["equals", "contains", "greater_than", "in"])
    def test_other_operators_need_a_value(self, operator):
        with pytest.raises(ValidationError, match="requires a value"):
            validate_filter({"column": "a", "operator": operator})

    def test_list_operators_need_a_list(self):
        with pytest.raises(ValidationError, match="requires a list"):
            validate_filter({"column": "a", "operator": "in", "value": "x"})
        condition = validate_filter({"column": "a", "operator": "not_in", "value": (1, 2)})
        assert condition.value == [1, 2]

    def test_validate_filters_accepts_none(self):
        assert validate_filters(None) == []


class TestSqlRendering:
    @pytest.mark.parametrize(
        "condition, sql, params",
        [
            (FilterCondition("a", "equals", 1), '"a" = ?', [1]),
            (
                FilterCondition("a", "not_equals", 1),
                '("a" IS NULL OR "a" <> ?)',
                [1],
            ),
            (FilterCondition("a", "greater_equal", 5), '"a" >= ?', [5]),
            (FilterCondition("a", "is_null"), '"a" IS NULL', []),
            (FilterCondition("a", "is_not_null"), '"a" IS NOT NULL', []),
            (FilterCondition("a", "in", [1, 2]), '"a" IN (?, ?)', [1, 2]),
            (FilterCondition("a", "in", []), "FALSE", []),
            (FilterCondition("a", "not_in", []), "TRUE", []),
            (
                FilterCondition("a", "not_in", [3]),
                '("a" IS NULL OR "a" NOT IN (?))',
                [3],
            ),
        ],
    )
    def test_predicates(self, condition, sql, params):
        binder = ParamBinder("qmark")
        assert build_predicate(condition, binder) == sql
        assert binder.params == params

    def test_pattern_operators_escape_wildcards(self):
        binder = ParamBinder("named")
        sql = build_predicate(FilterCondition("name", "contains", "50%_off"), binder)
        assert sql == "CAST(\"name\" AS VARCHAR) ILIKE :p0 ESCAPE '\\'"
        assert binder.params == {"p0": "%50\\%\\_off%"}

    def test_starts_and_ends_with(self):
        binder = ParamBinder("qmark")
        build_predicate(FilterCondition("n", "starts_with", "ab"), binder)
        build_predicate(FilterCondition("n", "ends_with", "yz"), binder)
        assert binder.params == ["ab%", "%yz"]

    def test_identifiers_are_quoted(self):
        binder = ParamBinder("qmark")
        sql = build_predicate(FilterCondition('we"ird', "equals", 1), binder)
        assert sql == '"we""ird" = ?'


class TestInMemoryEvaluation:
    @pytest.mark.parametrize(
        "value, expected",
        [(None, True), (float("nan"), True), (pd.NA, True), (0, False), ("", False)],
    )
    def test_is_null(self, value, expected):
        assert is_null(value) is expected

    @pytest.mark.parametrize(
        "operator, value, expected",
        [
            ("equals", "x", False),
            ("not_equals", "x", True),
            ("in", ["x"], False),
            ("not_in", ["x"], True),
            ("greater_than", 1, False),
            ("contains", "x", False),
        ],
    )
    def test_nulls_only_match_negative_operators(self, operator, value, expected):
        assert value_matches(None, FilterCondition("a", operator, value)) is expected

    def test_numeric_comparison_across_types(self):
        assert value_matches(10, FilterCondition("a", "greater_than", 9.5))
        assert value_matches(3, FilterCondition("a", "equals", 3.0))
        assert value_matches("10", FilterCondition("a", "greater_than", 9))

    def test_string_comparison_is_lexicographic(self):
        assert value_matches("b", FilterCondition("a", "greater_than", "a"))
        assert not value_matches("10", FilterCondition("a", "greater_than", "9"))

    def test_incomparable_values_do_not_match(self):
        assert not value_matches("abc", FilterCondition("a", "less_than", 3))

    def test_patterns_are_case_insensitive(self):
        assert value_matches("Hello World", FilterCondition("a", "contains", "WORLD"))
        assert value_matches("Hello", FilterCondition("a", "starts_with", "he"))
        assert value_matches("Hello", FilterCondition("a", "ends_with", "LO"))

    def test_row_matches_requires_known_columns(self):
        assert row_matches({"a": 1}, [FilterCondition("a", "equals", 1)])
        with pytest.raises(ValidationError, match="does not exist"):
            row_matches({"a": 1}, [FilterCondition("b", "equals", 1)])

    def test_apply_filters(self):
        frame = pd.DataFrame(
            {"a": [1, 2, None, 4], "b": ["x", "y", "x", None]}, dtype=object
        )
        result = apply_filters(
            frame,
            [
                {"column": "b", "operator": "not_equals", "value": "y"},
                {"column": "a", "operator": "is_not_null"},
            ],
        )
        assert result["a"].tolist() == [1, 4]

    def test_apply_filters_unknown_column(self):
        frame = pd.DataFrame({"a": [1]})
        with pytest.raises(ValidationError):
            apply_filters(frame, [{"column": "b", "operator": "equals", "value": 1}])

    def test_apply_no_filters_returns_frame(self):
        frame = pd.DataFrame({"a": [1]})
        assert apply_filters(frame, []) is frame
