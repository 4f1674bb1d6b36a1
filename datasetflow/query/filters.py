"""Filter validation, SQL rendering and in-memory evaluation.

The same operator set is used for predicates pushed into a connector query
and for rows filtered in memory by transformations, and both paths give the
same answer for the same data.
"""

import math
import numbers
from typing import Any, Iterable, List, Mapping, Optional, Union

import pandas as pd

from datasetflow.exceptions import UnsupportedOperatorError, ValidationError
from datasetflow.models import FilterCondition

EQUALS = "equals"
NOT_EQUALS = "not_equals"
CONTAINS = "contains"
STARTS_WITH = "starts_with"
ENDS_WITH = "ends_with"
GREATER_THAN = "greater_than"
LESS_THAN = "less_than"
GREATER_EQUAL = "greater_equal"
LESS_EQUAL = "less_equal"
IN = "in"
NOT_IN = "not_in"
IS_NULL = "is_null"
IS_NOT_NULL = "is_not_null"

OPERATORS = frozenset(
    {
        EQUALS,
        NOT_EQUALS,
        CONTAINS,
        STARTS_WITH,
        ENDS_WITH,
        GREATER_THAN,
        LESS_THAN,
        GREATER_EQUAL,
        LESS_EQUAL,
        IN,
        NOT_IN,
        IS_NULL,
        IS_NOT_NULL,
    }
)
NO_VALUE_OPERATORS = frozenset({IS_NULL, IS_NOT_NULL})
LIST_OPERATORS = frozenset({IN, NOT_IN})
PATTERN_OPERATORS = frozenset({CONTAINS, STARTS_WITH, ENDS_WITH})

_COMPARISON_SQL = {
    GREATER_THAN: ">",
    LESS_THAN: "<",
    GREATER_EQUAL: ">=",
    LESS_EQUAL: "<=",
}

FilterLike = Union[FilterCondition, Mapping[str, Any]]


def validate_filter(condition: FilterLike) -> FilterCondition:
    """Check one filter and return it as a FilterCondition.

    Raises:
        UnsupportedOperatorError: For an operator outside the supported set
        ValidationError: For a missing column or a missing / malformed value
    """
    if not isinstance(condition, FilterCondition):
        condition = FilterCondition.from_dict(condition)

    column = condition.column
    if not isinstance(column, str) or not column:
        raise ValidationError("Filter column must be a non-empty string", field="column")
    if condition.operator not in OPERATORS:
        raise UnsupportedOperatorError(condition.operator, column=column)
    if condition.operator in NO_VALUE_OPERATORS:
        return condition

    if condition.value is None:
        raise ValidationError(
            f"Filter on '{column}' with operator '{condition.operator}' "
            "requires a value",
            field=column,
        )
    if condition.operator in LIST_OPERATORS:
        if not isinstance(condition.value, (list, tuple, set, frozenset)):
            raise ValidationError(
                f"Operator '{condition.operator}' on '{column}' requires a list value",
                field=column,
            )
        return FilterCondition(column, condition.operator, list(condition.value))
    return condition


def validate_filters(filters: Optional[Iterable[FilterLike]]) -> List[FilterCondition]:
    return [validate_filter(f) for f in filters or []]


def _escape_like(value: Any) -> str:
    return (
        str(value).replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    )


def build_predicate(condition: FilterCondition, binder) -> str:
    """Render a validated filter as a parameterised SQL fragment.

    Args:
        condition: A filter returned by validate_filter
        binder: ParamBinder collecting the bound values

    Returns:
        SQL boolean expression; values never appear in the text
    """
    column = binder.quote(condition.column)
    operator = condition.operator
    value = condition.value

    if operator == IS_NULL:
        return f"{column} IS NULL"
    if operator == IS_NOT_NULL:
        return f"{column} IS NOT NULL"
    if operator == EQUALS:
        return f"{column} = {binder.bind(value)}"
    if operator == NOT_EQUALS:
        return f"({column} IS NULL OR {column} <> {binder.bind(value)})"
    if operator in _COMPARISON_SQL:
        return f"{column} {_COMPARISON_SQL[operator]} {binder.bind(value)}"
    if operator in PATTERN_OPERATORS:
        escaped = _escape_like(value)
        if operator == CONTAINS:
            pattern = f"%{escaped}%"
        elif operator == STARTS_WITH:
            pattern = f"{escaped}%"
        else:
            pattern = f"%{escaped}"
        return f"CAST({column} AS VARCHAR) ILIKE {binder.bind(pattern)} ESCAPE '\\'"
    if operator == IN:
        if not value:
            return "FALSE"
        placeholders = ", ".join(binder.bind(v) for v in value)
        return f"{column} IN ({placeholders})"
    if operator == NOT_IN:
        if not value:
            return "TRUE"
        placeholders = ", ".join(binder.bind(v) for v in value)
        return f"({column} IS NULL OR {column} NOT IN ({placeholders}))"
    raise UnsupportedOperatorError(operator, column=condition.column)


def is_null(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return pd.api.types.is_scalar(value) and bool(pd.isna(value))


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, numbers.Number):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _equal(left: Any, right: Any) -> bool:
    left_number, right_number = _as_number(left), _as_number(right)
    if left_number is not None and right_number is not None:
        if not isinstance(left, str) or not isinstance(right, str):
            return left_number == right_number
    return left == right


def _compare(left: Any, right: Any) -> Optional[int]:
    """Three-way compare; None when the values are not comparable."""
    left_number, right_number = _as_number(left), _as_number(right)
    if left_number is not None and right_number is not None and not (
        isinstance(left, str) and isinstance(right, str)
    ):
        left, right = left_number, right_number
    try:
        if left < right:
            return -1
        if left > right:
            return 1
        return 0
    except TypeError:
        return None


def value_matches(value: Any, condition: FilterCondition) -> bool:
    """Evaluate one filter against one cell value."""
    operator = condition.operator
    expected = condition.value

    if operator == IS_NULL:
        return is_null(value)
    if operator == IS_NOT_NULL:
        return not is_null(value)
    if is_null(value):
        return operator in (NOT_EQUALS, NOT_IN)

    if operator == EQUALS:
        return _equal(value, expected)
    if operator == NOT_EQUALS:
        return not _equal(value, expected)
    if operator in PATTERN_OPERATORS:
        haystack, needle = str(value).lower(), str(expected).lower()
        if operator == CONTAINS:
            return needle in haystack
        if operator == STARTS_WITH:
            return haystack.startswith(needle)
        return haystack.endswith(needle)
    if operator in _COMPARISON_SQL:
        result = _compare(value, expected)
        if result is None:
            return False
        if operator == GREATER_THAN:
            return result > 0
        if operator == LESS_THAN:
            return result < 0
        if operator == GREATER_EQUAL:
            return result >= 0
        return result <= 0
    if operator == IN:
        return any(_equal(value, v) for v in expected)
    if operator == NOT_IN:
        return not any(_equal(value, v) for v in expected)
    raise UnsupportedOperatorError(operator, column=condition.column)


def row_matches(row: Mapping[str, Any], conditions: Iterable[FilterCondition]) -> bool:
    """Check a row dict against ANDed filters."""
    for condition in conditions:
        if condition.column not in row:
            raise ValidationError(
                f"Filter column '{condition.column}' does not exist",
                field=condition.column,
            )
        if not value_matches(row[condition.column], condition):
            return False
    return True


def apply_filters(frame: pd.DataFrame, filters: Iterable[FilterLike]) -> pd.DataFrame:
    """Return the rows of ``frame`` matching every filter."""
    conditions = validate_filters(filters)
    if not conditions:
        return frame
    mask = pd.Series(True, index=frame.index)
    for condition in conditions:
        if condition.column not in frame.columns:
            raise ValidationError(
                f"Filter column '{condition.column}' does not exist",
                field=condition.column,
            )
        mask &= frame[condition.column].map(
            lambda v, c=condition: value_matches(v, c)
        ).astype(bool)
    return frame[mask]
