"""Query building and in-memory evaluation."""

from datasetflow.query.expressions import compile_expression, evaluate_expression
from datasetflow.query.filters import (
    OPERATORS,
    apply_filters,
    build_predicate,
    validate_filters,
)
from datasetflow.query.sql_builder import (
    ParamBinder,
    build_count_query,
    build_effective_query,
    paginate,
)

__all__ = [
    "OPERATORS",
    "ParamBinder",
    "apply_filters",
    "build_count_query",
    "build_effective_query",
    "build_predicate",
    "compile_expression",
    "evaluate_expression",
    "paginate",
    "validate_filters",
]
