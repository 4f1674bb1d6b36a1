"""In-memory transformation pipeline for TRANSFORMATION datasets.

The parent's full result is loaded into a pandas DataFrame of Python
objects and the steps below run strictly in this order:

1. row-level security of the transformation itself (condition form only)
2. transform filters
3. caller filters
4. ``total_row_count`` is taken here
5. ``select_columns``
6. computed columns
7. renames
8. caller column selection
9. offset, then limit
"""

from typing import Any, Callable, Dict, List

import pandas as pd

from datasetflow.connectors.types import normalize_type_hint
from datasetflow.exceptions import (
    ConfigurationError,
    TransformationDepthExceeded,
    ValidationError,
)
from datasetflow.logging import get_logger
from datasetflow.models import ColumnInfo, Dataset, QueryOptions, QueryResult
from datasetflow.query.expressions import compile_expression
from datasetflow.query.filters import apply_filters, is_null
from datasetflow.query.resolver import DatasetResolver

logger = get_logger(__name__)

ParentFetcher = Callable[[Dataset, int], QueryResult]


def result_to_frame(result: QueryResult) -> pd.DataFrame:
    names = [c.name for c in result.columns]
    return pd.DataFrame(result.rows, columns=names, dtype=object)


def frame_to_rows(frame: pd.DataFrame) -> List[Dict[str, Any]]:
    return [
        {key: None if is_null(value) else value for key, value in record.items()}
        for record in frame.to_dict("records")
    ]


def _require_columns(frame: pd.DataFrame, columns: List[str], what: str) -> None:
    missing = [c for c in columns if c not in frame.columns]
    if missing:
        raise ValidationError(f"{what} references unknown columns: {missing}")


class TransformationExecutor:
    """Derives a dataset's rows from its parent's full result."""

    def __init__(self, resolver: DatasetResolver, rls=None, max_depth: int = 10):
        self.resolver = resolver
        self.rls = rls
        self.max_depth = max_depth

    def execute(
        self,
        dataset: Dataset,
        options: QueryOptions,
        fetch_parent: ParentFetcher,
        depth: int = 1,
    ) -> QueryResult:
        """Run the pipeline for ``dataset``.

        Args:
            dataset: TRANSFORMATION dataset
            options: Caller options (filters, columns, limit, offset)
            fetch_parent: Returns the parent's full, unpaginated result;
                receives the parent dataset and the next depth
            depth: Number of transformations between the caller and here

        Raises:
            TransformationDepthExceeded: ``depth`` is beyond the maximum
            ParentDatasetUnresolvable: The parent cannot be loaded
            ValidationError: Bad filters or unknown columns
            ExpressionError: A computed column expression is rejected
        """
        if depth > self.max_depth:
            logger.error(
                f"Transformation depth {depth} exceeds {self.max_depth} "
                f"at dataset '{dataset.id}'"
            )
            raise TransformationDepthExceeded(dataset.id, self.max_depth)

        parent = self.resolver.resolve_parent(dataset)
        parent_result = fetch_parent(parent, depth + 1)

        frame = result_to_frame(parent_result)
        types: Dict[str, str] = {c.name: c.type for c in parent_result.columns}
        config = dataset.transform_config

        frame = self._apply_row_level_security(dataset, options.caller_id, frame)
        if config is not None:
            frame = apply_filters(frame, config.filters)
        frame = apply_filters(frame, options.filters)
        total_row_count = len(frame)

        if config is not None:
            if config.select_columns:
                _require_columns(frame, config.select_columns, "select_columns")
                frame = frame[list(config.select_columns)]
            for computed in config.computed_columns:
                frame = self._add_computed_column(frame, computed)
                types[computed.name] = normalize_type_hint(computed.type)
            for rename in config.renamed_columns:
                if rename.source not in frame.columns:
                    logger.debug(
                        f"Dataset '{dataset.id}': rename source "
                        f"'{rename.source}' not present, skipping"
                    )
                    continue
                if rename.target in frame.columns and rename.target != rename.source:
                    frame = frame.drop(columns=[rename.target])
                frame = frame.rename(columns={rename.source: rename.target})
                types[rename.target] = types.get(rename.source, "unknown")

        if options.columns:
            _require_columns(frame, options.columns, "Column selection")
            frame = frame[list(options.columns)]

        start = options.offset or 0
        stop = start + options.limit if options.limit is not None else None
        frame = frame.iloc[start:stop]

        return QueryResult(
            columns=[ColumnInfo(name, types.get(name, "unknown")) for name in frame.columns],
            rows=frame_to_rows(frame),
            total_row_count=total_row_count,
        )

    def _apply_row_level_security(
        self, dataset: Dataset, caller_id: str, frame: pd.DataFrame
    ) -> pd.DataFrame:
        if not dataset.row_level_security or self.rls is None:
            return frame
        predicate = self.rls.build_predicate(caller_id, dataset.row_level_security)
        if predicate is None:
            return frame
        if predicate.expression:
            raise ConfigurationError(
                f"Transformation dataset '{dataset.id}' uses a row-level security "
                "expression; only user_column and conditions apply in memory"
            )
        return apply_filters(frame, predicate.conditions)

    @staticmethod
    def _add_computed_column(frame: pd.DataFrame, computed) -> pd.DataFrame:
        expression = compile_expression(computed.expression, list(frame.columns))
        values = [expression.evaluate(row) for row in frame.to_dict("records")]
        frame = frame.copy()
        frame[computed.name] = pd.Series(values, index=frame.index, dtype=object)
        return frame
