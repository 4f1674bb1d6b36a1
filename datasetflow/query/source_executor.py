import time
from typing import Optional

from datasetflow.connectors.registry import CancelToken, ConnectorRegistry
from datasetflow.exceptions import ConfigurationError
from datasetflow.logging import get_logger
from datasetflow.models import Dataset, QueryOptions, QueryResult
from datasetflow.query.sql_builder import (
    build_count_query,
    build_effective_query,
    paginate,
)

logger = get_logger(__name__)


class SourceQueryExecutor:
    """Runs SOURCE datasets against their connector.

    Args:
        registry: Connector registry providing scoped connections
        rls: Row-level security provider (``build_predicate``)
        default_timeout: Seconds per connector operation when the caller
            gives none
        acquire_timeout: Seconds to wait for a free connection slot
    """

    def __init__(
        self,
        registry: ConnectorRegistry,
        rls,
        default_timeout: Optional[float] = None,
        acquire_timeout: Optional[float] = None,
    ):
        self.registry = registry
        self.rls = rls
        self.default_timeout = default_timeout
        self.acquire_timeout = acquire_timeout

    def execute(
        self,
        dataset: Dataset,
        options: QueryOptions,
        cancel_token: Optional[CancelToken] = None,
    ) -> QueryResult:
        """Execute the dataset's base query with security, filters and paging.

        Raises:
            ConfigurationError: Unknown connector, invalid config or no query
            DataSourceConnectionError: Backend unreachable
            QueryExecutionError: Backend rejected the query
            QueryTimeoutError / QueryCancelledError: Operation aborted
        """
        start = time.monotonic()
        if not dataset.base_query:
            raise ConfigurationError(f"SOURCE dataset '{dataset.id}' has no base query")
        connector = self.registry.get(dataset.connector_name)
        if connector is None:
            raise ConfigurationError(
                f"Dataset '{dataset.id}' uses unknown connector "
                f"'{dataset.connector_name}'",
                connector_name=dataset.connector_name,
            )

        predicate = None
        if dataset.row_level_security:
            predicate = self.rls.build_predicate(
                options.caller_id, dataset.row_level_security
            )

        effective = build_effective_query(
            dataset.base_query,
            security_predicate=predicate,
            filters=options.filters,
            columns=options.columns,
            style=connector.param_style,
        )
        count_query = build_count_query(effective)
        page_query = paginate(effective, options.limit, options.offset)

        with self.registry.connection(
            dataset.connector_name,
            dataset.connector_config,
            timeout=options.timeout_seconds or self.default_timeout,
            cancel_token=cancel_token,
            acquire_timeout=self.acquire_timeout,
        ) as connection:
            count_result = connection.execute(count_query.sql, count_query.params)
            total_row_count = int(next(iter(count_result.rows[0].values())))
            page = connection.execute(page_query.sql, page_query.params)

        logger.debug(
            f"Dataset '{dataset.id}': {len(page.rows)} of {total_row_count} rows "
            f"from {dataset.connector_name} in {time.monotonic() - start:.3f}s"
        )
        return QueryResult(
            columns=page.columns,
            rows=page.rows,
            total_row_count=total_row_count,
        )
