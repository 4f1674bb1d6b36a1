"""Query Execution Service: the public entry point of the engine."""

import dataclasses
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional, Union

from datasetflow.cache import InMemoryCacheBackend, ResultCache, fingerprint
from datasetflow.collaborators import (
    AllowAllPermissions,
    LoggingAuditRecorder,
    QueryStats,
    QueryStatsSource,
)
from datasetflow.config import EngineSettings
from datasetflow.connectors.base.connection_test_result import ConnectionTestResult
from datasetflow.connectors.registry import CancelToken, ConnectorRegistry
from datasetflow.exceptions import (
    ConfigurationError,
    PermissionDenied,
    QueryCancelledError,
    ValidationError,
)
from datasetflow.logging import get_logger
from datasetflow.metadata import DatasetGraph, InMemoryMetadataStore, YamlMetadataStore
from datasetflow.models import ColumnInfo, Dataset, QueryOptions, QueryResult
from datasetflow.query.filters import validate_filters
from datasetflow.query.resolver import DatasetResolver
from datasetflow.query.source_executor import SourceQueryExecutor
from datasetflow.query.transform_executor import TransformationExecutor
from datasetflow.security import DefaultRowLevelSecurity

logger = get_logger(__name__)

STATS_TIMEFRAMES = {
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}


def _reorder_columns(result: QueryResult, columns: List[str]) -> None:
    by_name = {c.name: c for c in result.columns}
    result.columns = [by_name[name] for name in columns if name in by_name]
    names = [c.name for c in result.columns]
    result.rows = [{name: row.get(name) for name in names} for row in result.rows]


class QueryExecutionService:
    """Orchestrates permission checks, caching and dataset execution.

    Every collaborator is injected; the registry and cache are the only
    state shared between concurrent calls.
    """

    def __init__(
        self,
        registry: ConnectorRegistry,
        metadata_store,
        permissions,
        cache: Optional[ResultCache] = None,
        audit=None,
        rls=None,
        settings: Optional[EngineSettings] = None,
    ):
        self.settings = settings or EngineSettings()
        self.registry = registry
        self.metadata_store = metadata_store
        self.permissions = permissions
        self.cache = cache or ResultCache(
            InMemoryCacheBackend(max_entries=self.settings.cache_max_entries)
        )
        self.audit = audit
        self.rls = rls or DefaultRowLevelSecurity()

        max_depth = self.settings.max_transformation_depth
        self.resolver = DatasetResolver(metadata_store, max_depth=max_depth)
        self.source_executor = SourceQueryExecutor(
            registry,
            self.rls,
            default_timeout=self.settings.query_timeout_seconds,
            acquire_timeout=self.settings.connect_timeout_seconds,
        )
        self.transform_executor = TransformationExecutor(
            self.resolver, rls=self.rls, max_depth=max_depth
        )

        self._inflight: Dict[str, List[CancelToken]] = {}
        self._inflight_lock = threading.Lock()

        if hasattr(metadata_store, "add_change_listener"):
            metadata_store.add_change_listener(self.invalidate_dataset_cache)

    @classmethod
    def from_settings(
        cls,
        settings: Optional[EngineSettings] = None,
        catalog_path: Optional[str] = None,
        metadata_store=None,
        permissions=None,
        audit=None,
    ) -> "QueryExecutionService":
        """Build a service with the built-in connectors and default collaborators."""
        settings = settings or EngineSettings.load()
        registry = ConnectorRegistry()
        registry.discover(
            extra_paths=settings.extra_connectors,
            disabled=settings.disabled_connectors,
        )
        if metadata_store is None:
            max_depth = settings.max_transformation_depth
            metadata_store = (
                YamlMetadataStore.from_file(catalog_path, max_depth=max_depth)
                if catalog_path
                else InMemoryMetadataStore(max_depth=max_depth)
            )
        return cls(
            registry,
            metadata_store,
            permissions or AllowAllPermissions(),
            audit=audit if audit is not None else LoggingAuditRecorder(),
            settings=settings,
        )

    def execute_dataset_query(
        self, dataset_id: str, options: Union[QueryOptions, Mapping[str, Any]]
    ) -> QueryResult:
        """Execute a dataset query for a caller.

        Args:
            dataset_id: Dataset to query
            options: QueryOptions, or a mapping accepted by QueryOptions.from_dict

        Returns:
            QueryResult with ``execution_time`` measured from entry

        Raises:
            ValidationError: Malformed options or filters
            PermissionDenied: Caller may not read the dataset
            DatasetNotFound: No such dataset
            DatasetFlowError: Any execution failure, never an empty result
        """
        start = time.monotonic()
        if not isinstance(options, QueryOptions):
            options = QueryOptions.from_dict(options)
        options = dataclasses.replace(options, filters=validate_filters(options.filters))

        self._check_permission(options.caller_id, dataset_id)
        dataset = self.resolver.resolve(dataset_id)
        query_hash = self._fingerprint(dataset, options)

        token = self._track(query_hash)
        try:
            result = self._execute(dataset, options, query_hash, token, depth=1)
        finally:
            self._untrack(query_hash, token)

        result.execution_time = time.monotonic() - start
        result.query_hash = query_hash
        logger.info(
            f"Dataset '{dataset_id}' for '{options.caller_id}': "
            f"{len(result.rows)}/{result.total_row_count} rows, "
            f"cached={result.from_cache}, {result.execution_time:.3f}s"
        )
        self._record_audit(dataset_id, options.caller_id, result)
        return result

    def invalidate_dataset_cache(self, dataset_id: str) -> int:
        """Drop cached results of a dataset and of every dataset derived from it."""
        removed = self.cache.invalidate_dataset(dataset_id)
        for descendant in self._descendants(dataset_id):
            removed += self.cache.invalidate_dataset(descendant)
        logger.info(f"Invalidated {removed} cache entries for dataset '{dataset_id}'")
        return removed

    def cancel_query(self, query_hash: str) -> bool:
        """Cancel in-flight executions of a fingerprint and drop its cache entry.

        Returns True when at least one running execution was flagged.
        """
        with self._inflight_lock:
            tokens = list(self._inflight.get(query_hash, []))
        for token in tokens:
            token.cancel()
        self.cache.invalidate_hash(query_hash)
        logger.info(f"Cancel requested for query {query_hash}: {len(tokens)} running")
        return bool(tokens)

    def preview_dataset(
        self, dataset_id: str, caller_id: str, limit: int = 100
    ) -> QueryResult:
        return self.execute_dataset_query(
            dataset_id, QueryOptions(caller_id=caller_id, limit=limit, offset=0)
        )

    def get_dataset_columns(self, dataset_id: str, caller_id: str) -> List[ColumnInfo]:
        """Columns of a dataset, from a zero-row page."""
        result = self.execute_dataset_query(
            dataset_id, QueryOptions(caller_id=caller_id, limit=0)
        )
        return result.columns

    def test_dataset(
        self, dataset_id: str, caller_id: Optional[str] = None
    ) -> ConnectionTestResult:
        """Test the connection behind a dataset's SOURCE."""
        if caller_id is not None:
            self._check_permission(caller_id, dataset_id)
        source = self.resolver.resolve_chain(dataset_id)[-1]
        connector = self.registry.get(source.connector_name)
        if connector is None:
            return ConnectionTestResult(
                False, f"Unknown connector: {source.connector_name}"
            )
        return connector.test_connection(source.connector_config)

    def cache_status(self) -> Dict[str, int]:
        return self.cache.stats()

    def get_query_stats(self, dataset_id: str, timeframe: str = "24h") -> QueryStats:
        """Usage of a dataset over the last ``24h``, ``7d`` or ``30d``.

        Raises:
            ValidationError: Unknown timeframe
            ConfigurationError: The audit recorder does not keep records
        """
        window = STATS_TIMEFRAMES.get(timeframe)
        if window is None:
            raise ValidationError(
                f"Timeframe must be one of {list(STATS_TIMEFRAMES)}, got '{timeframe}'",
                field="timeframe",
            )
        if not isinstance(self.audit, QueryStatsSource):
            raise ConfigurationError(
                f"Audit recorder {type(self.audit).__name__} does not keep query "
                "records; query statistics are unavailable"
            )
        since = datetime.now(timezone.utc) - window
        return self.audit.query_stats(dataset_id, since)

    def _execute(
        self,
        dataset: Dataset,
        options: QueryOptions,
        query_hash: str,
        token: CancelToken,
        depth: int,
    ) -> QueryResult:
        if options.use_cache:
            cached = self.cache.get(dataset.id, query_hash)
            if cached is not None:
                logger.debug(f"Cache hit for dataset '{dataset.id}' ({query_hash})")
                if options.columns:
                    # the fingerprint ignores column order
                    _reorder_columns(cached, options.columns)
                return cached

        if dataset.is_source:
            result = self.source_executor.execute(dataset, options, cancel_token=token)
        else:
            result = self.transform_executor.execute(
                dataset,
                options,
                fetch_parent=lambda parent, next_depth: self._fetch_parent(
                    parent, options, token, next_depth
                ),
                depth=depth,
            )

        if token.cancelled:
            raise QueryCancelledError(
                f"Query {query_hash} on dataset '{dataset.id}' was cancelled"
            )
        if options.use_cache and dataset.cache_ttl_seconds > 0:
            self.cache.put(dataset.id, query_hash, result, dataset.cache_ttl_seconds)
        return result

    def _fetch_parent(
        self,
        parent: Dataset,
        options: QueryOptions,
        token: CancelToken,
        depth: int,
    ) -> QueryResult:
        # full, unpaginated and unprojected result of the parent
        if self.settings.check_parent_permissions:
            self._check_permission(options.caller_id, parent.id)
        parent_options = QueryOptions(
            caller_id=options.caller_id,
            use_cache=options.use_cache,
            timeout_seconds=options.timeout_seconds,
        )
        parent_hash = self._fingerprint(parent, parent_options)
        return self._execute(parent, parent_options, parent_hash, token, depth)

    def _fingerprint(self, dataset: Dataset, options: QueryOptions) -> str:
        scope = None
        if self.resolver.chain_has_row_level_security(dataset.id):
            scope = options.caller_id
        return fingerprint(dataset.id, options, security_scope=scope)

    def _check_permission(self, caller_id: str, dataset_id: str) -> None:
        if not self.permissions.has_read_access(caller_id, dataset_id):
            logger.warning(f"Caller '{caller_id}' denied read on '{dataset_id}'")
            raise PermissionDenied(caller_id, dataset_id)

    def _descendants(self, dataset_id: str) -> List[str]:
        if hasattr(self.metadata_store, "list_datasets"):
            return DatasetGraph(self.metadata_store.list_datasets()).descendants(
                dataset_id
            )
        return []

    def _record_audit(
        self, dataset_id: str, caller_id: str, result: QueryResult
    ) -> None:
        if self.audit is None:
            return
        try:
            self.audit.record_query_execution(
                dataset_id,
                caller_id,
                {
                    "execution_time": result.execution_time,
                    "row_count": len(result.rows),
                    "total_row_count": result.total_row_count,
                    "cached": result.from_cache,
                    "query_hash": result.query_hash,
                },
            )
        except Exception as e:
            logger.warning(
                f"Audit recording failed for dataset '{dataset_id}': {e}",
                exc_info=True,
            )

    def _track(self, query_hash: str) -> CancelToken:
        token = CancelToken()
        with self._inflight_lock:
            self._inflight.setdefault(query_hash, []).append(token)
        return token

    def _untrack(self, query_hash: str, token: CancelToken) -> None:
        with self._inflight_lock:
            tokens = self._inflight.get(query_hash, [])
            if token in tokens:
                tokens.remove(token)
            if not tokens:
                self._inflight.pop(query_hash, None)
