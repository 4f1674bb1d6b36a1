"""Contracts of the services the engine consumes but does not own.

The permission decision service, audit storage and metadata persistence live
outside the engine; it only depends on the small protocols below. Reference
implementations are provided for tests, demos and the CLI.
"""

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import (
    Any,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Protocol,
    Set,
    runtime_checkable,
)

from datasetflow.logging import get_logger
from datasetflow.models import Dataset

logger = get_logger(__name__)


@runtime_checkable
class PermissionChecker(Protocol):
    def has_read_access(self, caller_id: str, dataset_id: str) -> bool:
        ...


@runtime_checkable
class RowLevelSecurityProvider(Protocol):
    def build_predicate(self, caller_id: str, rls_config: Mapping[str, Any]) -> Any:
        ...


@runtime_checkable
class MetadataStore(Protocol):
    def get_dataset(self, dataset_id: str) -> Optional[Dataset]:
        ...


@runtime_checkable
class AuditRecorder(Protocol):
    def record_query_execution(
        self, dataset_id: str, caller_id: str, details: Mapping[str, Any]
    ) -> None:
        ...


class AllowAllPermissions:
    """Grants every caller read access to every dataset."""

    def has_read_access(self, caller_id: str, dataset_id: str) -> bool:
        return True


class StaticPermissions:
    """Permission table: caller id -> dataset ids. ``"*"`` grants everything."""

    def __init__(self, grants: Optional[Mapping[str, Iterable[str]]] = None):
        self._grants: Dict[str, Set[str]] = {
            caller: set(datasets) for caller, datasets in (grants or {}).items()
        }

    def grant(self, caller_id: str, dataset_id: str) -> None:
        self._grants.setdefault(caller_id, set()).add(dataset_id)

    def revoke(self, caller_id: str, dataset_id: str) -> None:
        self._grants.get(caller_id, set()).discard(dataset_id)

    def has_read_access(self, caller_id: str, dataset_id: str) -> bool:
        datasets = self._grants.get(caller_id, set())
        return "*" in datasets or dataset_id in datasets


@dataclass(frozen=True)
class AuditRecord:
    dataset_id: str
    caller_id: str
    execution_time: float
    row_count: int
    cached: bool
    recorded_at: datetime


class LoggingAuditRecorder:
    """Writes one INFO line per query execution."""

    def __init__(self, logger_name: str = "datasetflow.audit"):
        self.logger = get_logger(logger_name)

    def record_query_execution(
        self, dataset_id: str, caller_id: str, details: Mapping[str, Any]
    ) -> None:
        self.logger.info(
            f"query dataset={dataset_id} caller={caller_id} "
            f"rows={details.get('row_count')} cached={details.get('cached')} "
            f"time={details.get('execution_time', 0.0):.3f}s"
        )


class InMemoryAuditRecorder:
    """Keeps audit records in a list."""

    def __init__(self):
        self._lock = threading.Lock()
        self.records: List[AuditRecord] = []

    def record_query_execution(
        self, dataset_id: str, caller_id: str, details: Mapping[str, Any]
    ) -> None:
        record = AuditRecord(
            dataset_id=dataset_id,
            caller_id=caller_id,
            execution_time=details.get("execution_time", 0.0),
            row_count=details.get("row_count", 0),
            cached=bool(details.get("cached")),
            recorded_at=datetime.now(timezone.utc),
        )
        with self._lock:
            self.records.append(record)

    def query_stats(self, dataset_id: str, since: datetime) -> "QueryStats":
        """Aggregate the records of one dataset made at or after ``since``."""
        with self._lock:
            records = [
                r
                for r in self.records
                if r.dataset_id == dataset_id and r.recorded_at >= since
            ]
        return QueryStats.from_records(records)


@runtime_checkable
class QueryStatsSource(Protocol):
    def query_stats(self, dataset_id: str, since: datetime) -> "QueryStats":
        ...


@dataclass(frozen=True)
class QueryStats:
    """Usage of one dataset over a time window."""

    total_queries: int = 0
    avg_execution_time: float = 0.0
    total_rows_returned: int = 0
    unique_callers: int = 0
    cache_hit_rate: float = 0.0

    @classmethod
    def from_records(cls, records: List[AuditRecord]) -> "QueryStats":
        if not records:
            return cls()
        total = len(records)
        return cls(
            total_queries=total,
            avg_execution_time=sum(r.execution_time for r in records) / total,
            total_rows_returned=sum(r.row_count for r in records),
            unique_callers=len({r.caller_id for r in records}),
            cache_hit_rate=sum(1 for r in records if r.cached) / total,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_queries": self.total_queries,
            "avg_execution_time": self.avg_execution_time,
            "total_rows_returned": self.total_rows_returned,
            "unique_callers": self.unique_callers,
            "cache_hit_rate": self.cache_hit_rate,
        }
