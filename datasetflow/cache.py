"""Result cache keyed by query fingerprint.

Each page of a dataset is cached separately: limit and offset are part of
the fingerprint. Entries carry the dataset id so they can be dropped in
bulk when a dataset's definition changes.
"""

import copy
import hashlib
import json
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

from datasetflow.logging import get_logger
from datasetflow.models import QueryOptions, QueryResult

logger = get_logger(__name__)

KEY_PREFIX = "query_result:"
FINGERPRINT_LENGTH = 32


def _canonical_value(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str)


def fingerprint(
    dataset_id: str, options: QueryOptions, security_scope: Optional[str] = None
) -> str:
    """Stable hash of a dataset request.

    Filters and columns are sorted so that their order does not matter.
    ``security_scope`` separates callers whose rows differ because of
    row-level security.
    """
    filters = sorted(
        (
            {"column": f.column, "operator": f.operator, "value": f.value}
            for f in options.filters
        ),
        key=_canonical_value,
    )
    payload: Dict[str, Any] = {
        "dataset_id": dataset_id,
        "filters": filters,
        "columns": sorted(options.columns) if options.columns else None,
        "limit": options.limit,
        "offset": options.offset,
    }
    if security_scope is not None:
        payload["security_scope"] = security_scope
    digest = hashlib.sha256(_canonical_value(payload).encode("utf-8")).hexdigest()
    return digest[:FINGERPRINT_LENGTH]


class CacheBackend(Protocol):
    def get(self, key: str) -> Optional[Any]:
        ...

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        ...

    def delete(self, key: str) -> bool:
        ...

    def keys(self) -> List[str]:
        ...


class InMemoryCacheBackend:
    """Thread-safe TTL map with oldest-first eviction.

    Args:
        max_entries: Entry limit; the oldest entry is evicted when full
        clock: Monotonic clock in seconds, injectable for tests
    """

    def __init__(
        self, max_entries: int = 10000, clock: Callable[[], float] = time.monotonic
    ):
        self.max_entries = max_entries
        self.clock = clock
        self._entries: "OrderedDict[str, Tuple[float, Any]]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self.clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        with self._lock:
            self._entries.pop(key, None)
            while len(self._entries) >= self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"Evicted cache entry {evicted}")
            self._entries[key] = (self.clock() + ttl_seconds, value)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def keys(self) -> List[str]:
        with self._lock:
            now = self.clock()
            return [k for k, (expires_at, _) in self._entries.items() if now < expires_at]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    writes: int = 0
    invalidations: int = 0
    entries: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "writes": self.writes,
            "invalidations": self.invalidations,
            "entries": self.entries,
        }


class ResultCache:
    """QueryResult cache on top of a CacheBackend."""

    def __init__(self, backend: Optional[CacheBackend] = None):
        self.backend = backend if backend is not None else InMemoryCacheBackend()
        self._stats = CacheStats()
        self._stats_lock = threading.Lock()

    @staticmethod
    def cache_key(dataset_id: str, query_hash: str) -> str:
        return f"{KEY_PREFIX}{dataset_id}:{query_hash}"

    def _count(self, name: str, amount: int = 1) -> None:
        with self._stats_lock:
            setattr(self._stats, name, getattr(self._stats, name) + amount)

    def get(self, dataset_id: str, query_hash: str) -> Optional[QueryResult]:
        stored = self.backend.get(self.cache_key(dataset_id, query_hash))
        if stored is None:
            self._count("misses")
            return None
        self._count("hits")
        result = copy.deepcopy(stored)
        result.from_cache = True
        return result

    def put(
        self, dataset_id: str, query_hash: str, result: QueryResult, ttl_seconds: float
    ) -> bool:
        """Store a result; a non-positive TTL disables caching."""
        if not ttl_seconds or ttl_seconds <= 0:
            return False
        stored = copy.deepcopy(result)
        stored.from_cache = False
        self.backend.set(self.cache_key(dataset_id, query_hash), stored, ttl_seconds)
        self._count("writes")
        return True

    def invalidate_key(self, dataset_id: str, query_hash: str) -> bool:
        removed = self.backend.delete(self.cache_key(dataset_id, query_hash))
        if removed:
            self._count("invalidations")
        return removed

    def invalidate_hash(self, query_hash: str) -> int:
        """Drop the entry with this fingerprint whatever its dataset."""
        suffix = f":{query_hash}"
        keys = [k for k in self.backend.keys() if k.endswith(suffix)]
        return self._delete_keys(keys)

    def invalidate_dataset(self, dataset_id: str) -> int:
        prefix = f"{KEY_PREFIX}{dataset_id}:"
        keys = [
            k
            for k in self.backend.keys()
            if k.startswith(prefix) and ":" not in k[len(prefix) :]
        ]
        removed = self._delete_keys(keys)
        logger.debug(f"Invalidated {removed} cache entries for dataset '{dataset_id}'")
        return removed

    def _delete_keys(self, keys: List[str]) -> int:
        removed = sum(1 for key in keys if self.backend.delete(key))
        if removed:
            self._count("invalidations", removed)
        return removed

    def clear(self) -> int:
        return self._delete_keys(self.backend.keys())

    def stats(self) -> Dict[str, int]:
        with self._stats_lock:
            stats = CacheStats(**self._stats.to_dict())
        stats.entries = len(self.backend.keys())
        return stats.to_dict()
