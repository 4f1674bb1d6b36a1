"""Tests for query fingerprints and the result cache."""

import pytest

from datasetflow.cache import (
    FINGERPRINT_LENGTH,
    InMemoryCacheBackend,
    ResultCache,
    fingerprint,
)
from datasetflow.models import ColumnInfo, FilterCondition, QueryOptions, QueryResult


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return ResultCache(InMemoryCacheBackend(max_entries=3, clock=clock))


def make_result(rows=1):
    return QueryResult(
        columns=[ColumnInfo("id", "integer")],
        rows=[{"id": i} for i in range(rows)],
        total_row_count=rows,
    )


class TestFingerprint:
    def test_filter_and_column_order_do_not_matter(self):
        a = QueryOptions(
            caller_id="u1",
            filters=[FilterCondition("a", "equals", 1), FilterCondition("b", "in", [2])],
            columns=["x", "y"],
        )
        b = QueryOptions(
            caller_id="u2",
            filters=[FilterCondition("b", "in", [2]), FilterCondition("a", "equals", 1)],
            columns=["y", "x"],
        )
        assert fingerprint("d", a) == fingerprint("d", b)
        assert len(fingerprint("d", a)) == FINGERPRINT_LENGTH

    @pytest.mark.parametrize(
        "changes",
        [
            {"limit": 10},
            {"offset": 5},
            {"columns": ["x"]},
            {"filters": [FilterCondition("a", "equals", "1")]},
        ],
    )
    def test_request_shape_changes_the_hash(self, changes):
        base = QueryOptions(caller_id="u1", filters=[FilterCondition("a", "equals", 1)])
        other = QueryOptions(**{"caller_id": "u1", "filters": base.filters, **changes})
        assert fingerprint("d", base) != fingerprint("d", other)

    def test_dataset_and_security_scope_change_the_hash(self):
        options = QueryOptions(caller_id="u1")
        assert fingerprint("d1", options) != fingerprint("d2", options)
        assert fingerprint("d", options, security_scope="u1") != fingerprint(
            "d", options, security_scope="u2"
        )
        assert fingerprint("d", options) != fingerprint("d", options, "u1")


class TestResultCache:
    def test_round_trip_marks_cached_copies(self, cache):
        original = make_result()
        assert cache.put("d", "h1", original, 60)
        hit = cache.get("d", "h1")
        assert hit.from_cache is True
        assert hit.rows == original.rows
        assert original.from_cache is False
        hit.rows.append({"id": 99})
        assert cache.get("d", "h1").rows == original.rows

    def test_miss(self, cache):
        assert cache.get("d", "missing") is None
        assert cache.stats()["misses"] == 1

    @pytest.mark.parametrize("ttl", [0, -1, None])
    def test_non_positive_ttl_is_not_stored(self, cache, ttl):
        assert cache.put("d", "h1", make_result(), ttl) is False
        assert cache.get("d", "h1") is None

    def test_entries_expire(self, cache, clock):
        cache.put("d", "h1", make_result(), 60)
        clock.now = 1059.0
        assert cache.get("d", "h1") is not None
        clock.now = 1060.0
        assert cache.get("d", "h1") is None
        assert cache.stats()["entries"] == 0

    def test_oldest_entry_is_evicted(self, cache):
        for i in range(4):
            cache.put("d", f"h{i}", make_result(), 60)
        assert cache.get("d", "h0") is None
        assert cache.get("d", "h3") is not None
        assert cache.stats()["entries"] == 3

    def test_invalidate_dataset_does_not_touch_prefixed_ids(self, cache):
        cache.put("orders", "h1", make_result(), 60)
        cache.put("orders", "h2", make_result(), 60)
        cache.put("orders:eu", "h3", make_result(), 60)
        assert cache.invalidate_dataset("orders") == 2
        assert cache.get("orders", "h1") is None
        assert cache.get("orders:eu", "h3") is not None

    def test_invalidate_hash_and_key(self, cache):
        cache.put("a", "h1", make_result(), 60)
        cache.put("b", "h2", make_result(), 60)
        assert cache.invalidate_hash("h1") == 1
        assert cache.invalidate_key("b", "h2") is True
        assert cache.invalidate_key("b", "h2") is False
        assert cache.stats()["entries"] == 0

    def test_stats(self, cache):
        cache.put("d", "h1", make_result(), 60)
        cache.get("d", "h1")
        cache.get("d", "h2")
        cache.invalidate_dataset("d")
        assert cache.stats() == {
            "hits": 1,
            "misses": 1,
            "writes": 1,
            "invalidations": 1,
            "entries": 0,
        }

    def test_clear(self, cache):
        cache.put("a", "h1", make_result(), 60)
        cache.put("b", "h2", make_result(), 60)
        assert cache.clear() == 2
