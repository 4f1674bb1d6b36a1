"""Tests for the reference permission and audit collaborators."""

from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from datasetflow.collaborators import (
    AllowAllPermissions,
    AuditRecord,
    AuditRecorder,
    InMemoryAuditRecorder,
    LoggingAuditRecorder,
    PermissionChecker,
    QueryStats,
    QueryStatsSource,
    StaticPermissions,
)


def test_allow_all():
    assert AllowAllPermissions().has_read_access("anyone", "anything")


def test_static_permissions():
    permissions = StaticPermissions({"u1": ["orders"], "admin": ["*"]})
    assert permissions.has_read_access("u1", "orders")
    assert not permissions.has_read_access("u1", "people")
    assert not permissions.has_read_access("u2", "orders")
    assert permissions.has_read_access("admin", "people")

    permissions.grant("u2", "orders")
    assert permissions.has_read_access("u2", "orders")
    permissions.revoke("u2", "orders")
    assert not permissions.has_read_access("u2", "orders")
    permissions.revoke("nobody", "orders")


def test_reference_implementations_satisfy_protocols():
    assert isinstance(StaticPermissions(), PermissionChecker)
    assert isinstance(InMemoryAuditRecorder(), AuditRecorder)
    assert isinstance(LoggingAuditRecorder(), AuditRecorder)


def test_in_memory_audit_recorder():
    recorder = InMemoryAuditRecorder()
    recorder.record_query_execution(
        "orders", "u1", {"execution_time": 0.25, "row_count": 3, "cached": True}
    )
    (record,) = recorder.records
    assert (record.dataset_id, record.caller_id) == ("orders", "u1")
    assert record.execution_time == 0.25
    assert record.row_count == 3
    assert record.cached is True
    assert record.recorded_at.tzinfo is not None


def test_logging_audit_recorder():
    recorder = LoggingAuditRecorder()
    recorder.logger = Mock()
    recorder.record_query_execution(
        "orders", "u1", {"execution_time": 0.5, "row_count": 2, "cached": False}
    )
    message = recorder.logger.info.call_args[0][0]
    assert "dataset=orders" in message
    assert "caller=u1" in message
    assert "rows=2" in message
    assert "time=0.500s" in message


class TestQueryStats:
    def test_aggregates_one_dataset_in_window(self):
        recorder = InMemoryAuditRecorder()
        for caller, seconds, rows, cached in [
            ("u1", 0.2, 10, False),
            ("u1", 0.1, 10, True),
            ("u2", 0.3, 4, False),
        ]:
            recorder.record_query_execution(
                "orders",
                caller,
                {"execution_time": seconds, "row_count": rows, "cached": cached},
            )
        recorder.record_query_execution("people", "u1", {"row_count": 99})
        recorder.records.append(
            AuditRecord(
                dataset_id="orders",
                caller_id="u3",
                execution_time=9.0,
                row_count=1000,
                cached=False,
                recorded_at=datetime.now(timezone.utc) - timedelta(days=2),
            )
        )

        stats = recorder.query_stats(
            "orders", datetime.now(timezone.utc) - timedelta(hours=24)
        )
        assert stats.total_queries == 3
        assert stats.avg_execution_time == pytest.approx(0.2)
        assert stats.total_rows_returned == 24
        assert stats.unique_callers == 2
        assert stats.cache_hit_rate == pytest.approx(1 / 3)
        assert isinstance(recorder, QueryStatsSource)
        assert not isinstance(LoggingAuditRecorder(), QueryStatsSource)

    def test_no_records(self):
        stats = InMemoryAuditRecorder().query_stats(
            "orders", datetime.now(timezone.utc)
        )
        assert stats == QueryStats()
        assert stats.to_dict() == {
            "total_queries": 0,
            "avg_execution_time": 0.0,
            "total_rows_returned": 0,
            "unique_callers": 0,
            "cache_hit_rate": 0.0,
        }
