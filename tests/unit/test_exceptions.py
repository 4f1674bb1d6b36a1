"""Tests for the error hierarchy."""

from datasetflow.exceptions import (
    ConfigurationError,
    DataSourceConnectionError,
    DatasetFlowError,
    ExpressionError,
    PermissionDenied,
    QueryExecutionError,
    QueryTimeoutError,
    UnsupportedOperatorError,
    ValidationError,
)


def test_everything_derives_from_base():
    for error in (
        ConfigurationError("bad"),
        DataSourceConnectionError("down"),
        PermissionDenied("u1", "d1"),
        UnsupportedOperatorError("like"),
        QueryTimeoutError("slow", timeout_seconds=1.0),
    ):
        assert isinstance(error, DatasetFlowError)


def test_validation_subclasses():
    assert isinstance(UnsupportedOperatorError("like", column="a"), ValidationError)
    assert isinstance(ExpressionError("nope", expression="1 +"), ValidationError)


def test_recoverable_flags():
    assert DataSourceConnectionError("down").recoverable is True
    assert QueryTimeoutError("slow").recoverable is True
    assert ConfigurationError("bad").recoverable is False
    assert PermissionDenied("u1", "d1").recoverable is False


def test_to_dict_and_str():
    error = ConfigurationError(
        "Invalid configuration", errors=["Missing required property: host"],
        connector_name="postgres",
    )
    data = error.to_dict()
    assert data["error_type"] == "ConfigurationError"
    assert data["error_code"] == "CONFIGURATIONERROR"
    assert data["context"]["connector"] == "postgres"
    assert "Missing required property: host" in str(error)
    assert error.errors == ["Missing required property: host"]


def test_long_queries_are_truncated_in_context():
    error = QueryExecutionError("failed", connector_name="duckdb", query="x" * 500)
    assert len(error.context["query"]) == 303
