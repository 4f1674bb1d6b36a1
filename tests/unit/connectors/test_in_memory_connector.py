"""Tests for the in-memory DataFrame connector."""

import pandas as pd
import pytest

from datasetflow.connectors.in_memory import (
    IN_MEMORY_DATA_STORE,
    InMemoryConnector,
    register_frame,
)
from datasetflow.exceptions import DataSourceConnectionError, QueryExecutionError


@pytest.fixture
def connector():
    return InMemoryConnector()


def test_register_frame(people_frame):
    register_frame("people", people_frame)
    assert IN_MEMORY_DATA_STORE["people"] is people_frame


def test_query_registered_frame(connector, people_table):
    connection = connector.connect({})
    try:
        result = connector.execute_raw_query(
            connection,
            "SELECT name FROM people WHERE region = ? ORDER BY id",
            ["eu"],
        )
    finally:
        connector.disconnect(connection)
    assert [row["name"] for row in result.rows] == ["alice", "carol", "erin"]


def test_nullable_values_become_none(connector, people_table):
    connection = connector.connect({})
    try:
        result = connector.execute_raw_query(
            connection, "SELECT id, age FROM people WHERE id = 3"
        )
    finally:
        connector.disconnect(connection)
    assert result.rows == [{"id": 3, "age": None}]
    assert [c.type for c in result.columns] == ["integer", "integer"]


def test_only_listed_tables_are_exposed(connector, people_table):
    register_frame("other", pd.DataFrame({"a": [1]}))
    connection = connector.connect({"tables": ["people"]})
    try:
        with pytest.raises(QueryExecutionError):
            connector.execute_raw_query(connection, "SELECT * FROM other")
    finally:
        connector.disconnect(connection)


def test_missing_table(connector):
    with pytest.raises(DataSourceConnectionError, match="Tables not found"):
        connector.connect({"tables": ["nonexistent"]})


def test_descriptor(connector):
    descriptor = connector.describe()
    assert descriptor.name == "in_memory"
    assert descriptor.category == "in-memory"
    assert descriptor.capabilities.supports_cancellation is True
