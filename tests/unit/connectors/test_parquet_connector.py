"""Tests for the Parquet/CSV data-lake connector using real files."""

import pandas as pd
import pytest

from datasetflow.connectors.parquet import ParquetConnector


@pytest.fixture
def connector():
    return ParquetConnector()


@pytest.fixture
def orders_frame():
    return pd.DataFrame(
        {"id": [1, 2, 3], "status": ["paid", "open", "paid"], "total": [10.0, 5.5, 7.25]}
    )


@pytest.fixture
def parquet_file(tmp_path, orders_frame):
    path = tmp_path / "orders.parquet"
    orders_frame.to_parquet(path, index=False)
    return str(path)


def _query(connector, config, sql, params=None):
    connection = connector.connect(config)
    try:
        return connector.execute_raw_query(connection, sql, params)
    finally:
        connector.disconnect(connection)


def test_query_parquet_file(connector, parquet_file):
    result = _query(
        connector,
        {"path": parquet_file, "table_name": "orders"},
        "SELECT id, total FROM orders WHERE status = ? ORDER BY id",
        ["paid"],
    )
    assert result.rows == [{"id": 1, "total": 10.0}, {"id": 3, "total": 7.25}]
    assert [c.type for c in result.columns] == ["integer", "float"]


def test_default_table_name(connector, parquet_file):
    result = _query(connector, {"path": parquet_file}, "SELECT COUNT(*) AS n FROM data")
    assert result.rows == [{"n": 3}]


def test_glob_over_directory(connector, tmp_path, orders_frame):
    orders_frame.to_parquet(tmp_path / "part-1.parquet", index=False)
    orders_frame.to_parquet(tmp_path / "part-2.parquet", index=False)
    result = _query(
        connector,
        {"path": str(tmp_path / "part-*.parquet")},
        "SELECT COUNT(*) AS n FROM data",
    )
    assert result.rows == [{"n": 6}]


def test_csv_format(connector, tmp_path, orders_frame):
    path = tmp_path / "orders.csv"
    orders_frame.to_csv(path, index=False)
    result = _query(
        connector,
        {"path": str(path), "file_format": "csv"},
        "SELECT status FROM data ORDER BY id",
    )
    assert [row["status"] for row in result.rows] == ["paid", "open", "paid"]


def test_test_connection(connector, parquet_file, tmp_path):
    assert connector.test_connection({"path": parquet_file})
    missing = connector.test_connection({"path": str(tmp_path / "missing.parquet")})
    assert not missing
    assert missing.message.startswith("Connection failed")


@pytest.mark.parametrize(
    "config, fragment",
    [
        ({}, "Missing required property: path"),
        ({"path": "x.parquet", "file_format": "xlsx"}, "'file_format' must be one of"),
        ({"path": "x.parquet", "table_name": "drop table"}, "does not match pattern"),
    ],
)
def test_config_validation(connector, config, fragment):
    errors = connector.validate_config(config)
    assert any(fragment in e for e in errors)


def test_probe_query_uses_table_name(connector):
    assert connector.probe_query_for({"path": "x", "table_name": "orders"}) == (
        'SELECT 1 FROM "orders" LIMIT 1'
    )
