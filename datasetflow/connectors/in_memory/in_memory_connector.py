from typing import Any, Dict, Mapping

import duckdb
import pandas as pd

from datasetflow.connectors.base.config_schema import ConfigField, ConfigSchema
from datasetflow.connectors.base.connector import ConnectorCapabilities
from datasetflow.connectors.duckdb.connector import DuckDBConnector
from datasetflow.exceptions import DataSourceConnectionError

IN_MEMORY_DATA_STORE: Dict[str, pd.DataFrame] = {}


def register_frame(table_name: str, df: pd.DataFrame) -> None:
    """Publish a DataFrame under ``table_name`` for in-memory datasets."""
    IN_MEMORY_DATA_STORE[table_name] = df


class InMemoryConnector(DuckDBConnector):
    """
    Connector over DataFrames held in process memory, primarily for testing.

    Every frame in IN_MEMORY_DATA_STORE (or only those listed in ``tables``)
    is exposed as a view of a private in-memory DuckDB database.
    """

    name = "in_memory"
    category = "in-memory"
    display_name = "In-Memory"
    description = "pandas DataFrames registered in the process"
    config_schema = ConfigSchema(
        {
            "tables": ConfigField(
                type="list", description="Frames to expose; all when omitted"
            ),
        }
    )
    capabilities = ConnectorCapabilities(
        supports_bulk_insert=False,
        supports_transactions=False,
        max_concurrent_connections=10,
        supports_streaming=False,
        supports_cancellation=True,
    )

    def _open(self, config: Mapping[str, Any]) -> "duckdb.DuckDBPyConnection":
        wanted = config.get("tables") or list(IN_MEMORY_DATA_STORE)
        missing = [t for t in wanted if t not in IN_MEMORY_DATA_STORE]
        if missing:
            raise DataSourceConnectionError(
                f"Tables not found in memory: {missing}", connector_name=self.name
            )
        client = duckdb.connect(":memory:")
        for table_name in wanted:
            client.register(table_name, IN_MEMORY_DATA_STORE[table_name])
        return client
