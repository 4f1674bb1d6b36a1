"""Data-lake connector over local Parquet or CSV files.

The configured path (a file, directory glob or hive-partitioned tree) is
exposed as a DuckDB view named ``table_name``; dataset base queries are
written against that view.
"""

from typing import Any, Mapping

import duckdb

from datasetflow.connectors.base.config_schema import ConfigField, ConfigSchema
from datasetflow.connectors.base.connector import ConnectorCapabilities
from datasetflow.connectors.duckdb.connector import (
    IDENTIFIER_PATTERN,
    DuckDBConnector,
    quote_identifier,
    quote_literal,
)
from datasetflow.logging import get_logger

logger = get_logger(__name__)

_READERS = {
    "parquet": "read_parquet",
    "csv": "read_csv_auto",
    "json": "read_json_auto",
}


class ParquetConnector(DuckDBConnector):
    """Parquet / CSV files on a local or mounted filesystem."""

    name = "parquet"
    category = "data-lake"
    display_name = "Parquet Files"
    description = "Parquet, CSV or JSON files addressed by path or glob"
    config_schema = ConfigSchema(
        {
            "path": ConfigField(
                type="string",
                required=True,
                description="File path or glob, e.g. data/*.parquet",
            ),
            "file_format": ConfigField(
                type="string", default="parquet", choices=tuple(_READERS)
            ),
            "table_name": ConfigField(
                type="string", default="data", pattern=IDENTIFIER_PATTERN
            ),
            "hive_partitioning": ConfigField(type="boolean", default=False),
        }
    )
    capabilities = ConnectorCapabilities(
        supports_bulk_insert=False,
        supports_transactions=False,
        max_concurrent_connections=10,
        supports_streaming=True,
        supports_cancellation=True,
    )

    def probe_query_for(self, config: Mapping[str, Any]) -> str:
        table_name = self.resolve_config(config).get("table_name", "data")
        return f"SELECT 1 FROM {quote_identifier(table_name)} LIMIT 1"

    def _open(self, config: Mapping[str, Any]) -> "duckdb.DuckDBPyConnection":
        reader = _READERS[config.get("file_format", "parquet")]
        options = ""
        if config.get("hive_partitioning"):
            options = ", hive_partitioning = true"
        client = duckdb.connect(":memory:")
        try:
            client.execute(
                f"CREATE VIEW {quote_identifier(config.get('table_name', 'data'))} AS "
                f"SELECT * FROM {reader}({quote_literal(config['path'])}{options})"
            )
        except duckdb.Error:
            client.close()
            raise
        logger.debug(f"{self.name}: exposed {config['path']} via {reader}")
        return client
