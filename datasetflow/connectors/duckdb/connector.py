"""DuckDB connector.

Also the base for connectors whose data is exposed to SQL through an
in-process DuckDB database (in-memory frames, Parquet files, S3 objects).
"""

from typing import Any, List, Mapping, Optional

import duckdb

from datasetflow.connectors.base.config_schema import ConfigField, ConfigSchema
from datasetflow.connectors.base.connector import (
    Connection,
    Connector,
    ConnectorCapabilities,
)
from datasetflow.connectors.types import from_arrow_type, from_type_name
from datasetflow.exceptions import DataSourceConnectionError, QueryExecutionError
from datasetflow.logging import get_logger
from datasetflow.models import ColumnInfo, RawQueryResult

logger = get_logger(__name__)

IDENTIFIER_PATTERN = r"[A-Za-z_][A-Za-z0-9_]*"


def quote_literal(value: str) -> str:
    """Render a string as a SQL literal for statements that cannot bind params."""
    return "'" + str(value).replace("'", "''") + "'"


def quote_identifier(name: str) -> str:
    return '"' + str(name).replace('"', '""') + '"'


class DuckDBConnector(Connector):
    """Connector for a DuckDB database file or an in-memory database."""

    name = "duckdb"
    category = "relational"
    display_name = "DuckDB"
    description = "Local DuckDB database file or in-memory database"
    config_schema = ConfigSchema(
        {
            "database": ConfigField(
                type="string",
                default=":memory:",
                description="Path to the database file, or :memory:",
            ),
            "read_only": ConfigField(type="boolean", default=False),
            "threads": ConfigField(type="integer", minimum=1, maximum=256),
        }
    )
    capabilities = ConnectorCapabilities(
        supports_bulk_insert=True,
        supports_transactions=True,
        max_concurrent_connections=4,
        supports_streaming=False,
        supports_cancellation=True,
    )
    param_style = "qmark"

    def connect(self, config: Mapping[str, Any]) -> Connection:
        config = self.resolve_config(config)
        try:
            client = self._open(config)
        except duckdb.Error as e:
            raise DataSourceConnectionError(
                f"Failed to open {self.display_name}: {e}", connector_name=self.name
            )
        logger.debug(f"{self.name}: connected")
        return Connection(connector_name=self.name, client=client, config=config)

    def _open(self, config: Mapping[str, Any]) -> "duckdb.DuckDBPyConnection":
        """Create the DuckDB connection backing a Connection."""
        client = duckdb.connect(
            database=config.get("database", ":memory:"),
            read_only=bool(config.get("read_only", False)),
        )
        if config.get("threads"):
            client.execute(f"SET threads TO {int(config['threads'])}")
        return client

    def execute_raw_query(
        self,
        connection: Connection,
        query: str,
        params: Optional[Any] = None,
    ) -> RawQueryResult:
        try:
            cursor = connection.client.execute(query, params or [])
            table = cursor.fetch_arrow_table()
        except duckdb.Error as e:
            raise QueryExecutionError(
                f"{self.display_name} query failed: {e}",
                connector_name=self.name,
                query=query,
            )
        columns = [
            ColumnInfo(name=f.name, type=from_arrow_type(f.type)) for f in table.schema
        ]
        return RawQueryResult(columns=columns, rows=table.to_pylist())

    def get_schema(self, connection: Connection) -> List[str]:
        result = self.execute_raw_query(
            connection,
            "SELECT DISTINCT schema_name FROM information_schema.schemata "
            "ORDER BY schema_name",
        )
        return [row["schema_name"] for row in result.rows]

    def get_tables(
        self, connection: Connection, schema: Optional[str] = None
    ) -> List[str]:
        result = self.execute_raw_query(
            connection,
            "SELECT table_name FROM information_schema.tables "
            "WHERE table_schema = ? ORDER BY table_name",
            [schema or "main"],
        )
        return [row["table_name"] for row in result.rows]

    def get_columns(self, connection: Connection, table: str) -> List[ColumnInfo]:
        result = self.execute_raw_query(
            connection,
            "SELECT column_name, data_type FROM information_schema.columns "
            "WHERE table_name = ? ORDER BY ordinal_position",
            [table],
        )
        return [
            ColumnInfo(name=row["column_name"], type=from_type_name(row["data_type"]))
            for row in result.rows
        ]

    def disconnect(self, connection: Connection) -> None:
        if not connection.is_connected:
            return
        try:
            connection.client.close()
        finally:
            connection.is_connected = False
            logger.debug(f"{self.name}: disconnected {connection.id}")

    def cancel(self, connection: Connection) -> bool:
        if not connection.is_connected:
            return False
        connection.client.interrupt()
        logger.debug(f"{self.name}: interrupted {connection.id}")
        return True
