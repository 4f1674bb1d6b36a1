from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import NullPool

from datasetflow.connectors.base.config_schema import ConfigField, ConfigSchema
from datasetflow.connectors.base.connector import (
    Connection,
    Connector,
    ConnectorCapabilities,
)
from datasetflow.connectors.types import from_postgres_oid, from_type_name
from datasetflow.exceptions import DataSourceConnectionError, QueryExecutionError
from datasetflow.logging import get_logger
from datasetflow.models import ColumnInfo, RawQueryResult

logger = get_logger(__name__)

HOST_PATTERN = r"[A-Za-z0-9]([A-Za-z0-9.\-]*[A-Za-z0-9])?"
SSL_MODES = ("disable", "allow", "prefer", "require", "verify-ca", "verify-full")

# psycopg2 spellings accepted for backward compatibility
PARAMETER_ALIASES = {"dbname": "database", "user": "username"}


def postgres_config_schema(default_port: int) -> ConfigSchema:
    return ConfigSchema(
        {
            "host": ConfigField(type="string", required=True, pattern=HOST_PATTERN),
            "port": ConfigField(
                type="integer", default=default_port, minimum=1, maximum=65535
            ),
            "database": ConfigField(type="string", required=True),
            "username": ConfigField(type="string", required=True),
            "password": ConfigField(type="string", secret=True),
            "schema": ConfigField(type="string", default="public"),
            "sslmode": ConfigField(type="string", choices=SSL_MODES),
            "connect_timeout": ConfigField(
                type="integer", default=10, minimum=1, maximum=300
            ),
        }
    )


def translate_postgres_parameters(config: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Map psycopg2 parameter names (dbname, user) onto the standard ones."""
    translated = dict(config or {})
    for legacy, standard in PARAMETER_ALIASES.items():
        if legacy in translated and standard not in translated:
            translated[standard] = translated.pop(legacy)
            logger.debug(f"Translated parameter '{legacy}' -> '{standard}'")
    return translated


class PostgresConnector(Connector):
    """PostgreSQL through SQLAlchemy and psycopg2.

    Connections are not pooled: every query opens its own connection and
    closes it when the query finishes.
    """

    name = "postgres"
    category = "relational"
    display_name = "PostgreSQL"
    description = "PostgreSQL database"
    config_schema = postgres_config_schema(5432)
    capabilities = ConnectorCapabilities(
        supports_bulk_insert=True,
        supports_transactions=True,
        max_concurrent_connections=100,
        supports_streaming=True,
        supports_cancellation=True,
    )
    param_style = "named"
    application_name = "datasetflow"

    def validate_config(self, config):
        return super().validate_config(translate_postgres_parameters(config))

    def resolve_config(self, config):
        return super().resolve_config(translate_postgres_parameters(config))

    def _url(self, config: Mapping[str, Any]) -> URL:
        return URL.create(
            "postgresql+psycopg2",
            username=config.get("username"),
            password=config.get("password"),
            host=config.get("host"),
            port=config.get("port"),
            database=config.get("database"),
        )

    def _connect_args(self, config: Mapping[str, Any]) -> Dict[str, Any]:
        connect_args = {
            "application_name": self.application_name,
            "connect_timeout": config.get("connect_timeout", 10),
        }
        if config.get("sslmode"):
            connect_args["sslmode"] = config["sslmode"]
        return connect_args

    def connect(self, config: Mapping[str, Any]) -> Connection:
        config = self.resolve_config(config)
        engine = create_engine(
            self._url(config),
            poolclass=NullPool,
            connect_args=self._connect_args(config),
        )
        try:
            client = engine.connect()
        except SQLAlchemyError as e:
            engine.dispose()
            raise DataSourceConnectionError(
                f"Failed to connect to {self.display_name} at "
                f"{config['host']}:{config['port']}/{config['database']}: {e}",
                connector_name=self.name,
            )
        logger.debug(
            f"{self.name}: connected to {config['username']}:***@"
            f"{config['host']}:{config['port']}/{config['database']}"
        )
        return Connection(
            connector_name=self.name,
            client=client,
            config=config,
            resources={
                "engine": engine,
                "dbapi_connection": client.connection.dbapi_connection,
            },
        )

    def execute_raw_query(
        self,
        connection: Connection,
        query: str,
        params: Optional[Any] = None,
    ) -> RawQueryResult:
        client = connection.client
        try:
            result = client.execute(text(query), params or {})
            if not result.returns_rows:
                return RawQueryResult(columns=[], rows=[])
            columns = [
                ColumnInfo(name=d[0], type=from_postgres_oid(d[1]))
                for d in result.cursor.description
            ]
            rows = [dict(row) for row in result.mappings()]
        except SQLAlchemyError as e:
            client.rollback()
            raise QueryExecutionError(
                f"{self.display_name} query failed: {e}",
                connector_name=self.name,
                query=query,
            )
        return RawQueryResult(columns=columns, rows=rows)

    def get_schema(self, connection: Connection) -> List[str]:
        result = self.execute_raw_query(
            connection,
            "SELECT schema_name FROM information_schema.schemata "
            "WHERE schema_name NOT IN ('pg_catalog', 'information_schema') "
            "AND schema_name NOT LIKE 'pg_toast%' ORDER BY schema_name",
        )
        return [row["schema_name"] for row in result.rows]

    def get_tables(
        self, connection: Connection, schema: Optional[str] = None
    ) -> List[str]:
        result = self.execute_raw_query(
            connection,
            "SELECT table_name FROM information_schema.tables "
            "WHERE table_schema = :schema_name ORDER BY table_name",
            {"schema_name": schema or connection.config.get("schema", "public")},
        )
        return [row["table_name"] for row in result.rows]

    def get_columns(self, connection: Connection, table: str) -> List[ColumnInfo]:
        result = self.execute_raw_query(
            connection,
            "SELECT column_name, data_type FROM information_schema.columns "
            "WHERE table_schema = :schema_name AND table_name = :table_name "
            "ORDER BY ordinal_position",
            {
                "schema_name": connection.config.get("schema", "public"),
                "table_name": table,
            },
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
            connection.resources["engine"].dispose()
            connection.is_connected = False
            logger.debug(f"{self.name}: disconnected {connection.id}")

    def cancel(self, connection: Connection) -> bool:
        dbapi_connection = connection.resources.get("dbapi_connection")
        if dbapi_connection is None or not connection.is_connected:
            return False
        # psycopg2 sends a cancel request on a separate socket
        dbapi_connection.cancel()
        logger.debug(f"{self.name}: cancel requested for {connection.id}")
        return True


class RedshiftConnector(PostgresConnector):
    """Amazon Redshift over the PostgreSQL wire protocol."""

    name = "redshift"
    category = "cloud-warehouse"
    display_name = "Amazon Redshift"
    description = "Amazon Redshift cluster or serverless workgroup"
    config_schema = postgres_config_schema(5439)
    capabilities = ConnectorCapabilities(
        supports_bulk_insert=True,
        supports_transactions=True,
        max_concurrent_connections=50,
        supports_streaming=False,
        supports_cancellation=True,
    )
