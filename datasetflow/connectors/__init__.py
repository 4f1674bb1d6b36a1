"""Connectors for datasetflow."""

from datasetflow.connectors.base import (
    Connection,
    ConnectionTestResult,
    Connector,
    ConnectorCapabilities,
    ConnectorDescriptor,
)
from datasetflow.connectors.duckdb import DuckDBConnector
from datasetflow.connectors.in_memory import InMemoryConnector
from datasetflow.connectors.parquet import ParquetConnector
from datasetflow.connectors.postgres import PostgresConnector, RedshiftConnector
from datasetflow.connectors.registry import ConnectorRegistry
from datasetflow.connectors.s3 import S3Connector

# Static registration list; extra connectors come from EngineSettings.
BUILTIN_CONNECTORS = (
    DuckDBConnector,
    InMemoryConnector,
    PostgresConnector,
    RedshiftConnector,
    S3Connector,
    ParquetConnector,
)

__all__ = [
    "BUILTIN_CONNECTORS",
    "Connection",
    "ConnectionTestResult",
    "Connector",
    "ConnectorCapabilities",
    "ConnectorDescriptor",
    "ConnectorRegistry",
    "DuckDBConnector",
    "InMemoryConnector",
    "ParquetConnector",
    "PostgresConnector",
    "RedshiftConnector",
    "S3Connector",
]
