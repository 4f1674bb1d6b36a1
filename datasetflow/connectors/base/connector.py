import itertools
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from datasetflow.connectors.base.config_schema import ConfigSchema
from datasetflow.connectors.base.connection_test_result import ConnectionTestResult
from datasetflow.exceptions import DatasetFlowError
from datasetflow.logging import get_logger
from datasetflow.models import ColumnInfo, RawQueryResult

logger = get_logger(__name__)

_connection_ids = itertools.count(1)

# Operations every connector must expose to be registered.
REQUIRED_OPERATIONS = (
    "connect",
    "test_connection",
    "execute_raw_query",
    "get_schema",
    "get_tables",
    "get_columns",
    "disconnect",
    "cancel",
)

CATEGORIES = (
    "relational",
    "object-storage",
    "data-lake",
    "cloud-warehouse",
    "in-memory",
)


@dataclass(frozen=True)
class ConnectorCapabilities:
    """What a connector's backend can do."""

    supports_bulk_insert: bool = False
    supports_transactions: bool = False
    max_concurrent_connections: int = 10
    supports_streaming: bool = False
    supports_cancellation: bool = False


@dataclass(frozen=True)
class ConnectorDescriptor:
    """Immutable public description of a registered connector."""

    name: str
    category: str
    display_name: str
    config_schema: ConfigSchema
    capabilities: ConnectorCapabilities
    description: str = ""


@dataclass
class Connection:
    """Opaque handle returned by Connector.connect.

    Owned by exactly one executor for the lifetime of one query.
    """

    connector_name: str
    client: Any
    config: Dict[str, Any] = field(default_factory=dict)
    id: str = ""
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    is_connected: bool = True
    resources: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.id:
            self.id = f"{self.connector_name}_{next(_connection_ids)}"


class Connector(ABC):
    """Standardized base class for all data source connectors.

    A connector instance holds no per-query state: everything a query needs
    lives on the Connection returned by ``connect``, so one instance can
    serve concurrent queries.
    """

    name: str = ""
    category: str = ""
    display_name: str = ""
    description: str = ""
    config_schema: ConfigSchema = ConfigSchema()
    capabilities: ConnectorCapabilities = ConnectorCapabilities()
    # "qmark" binds parameters as a list of ?, "named" as a dict of :pN
    param_style: str = "qmark"
    probe_query: str = "SELECT 1"

    def validate_config(self, config: Optional[Mapping[str, Any]]) -> List[str]:
        """Validate configuration against the connector's schema.

        Override to add checks the declarative schema cannot express.
        """
        return self.config_schema.validate(config)

    def resolve_config(self, config: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        """Return the configuration with schema defaults applied."""
        return self.config_schema.apply_defaults(config)

    def probe_query_for(self, config: Mapping[str, Any]) -> str:
        """Query used by test_connection to prove the backend answers."""
        return self.probe_query

    def describe(self) -> ConnectorDescriptor:
        return ConnectorDescriptor(
            name=self.name,
            category=self.category,
            display_name=self.display_name or self.name,
            config_schema=self.config_schema,
            capabilities=self.capabilities,
            description=self.description,
        )

    @abstractmethod
    def connect(self, config: Mapping[str, Any]) -> Connection:
        """Open a connection to the backend.

        Raises:
        ------
            DataSourceConnectionError: If the backend cannot be reached

        """

    def test_connection(self, config: Mapping[str, Any]) -> ConnectionTestResult:
        """Test that the backend is reachable with this configuration.

        Never raises for an unreachable backend; the failure is reported in
        the returned result.
        """
        errors = self.validate_config(config)
        if errors:
            return ConnectionTestResult(False, "; ".join(errors))

        start = time.monotonic()
        connection = None
        try:
            connection = self.connect(config)
            self.execute_raw_query(connection, self.probe_query_for(config))
            return ConnectionTestResult(
                True,
                f"Successfully connected to {self.display_name or self.name}",
                response_time=time.monotonic() - start,
            )
        except DatasetFlowError as e:
            logger.error(f"{self.name}: Connection test failed: {e.message}")
            return ConnectionTestResult(
                False,
                f"Connection failed: {e.message}",
                response_time=time.monotonic() - start,
            )
        finally:
            if connection is not None:
                self.disconnect(connection)

    @abstractmethod
    def execute_raw_query(
        self,
        connection: Connection,
        query: str,
        params: Optional[Any] = None,
    ) -> RawQueryResult:
        """Run a query and return neutral-typed columns and rows.

        Raises:
        ------
            QueryExecutionError: If the backend rejects or fails the query

        """

    @abstractmethod
    def get_schema(self, connection: Connection) -> List[str]:
        """List the schemas (namespaces) visible through the connection."""

    @abstractmethod
    def get_tables(
        self, connection: Connection, schema: Optional[str] = None
    ) -> List[str]:
        """List the tables and views in a schema."""

    @abstractmethod
    def get_columns(self, connection: Connection, table: str) -> List[ColumnInfo]:
        """List the columns of a table with neutral types."""

    @abstractmethod
    def disconnect(self, connection: Connection) -> None:
        """Release the connection. Must be safe to call more than once."""

    def cancel(self, connection: Connection) -> bool:
        """Ask the backend to abort the statement running on ``connection``.

        Returns True when a cancellation request was sent. Connectors without
        cooperative cancellation keep this default.
        """
        return False
