from .config_schema import ConfigField, ConfigSchema
from .connection_test_result import ConnectionTestResult
from .connector import (
    CATEGORIES,
    REQUIRED_OPERATIONS,
    Connection,
    Connector,
    ConnectorCapabilities,
    ConnectorDescriptor,
)

__all__ = [
    "CATEGORIES",
    "REQUIRED_OPERATIONS",
    "ConfigField",
    "ConfigSchema",
    "Connection",
    "ConnectionTestResult",
    "Connector",
    "ConnectorCapabilities",
    "ConnectorDescriptor",
]
