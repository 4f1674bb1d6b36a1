"""datasetflow - multi-tenant dataset query and transformation engine."""

__version__ = "0.1.0"
__package_name__ = "datasetflow"

from datasetflow.logging import configure_logging

# Default logging; the CLI reconfigures from flags and settings
configure_logging()

from .exceptions import (
    ConfigurationError,
    DatasetFlowError,
    DatasetNotFound,
    PermissionDenied,
    QueryCancelledError,
    QueryTimeoutError,
    ValidationError,
)
from .models import Dataset, DatasetKind, QueryOptions, QueryResult

__all__ = [
    "ConfigurationError",
    "Dataset",
    "DatasetFlowError",
    "DatasetKind",
    "DatasetNotFound",
    "PermissionDenied",
    "QueryCancelledError",
    "QueryOptions",
    "QueryResult",
    "QueryTimeoutError",
    "ValidationError",
]
