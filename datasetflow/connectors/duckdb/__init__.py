from .connector import DuckDBConnector

__all__ = ["DuckDBConnector"]
