from .connector import ParquetConnector

__all__ = ["ParquetConnector"]
