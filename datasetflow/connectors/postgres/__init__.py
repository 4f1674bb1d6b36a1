from .connector import PostgresConnector, RedshiftConnector

__all__ = ["PostgresConnector", "RedshiftConnector"]
