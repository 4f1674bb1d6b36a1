from .connector import S3Connector

__all__ = ["S3Connector"]
