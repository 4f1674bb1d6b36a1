"""Logger setup shared by the engine and the CLI.

Modules take their logger from ``get_logger(__name__)``. Connector and SQL
modules log each statement they run, so they stay at WARNING unless
verbose output is requested.
"""

import logging
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}

STATEMENT_LOGGERS = (
    "datasetflow.connectors.duckdb",
    "datasetflow.connectors.in_memory",
    "datasetflow.connectors.postgres",
    "datasetflow.connectors.parquet",
    "datasetflow.connectors.s3",
    "datasetflow.query.sql_builder",
)

THIRD_PARTY_LOGGERS = (
    "boto3",
    "botocore",
    "s3transfer",
    "urllib3",
    "sqlalchemy.engine",
    "sqlalchemy.pool",
)


def _handler(stream=None) -> logging.Handler:
    handler = logging.StreamHandler(stream)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    return handler


def get_logger(name: str) -> logging.Logger:
    """Logger for a module, with its own handler and no propagation."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        logger.addHandler(_handler())
        logger.propagate = False
    return logger


def resolve_level(
    verbose: bool = False, quiet: bool = False, level: Optional[str] = None
) -> int:
    """Quiet wins over verbose; both win over a named level."""
    if quiet:
        return logging.WARNING
    if verbose:
        return logging.DEBUG
    if level is not None:
        return LOG_LEVELS.get(level.lower(), logging.INFO)
    return logging.INFO


def configure_logging(
    verbose: bool = False,
    quiet: bool = False,
    level: Optional[str] = None,
) -> None:
    """Route root logging to stdout at the level the flags or settings ask for.

    Args:
        verbose: Debug output, statement loggers included
        quiet: Warnings and errors only
        level: Level name from settings, used when neither flag is set
    """
    root = logging.getLogger()
    root.setLevel(resolve_level(verbose, quiet, level))
    for existing in root.handlers[:]:
        root.removeHandler(existing)
    handler = _handler(sys.stdout)
    root.addHandler(handler)

    for name in STATEMENT_LOGGERS:
        statement_logger = logging.getLogger(name)
        statement_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
        if not statement_logger.handlers:
            statement_logger.addHandler(handler)
            statement_logger.propagate = False


def suppress_third_party_loggers() -> None:
    for name in THIRD_PARTY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
