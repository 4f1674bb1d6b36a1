"""Factory functions building engine objects for CLI commands."""

from typing import Any, Dict, Optional

import typer
import yaml

from datasetflow.collaborators import AllowAllPermissions, LoggingAuditRecorder
from datasetflow.config import EngineSettings
from datasetflow.connectors.registry import ConnectorRegistry
from datasetflow.exceptions import ConfigurationError
from datasetflow.logging import configure_logging, get_logger
from datasetflow.metadata import YamlMetadataStore
from datasetflow.service import QueryExecutionService

logger = get_logger(__name__)


def settings_from_context(ctx: Optional[typer.Context]) -> EngineSettings:
    """Load engine settings using the ``--settings`` path given to the root command.

    The settings' ``log_level`` applies unless ``--verbose`` or ``--quiet``
    was given.
    """
    options: Dict[str, Any] = {}
    if ctx is not None and isinstance(ctx.obj, dict):
        options = ctx.obj
    settings = EngineSettings.load(options.get("settings_path"))
    if not options.get("verbose") and not options.get("quiet"):
        configure_logging(level=settings.log_level)
    return settings


def build_registry(settings: EngineSettings) -> ConnectorRegistry:
    registry = ConnectorRegistry()
    registry.discover(
        extra_paths=settings.extra_connectors,
        disabled=settings.disabled_connectors,
    )
    return registry


def build_service(settings: EngineSettings, catalog_path: str) -> QueryExecutionService:
    """Service over a YAML catalog; every caller may read every dataset."""
    store = YamlMetadataStore.from_file(
        catalog_path, max_depth=settings.max_transformation_depth
    )
    return QueryExecutionService(
        build_registry(settings),
        store,
        AllowAllPermissions(),
        audit=LoggingAuditRecorder(),
        settings=settings,
    )


def read_yaml_mapping(path: str) -> Dict[str, Any]:
    """Read a YAML file whose top level is a mapping.

    Raises:
        ConfigurationError: If the file is missing, invalid or not a mapping
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            document = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigurationError(f"Cannot read {path}: {e}")
    except yaml.YAMLError as e:
        raise ConfigurationError(f"{path} is not valid YAML: {e}")
    if not isinstance(document, dict):
        raise ConfigurationError(f"{path} must contain a mapping")
    logger.debug(f"Read {len(document)} keys from {path}")
    return document
