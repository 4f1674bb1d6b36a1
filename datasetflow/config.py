"""Engine settings with layered resolution.

Precedence (highest to lowest):
1. Environment variables prefixed with ``DATASETFLOW_``
2. The ``engine:`` section of a YAML settings file
3. Built-in defaults
"""

import os
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Mapping, Optional

import yaml

from datasetflow.exceptions import ConfigurationError
from datasetflow.logging import LOG_LEVELS, get_logger

logger = get_logger(__name__)

ENV_PREFIX = "DATASETFLOW_"


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _parse_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class EngineSettings:
    """Runtime settings for the query engine."""

    max_transformation_depth: int = 10
    query_timeout_seconds: float = 30.0
    connect_timeout_seconds: float = 10.0
    cache_max_entries: int = 10000
    check_parent_permissions: bool = True
    log_level: str = "info"
    extra_connectors: List[str] = field(default_factory=list)
    disabled_connectors: List[str] = field(default_factory=list)

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Raise ConfigurationError if any setting is out of range."""
        errors = []
        if self.max_transformation_depth < 1:
            errors.append("max_transformation_depth must be at least 1")
        if self.query_timeout_seconds <= 0:
            errors.append("query_timeout_seconds must be positive")
        if self.connect_timeout_seconds <= 0:
            errors.append("connect_timeout_seconds must be positive")
        if self.cache_max_entries < 1:
            errors.append("cache_max_entries must be at least 1")
        if self.log_level.lower() not in LOG_LEVELS:
            errors.append(
                f"log_level must be one of {sorted(LOG_LEVELS)}, got '{self.log_level}'"
            )
        if errors:
            raise ConfigurationError("Invalid engine settings", errors=errors)

    @classmethod
    def from_dict(cls, values: Mapping[str, Any]) -> "EngineSettings":
        """Build settings from a mapping, ignoring unknown keys with a warning."""
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in values.items():
            if key not in known:
                logger.warning(f"Ignoring unknown engine setting '{key}'")
                continue
            kwargs[key] = value
        try:
            return cls(**kwargs)
        except TypeError as e:
            raise ConfigurationError(f"Invalid engine settings: {e}")

    @classmethod
    def load(
        cls,
        path: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> "EngineSettings":
        """Load settings from defaults, an optional YAML file and the environment.

        Args:
            path: Optional YAML file with an ``engine:`` section
            env: Environment mapping (defaults to ``os.environ``)

        Returns:
            Resolved EngineSettings

        Raises:
            ConfigurationError: If the file is unreadable or a value is invalid
        """
        values: Dict[str, Any] = {}
        if path:
            values.update(_read_settings_file(path))
        values.update(_read_environment(os.environ if env is None else env))
        return cls.from_dict(values)


def _read_settings_file(path: str) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            document = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigurationError(f"Cannot read settings file '{path}': {e}")
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Settings file '{path}' is not valid YAML: {e}")

    if not isinstance(document, dict):
        raise ConfigurationError(f"Settings file '{path}' must contain a mapping")
    section = document.get("engine", {})
    if not isinstance(section, dict):
        raise ConfigurationError("The 'engine' section must be a mapping")
    logger.debug(f"Loaded {len(section)} engine settings from {path}")
    return dict(section)


_ENV_PARSERS = {
    "max_transformation_depth": int,
    "query_timeout_seconds": float,
    "connect_timeout_seconds": float,
    "cache_max_entries": int,
    "check_parent_permissions": _parse_bool,
    "log_level": str,
    "extra_connectors": _parse_list,
    "disabled_connectors": _parse_list,
}


def _read_environment(env: Mapping[str, str]) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for name, parser in _ENV_PARSERS.items():
        raw = env.get(ENV_PREFIX + name.upper())
        if raw is None:
            continue
        try:
            values[name] = parser(raw)
        except ValueError:
            raise ConfigurationError(
                f"Environment variable {ENV_PREFIX + name.upper()} has invalid "
                f"value '{raw}'"
            )
    return values
